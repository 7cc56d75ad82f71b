# To hash response bodies fetched over the protocol
# Input: body string (optionally base64) or bytes
# Output: sha256 hex digest

import base64
import hashlib


def hash_body(body, base64_encoded=False):
    if base64_encoded:
        body = base64.b64decode(body)
    elif isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()
