import tldextract
from urllib.parse import urlsplit

# Schemes that actually hit the network (data:, blob:, about: etc. do not)
NETWORK_SCHEMES = ("http", "https", "ws", "wss")

# Bundled public suffix snapshot only; never fetch the list at crawl time
_extract = tldextract.TLDExtract(suffix_list_urls=())


def is_network_url(url: str) -> bool:
    """
    True for well-formed URLs using a network scheme.
    Unparsable input (e.g. a broken IPv6 host) counts as non-network.
    """
    if not url:
        return False
    try:
        parts = urlsplit(url)
        # Accessing .port validates it
        parts.port
    except ValueError:
        return False
    return parts.scheme.lower() in NETWORK_SCHEMES and bool(parts.hostname)


def registrable_domain(url: str) -> str:
    """
    Uses tldextract for robust domain parsing (e.g. handles .co.uk correctly).
    Falls back to the bare host for IPs and unknown suffixes.
    """
    ext = _extract(url)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}".lower()
    return (ext.domain or "").lower()


def is_third_party_request(document_url: str, request_url: str) -> bool:
    return registrable_domain(request_url) != registrable_domain(document_url)
