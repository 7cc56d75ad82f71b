"""
Helpers for protocol header maps and initiator chains.
"""

from typing import Dict, Any, Iterable, List, Optional


def normalize_headers(headers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Lower-cases and trims header names so lookups are case-insensitive."""
    normalized = {}
    if not headers:
        return normalized
    for name, value in headers.items():
        normalized[name.strip().lower()] = value
    return normalized


def filter_headers(headers: Dict[str, Any], headers_to_keep: Iterable[str]) -> Dict[str, Any]:
    """Keeps only allow-listed headers; names are compared case-insensitively."""
    keep = {h.strip().lower() for h in headers_to_keep}
    return {
        name.lower(): value
        for name, value in headers.items()
        if name.lower() in keep
    }


def get_all_initiators(initiator: Optional[Dict[str, Any]]) -> List[str]:
    """
    FLOW: Takes the initiator URL (document or parser) -> Walks every call frame of the
    script stack and its async parents -> Returns unique URLs in discovery order.
    """
    found = []
    if not initiator:
        return found

    def add(url):
        if url and url not in found:
            found.append(url)

    add(initiator.get("url"))

    stack = initiator.get("stack")
    while stack:
        for frame in stack.get("callFrames", []):
            add(frame.get("url"))
        stack = stack.get("parent")

    return found
