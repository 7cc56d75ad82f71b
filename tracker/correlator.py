"""
FILE DESCRIPTION: Rebuilds per-request records from the asynchronous network event stream of one crawl.
KEY FUNCTIONS/CLASSES: EventCorrelator

Events for one request id can interleave with events for other ids, and the
header-only "extra info" notifications can arrive before or after the main
event they belong to. Redirects reuse the request id, so one id may head a
chain of records.
"""

import threading
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Any

from tracker.core import DEFAULT_SAVE_HEADERS, MAX_PENDING_EXTRA_INFO, logger as default_logger
from tracker.events import (
    LoadingFailed,
    LoadingFinished,
    NetworkEvent,
    RequestWillBeSent,
    RequestWillBeSentExtraInfo,
    ResponseReceived,
    ResponseReceivedExtraInfo,
    WebSocketCreated,
)
from tracker.hasher import hash_body
from tracker.headers import filter_headers, get_all_initiators, normalize_headers
from tracker.models import RequestRecord
from tracker.url_utils import is_network_url


class PendingExtraInfo:
    """
    Bounded id -> headers buffer for extra-info events whose record does not exist yet.
    Entries are removed when consumed; the oldest entry is evicted once the bound is hit.
    """

    def __init__(self, name: str, limit: int, log):
        self.name = name
        self.limit = limit
        self._log = log
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def put(self, request_id: str, headers: Dict[str, Any]) -> None:
        self._entries[request_id] = headers
        self._entries.move_to_end(request_id)
        while len(self._entries) > self.limit:
            evicted, _ = self._entries.popitem(last=False)
            self._log.debug(f"[CORRELATOR] Dropped stale {self.name} extra info for {evicted}")

    def pop(self, request_id: str) -> Optional[Dict[str, Any]]:
        return self._entries.pop(request_id, None)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, request_id):
        return request_id in self._entries


class EventCorrelator:
    """
    FLOW: Receives a network event -> Dispatches on its type -> Resolves the current record for
    the request id -> Applies the update (or buffers extra info) -> Never raises.

    INVARIANT: `_requests` is append-only and in arrival order. `_latest` always points at the
    most recently appended record for each id, so older hops of a redirect chain are never
    touched once superseded.
    """

    def __init__(self, save_response_hash: bool = False, save_headers: Optional[List[str]] = None,
                 log=None, max_pending: int = MAX_PENDING_EXTRA_INFO):
        self._log = log or default_logger
        self._save_response_hash = save_response_hash
        self._save_headers = [h.lower() for h in (save_headers if save_headers is not None else DEFAULT_SAVE_HEADERS)]
        self._requests: List[RequestRecord] = []
        self._latest: Dict[str, RequestRecord] = {}
        self._pending_request_info = PendingExtraInfo("request", max_pending, self._log)
        self._pending_response_info = PendingExtraInfo("response", max_pending, self._log)
        self._lock = threading.RLock()
        self._handlers = {
            RequestWillBeSent: self._on_request,
            RequestWillBeSentExtraInfo: self._on_request_extra_info,
            WebSocketCreated: self._on_web_socket,
            ResponseReceived: self._on_response,
            ResponseReceivedExtraInfo: self._on_response_extra_info,
            LoadingFailed: self._on_failed,
            LoadingFinished: self._on_finished,
        }

    @property
    def requests(self) -> List[RequestRecord]:
        return list(self._requests)

    @property
    def pending_request_info(self) -> PendingExtraInfo:
        return self._pending_request_info

    @property
    def pending_response_info(self) -> PendingExtraInfo:
        return self._pending_response_info

    def handle(self, event: NetworkEvent, target=None) -> None:
        """
        Single entry point for all event kinds.
        `target` is the protocol target the event came from; it is only used to fetch bodies.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            self._log.debug(f"[CORRELATOR] Ignoring unsupported event {type(event).__name__}")
            return
        try:
            with self._lock:
                handler(event, target)
        except Exception as e:
            self._log.warning(f"[CORRELATOR] Failed to apply {type(event).__name__}: {e}")

    def find_last_request(self, request_id: str) -> Optional[RequestRecord]:
        return self._latest.get(request_id)

    def _append(self, record: RequestRecord) -> None:
        self._requests.append(record)
        self._latest[record.id] = record

    # === EVENT HANDLERS ===

    def _on_request(self, event: RequestWillBeSent, target) -> None:
        self._log.debug(f"[CORRELATOR] REQ {event.url} {event.request_id}")

        # Extra info carries the raw headers the browser actually sent
        extra_headers = self._pending_request_info.pop(event.request_id)
        request_headers = normalize_headers(extra_headers if extra_headers is not None else event.headers)

        initiator = event.initiator
        # CORS follow-up requests are reported as 'parser'; the preflight knows the real initiator
        if event.method != "OPTIONS" and (initiator or {}).get("type") == "parser":
            for old in reversed(self._requests):
                if old.method == "OPTIONS" and old.url == event.url:
                    initiator = old.initiator
                    break

        record = RequestRecord(
            id=event.request_id,
            url=event.url,
            method=event.method,
            resource_type=event.resource_type,
            initiator=initiator,
            start_time=event.timestamp,
            request_headers=request_headers,
            post_data=event.post_data if event.method == "POST" else None,
            request_extra_info_applied=extra_headers is not None,
        )

        # A redirect reports the previous hop's response on the next hop's request event.
        # Close the previous hop out before the new one takes over the id.
        if event.redirect_response is not None:
            previous = self.find_last_request(event.request_id)
            if previous is not None:
                self._on_response(
                    ResponseReceived(
                        request_id=event.request_id,
                        response=event.redirect_response,
                        resource_type=event.resource_type,
                    ),
                    target,
                )
                self._finish(previous, event.timestamp, None)

                # Redirect targets report the document as initiator, keep the original one
                record.initiator = previous.initiator
                previous.redirected_to = event.url
                record.redirected_from = previous.url

        self._append(record)

    def _on_web_socket(self, event: WebSocketCreated, target) -> None:
        self._append(RequestRecord(
            id=event.request_id,
            url=event.url,
            resource_type="WebSocket",
            initiator=event.initiator,
        ))

    def _on_response(self, event: ResponseReceived, target) -> None:
        record = self.find_last_request(event.request_id)
        if record is None:
            self._log.debug(f"[CORRELATOR] Unmatched response {event.request_id} {event.response.url}")
            return

        record.resource_type = event.resource_type or record.resource_type
        record.status = event.response.status
        record.remote_ip_address = event.response.remote_ip_address

        # Headers on this event may be redacted (e.g. set-cookie); extra info wins when present
        if record.response_headers is None:
            extra_headers = self._pending_response_info.pop(event.request_id)
            record.response_headers = normalize_headers(
                extra_headers if extra_headers is not None else event.response.headers
            )

    def _on_response_extra_info(self, event: ResponseReceivedExtraInfo, target) -> None:
        record = self.find_last_request(event.request_id)
        if record is None:
            self._log.debug(f"[CORRELATOR] Buffering response extra info for {event.request_id}")
            self._pending_response_info.put(event.request_id, event.headers)
            return
        record.response_headers = normalize_headers(event.headers)

    def _on_request_extra_info(self, event: RequestWillBeSentExtraInfo, target) -> None:
        record = self.find_last_request(event.request_id)
        # Once the current hop has its raw headers, this event is for the next redirect hop
        if record is None or record.request_extra_info_applied:
            self._log.debug(f"[CORRELATOR] Buffering request extra info for {event.request_id}")
            self._pending_request_info.put(event.request_id, event.headers)
            return
        record.request_headers = normalize_headers(event.headers)
        record.request_extra_info_applied = True

    def _on_failed(self, event: LoadingFailed, target) -> None:
        record = self.find_last_request(event.request_id)
        if record is None:
            self._log.debug(f"[CORRELATOR] Unmatched failed response {event.request_id}")
            return

        record.end_time = event.timestamp
        record.failure_reason = event.error_text or "unknown error"
        if self._save_response_hash:
            record.response_body_hash = self.get_response_body_hash(event.request_id, target)

    def _on_finished(self, event: LoadingFinished, target) -> None:
        record = self.find_last_request(event.request_id)
        if record is None:
            self._log.debug(f"[CORRELATOR] Unmatched finished response {event.request_id}")
            return

        self._finish(record, event.timestamp, event.encoded_data_length)
        if self._save_response_hash:
            record.response_body_hash = self.get_response_body_hash(event.request_id, target)

    @staticmethod
    def _finish(record: RequestRecord, timestamp, size) -> None:
        record.end_time = timestamp
        record.size = size

    def get_response_body_hash(self, request_id: str, target) -> Optional[str]:
        if target is None:
            return None
        try:
            reply = target.send("Network.getResponseBody", {"requestId": request_id})
            return hash_body(reply["body"], reply.get("base64Encoded", False))
        except Exception as e:
            self._log.debug(f"[CORRELATOR] No body for {request_id}: {e}")
            return None

    # === EXPORT ===

    def get_data(self, url_filter: Optional[Callable[[str], bool]] = None) -> List[Dict[str, Any]]:
        """
        FLOW: Drops records with unparsable or non-network URLs -> Applies the caller's filter ->
        Flattens initiators, computes elapsed time and applies the response header allow-list.
        """
        with self._lock:
            records = list(self._requests)

        exported = []
        for record in records:
            if not is_network_url(record.url):
                continue
            if url_filter is not None and not url_filter(record.url):
                continue
            exported.append(self._export(record))
        return exported

    def _export(self, record: RequestRecord) -> Dict[str, Any]:
        elapsed = None
        if record.start_time is not None and record.end_time is not None:
            elapsed = record.end_time - record.start_time

        response_headers = None
        if record.response_headers is not None:
            response_headers = filter_headers(record.response_headers, self._save_headers)

        return {
            "url": record.url,
            "method": record.method,
            "type": record.resource_type,
            "status": record.status,
            "size": record.size,
            "remoteIPAddress": record.remote_ip_address,
            "responseHeaders": response_headers,
            "requestHeaders": record.request_headers,
            "responseBodyHash": record.response_body_hash,
            "failureReason": record.failure_reason,
            "redirectedTo": record.redirected_to,
            "redirectedFrom": record.redirected_from,
            "initiators": get_all_initiators(record.initiator),
            "time": elapsed,
            "postData": record.post_data,
        }
