"""
Network protocol events consumed by the event correlator.

The six kinds below form a closed set; `parse_event` is the only place that
knows the raw DevTools notification names and payload shapes.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Any, Union


@dataclass(frozen=True)
class Response:
    url: Optional[str]
    status: Optional[int]
    headers: Dict[str, str]
    remote_ip_address: Optional[str] = None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "Response":
        return cls(
            url=params.get("url"),
            status=params.get("status"),
            headers=params.get("headers") or {},
            remote_ip_address=params.get("remoteIPAddress"),
        )


@dataclass(frozen=True)
class RequestWillBeSent:
    request_id: str
    url: str
    method: str
    headers: Dict[str, str]
    initiator: Dict[str, Any]
    timestamp: Optional[float] = None
    resource_type: Optional[str] = None
    post_data: Optional[str] = None
    redirect_response: Optional[Response] = None


@dataclass(frozen=True)
class RequestWillBeSentExtraInfo:
    request_id: str
    headers: Dict[str, str]


@dataclass(frozen=True)
class WebSocketCreated:
    request_id: str
    url: str
    initiator: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ResponseReceived:
    request_id: str
    response: Response
    resource_type: Optional[str] = None


@dataclass(frozen=True)
class ResponseReceivedExtraInfo:
    request_id: str
    headers: Dict[str, str]


@dataclass(frozen=True)
class LoadingFailed:
    request_id: str
    timestamp: Optional[float] = None
    error_text: Optional[str] = None


@dataclass(frozen=True)
class LoadingFinished:
    request_id: str
    timestamp: Optional[float] = None
    encoded_data_length: Optional[int] = None


NetworkEvent = Union[
    RequestWillBeSent,
    RequestWillBeSentExtraInfo,
    WebSocketCreated,
    ResponseReceived,
    ResponseReceivedExtraInfo,
    LoadingFailed,
    LoadingFinished,
]


def _request_will_be_sent(params):
    request = params.get("request") or {}
    redirect = params.get("redirectResponse")
    return RequestWillBeSent(
        request_id=params["requestId"],
        url=request.get("url", ""),
        method=request.get("method", "GET"),
        headers=request.get("headers") or {},
        initiator=params.get("initiator") or {},
        timestamp=params.get("timestamp"),
        resource_type=params.get("type"),
        post_data=request.get("postData"),
        redirect_response=Response.from_params(redirect) if redirect else None,
    )


def _response_received(params):
    return ResponseReceived(
        request_id=params["requestId"],
        response=Response.from_params(params.get("response") or {}),
        resource_type=params.get("type"),
    )


_PARSERS = {
    "Network.requestWillBeSent": _request_will_be_sent,
    "Network.requestWillBeSentExtraInfo": lambda p: RequestWillBeSentExtraInfo(
        request_id=p["requestId"], headers=p.get("headers") or {}
    ),
    "Network.webSocketCreated": lambda p: WebSocketCreated(
        request_id=p["requestId"], url=p.get("url", ""), initiator=p.get("initiator")
    ),
    "Network.responseReceived": _response_received,
    "Network.responseReceivedExtraInfo": lambda p: ResponseReceivedExtraInfo(
        request_id=p["requestId"], headers=p.get("headers") or {}
    ),
    "Network.loadingFailed": lambda p: LoadingFailed(
        request_id=p["requestId"], timestamp=p.get("timestamp"), error_text=p.get("errorText")
    ),
    "Network.loadingFinished": lambda p: LoadingFinished(
        request_id=p["requestId"],
        timestamp=p.get("timestamp"),
        encoded_data_length=p.get("encodedDataLength"),
    ),
}

# Notification names a collector has to subscribe to
EVENT_NAMES = tuple(_PARSERS)


def parse_event(method: str, params: Dict[str, Any]) -> Optional[NetworkEvent]:
    """Turns a raw DevTools notification into an event object, or None if it is not tracked."""
    parser = _PARSERS.get(method)
    if parser is None:
        return None
    return parser(params)
