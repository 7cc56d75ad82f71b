from dataclasses import dataclass, field
from typing import Dict, Optional, Any, List, Union


@dataclass
class RequestRecord:
    """
    One hop of one network request, as rebuilt from protocol events.

    INVARIANT: `id` is NOT unique. Redirect hops reuse the id of the request
    that started the chain; only the most recently appended record for an id
    may be updated.
    """
    id: str
    url: str
    method: Optional[str] = None
    resource_type: Optional[str] = None
    initiator: Optional[Dict[str, Any]] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    request_headers: Optional[Dict[str, str]] = None
    response_headers: Optional[Dict[str, str]] = None
    status: Optional[int] = None
    remote_ip_address: Optional[str] = None
    size: Optional[int] = None
    failure_reason: Optional[str] = None
    redirected_from: Optional[str] = None
    redirected_to: Optional[str] = None
    post_data: Optional[str] = None
    response_body_hash: Optional[str] = None
    # Raw request headers already applied; a later extra-info event for the id belongs to the next hop
    request_extra_info_applied: bool = False


@dataclass
class CrawlResult:
    """
    Output of one crawl session.
    Artifacts (SRI values, markup, screenshot) travel with the result but are
    not part of the serialized record.
    """
    initial_url: str
    final_url: str
    rank: Optional[int]
    timeout: bool
    test_started: int  # epoch millis
    test_finished: int  # epoch millis
    data: Dict[str, Any] = field(default_factory=dict)
    sri_values: List[Any] = field(default_factory=list)
    html: Optional[str] = None
    screenshot: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialUrl": self.initial_url,
            "finalUrl": self.final_url,
            "rank": self.rank,
            "timeout": self.timeout,
            "testStarted": self.test_started,
            "testFinished": self.test_finished,
            "data": self.data,
        }


@dataclass(frozen=True)
class Success:
    result: CrawlResult

    @property
    def timed_out(self) -> bool:
        return self.result.timeout


@dataclass(frozen=True)
class Failure:
    error: BaseException


SessionOutcome = Union[Success, Failure]
