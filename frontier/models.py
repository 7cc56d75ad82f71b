from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class CrawlTask:
    """
    Unit of work owned by the orchestrator.
    Invariants: one task per input URL; `attempt` only grows (0 = first try).
    """
    url: str
    rank: int
    attempt: int = 0


@dataclass
class BatchSummary:
    """Counters for one batch. Only mutated under the orchestrator's lock."""
    total: int = 0
    succeeded: int = 0
    timed_out: int = 0
    failed: int = 0
    attempts: int = 0
    failed_urls: List[str] = field(default_factory=list)
