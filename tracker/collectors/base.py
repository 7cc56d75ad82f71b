from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from tracker.driver import Target


class BaseCollector(ABC):
    """
    A pluggable data source attached to every target of a crawl session.

    Collector instances hold per-session state and are never reused:
    the orchestrator calls `fresh()` to get a clean copy for each attempt.
    """

    def __init__(self, **options):
        self._options = options

    @abstractmethod
    def id(self) -> str:
        """Key under which this collector's output is stored in the crawl result."""
        pass

    def init(self, options: Dict[str, Any]) -> None:
        """Called once per session before any target exists. `options` holds url, context and log."""
        pass

    def add_target(self, target: Target) -> None:
        """Called for every new target while it is still paused."""
        pass

    @abstractmethod
    def get_data(self, final_url: str, url_filter: Optional[Callable[[str], bool]] = None) -> Any:
        pass

    def fresh(self) -> "BaseCollector":
        return self.__class__(**self._options)
