"""
Browser driver contract used by crawl sessions.

Contractual Requirements for Implementers:
- New targets SHOULD stay paused until `Target.resume()` is called, so collectors
  can subscribe before the target produces any events. Where the backend cannot
  pause a target (e.g. pages opened by the site that are only reported once they
  are loading), the target is handed over as early as the backend allows and
  `resume()` is a no-op; events emitted before that are not seen.
- Targets the backend cannot open a protocol session on (workers, service
  workers under Playwright) are never reported.
- `Page.goto` / `Page.reload` MUST raise NavigationTimeoutError (and nothing
  else) when the navigation exceeds its timeout.
- Each Browser belongs to the thread that launched it, except `Browser.kill()`,
  which MUST be callable from any thread and MUST make calls blocked inside the
  browser fail instead of hanging.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple


class DriverError(Exception):
    """Base driver exception."""
    pass


class NavigationTimeoutError(DriverError):
    """Raised when a navigation does not settle within its timeout."""
    pass


class Target(ABC):
    """A protocol endpoint (page, worker, service worker) inside a browser context."""

    type: str = "other"
    url: str = ""

    @abstractmethod
    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Issue a protocol command and return its reply."""
        pass

    @abstractmethod
    def on(self, event_name: str, handler: Callable[[Dict[str, Any]], None]) -> None:
        """Subscribe to a protocol notification; the handler receives the raw params."""
        pass

    @abstractmethod
    def resume(self) -> None:
        """Let a target paused on creation continue."""
        pass

    @abstractmethod
    def detach(self) -> None:
        pass


class Page(ABC):

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    def goto(self, url: str, timeout: float, wait_until: str = "networkidle") -> None:
        pass

    @abstractmethod
    def reload(self, timeout: float, wait_until: str = "networkidle") -> None:
        pass

    @abstractmethod
    def wait(self, seconds: float) -> None:
        pass

    @abstractmethod
    def content(self) -> str:
        pass

    @abstractmethod
    def screenshot(self) -> bytes:
        pass

    @abstractmethod
    def collect_sri_values(self) -> List[Tuple[str, List[List[str]]]]:
        """
        Returns (document_url, [[script_src, integrity], ...]) for the top-level
        document and every nested frame that has external scripts.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class BrowserContext(ABC):
    """Isolated (incognito-like) browsing context."""

    @abstractmethod
    def on_target_created(self, handler: Callable[[Target], None]) -> None:
        pass

    @abstractmethod
    def new_page(self) -> Page:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class Browser(ABC):

    @abstractmethod
    def new_context(self) -> BrowserContext:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def kill(self) -> None:
        """Forcefully terminate the browser processes. Safe to call from any thread."""
        pass


class Driver(ABC):

    @abstractmethod
    def launch(self, emulate_mobile: bool = False, proxy_host: Optional[str] = None) -> Browser:
        pass
