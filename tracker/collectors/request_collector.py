"""
FILE DESCRIPTION: Collector recording every network request of a crawl.
KEY FUNCTIONS/CLASSES: RequestCollector
"""

from typing import Callable, List, Optional

from tracker.collectors.base import BaseCollector
from tracker.core import DEFAULT_SAVE_HEADERS, logger
from tracker.correlator import EventCorrelator
from tracker.events import EVENT_NAMES, parse_event


class RequestCollector(BaseCollector):
    """
    FLOW: Enables Runtime (deep async stacks for initiators) and Network on each target ->
    Feeds every network notification into one EventCorrelator -> Exports the request list.
    """

    def __init__(self, save_response_hash: bool = False, save_headers: Optional[List[str]] = None):
        super().__init__(save_response_hash=save_response_hash, save_headers=save_headers)
        self._save_response_hash = save_response_hash
        self._save_headers = [h.lower() for h in (save_headers if save_headers is not None else DEFAULT_SAVE_HEADERS)]
        self._log = logger
        self.correlator = None

    def id(self) -> str:
        return "requests"

    def init(self, options):
        self._log = options.get("log") or logger
        self.correlator = EventCorrelator(
            save_response_hash=self._save_response_hash,
            save_headers=self._save_headers,
            log=self._log,
        )

    def add_target(self, target):
        target.send("Runtime.enable")
        target.send("Runtime.setAsyncCallStackDepth", {"maxDepth": 32})
        target.send("Network.enable")

        for name in EVENT_NAMES:
            target.on(name, self._make_listener(name, target))

    def _make_listener(self, name, target) -> Callable:
        def listener(params):
            try:
                event = parse_event(name, params)
            except (KeyError, TypeError, AttributeError) as e:
                self._log.debug(f"[REQUESTS] Malformed {name} notification: {e}")
                return
            if event is not None:
                self.correlator.handle(event, target)
        return listener

    def get_data(self, final_url, url_filter=None):
        return self.correlator.get_data(url_filter)
