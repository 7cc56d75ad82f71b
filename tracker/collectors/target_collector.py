from tracker.collectors.base import BaseCollector


class TargetCollector(BaseCollector):
    """Lists the targets (pages, workers) that showed up during a crawl."""

    def __init__(self):
        super().__init__()
        self._targets = []

    def id(self) -> str:
        return "targets"

    def init(self, options):
        self._targets = []

    def add_target(self, target):
        self._targets.append({"type": target.type, "url": target.url})

    def get_data(self, final_url, url_filter=None):
        return list(self._targets)
