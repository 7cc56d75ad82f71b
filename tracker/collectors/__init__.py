from tracker.collectors.base import BaseCollector
from tracker.collectors.request_collector import RequestCollector
from tracker.collectors.target_collector import TargetCollector

DEFAULT_COLLECTORS = (RequestCollector, TargetCollector)


def build_collectors(collectors=None):
    """Accepts collector classes or configured instances; returns fresh instances."""
    if collectors is None:
        collectors = DEFAULT_COLLECTORS
    built = []
    for collector in collectors:
        if isinstance(collector, BaseCollector):
            built.append(collector.fresh())
        else:
            built.append(collector())
    return built
