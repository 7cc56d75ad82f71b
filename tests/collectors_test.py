import unittest
from unittest.mock import MagicMock

from tracker.collectors import RequestCollector, TargetCollector, build_collectors
from tracker.events import EVENT_NAMES
from tests.fakes import FakeTarget, request_params


class TestRequestCollector(unittest.TestCase):

    def setUp(self):
        self.collector = RequestCollector(save_headers=["ETag"])
        self.collector.init({"log": MagicMock(), "url": "https://example.com/"})
        self.target = FakeTarget()
        self.collector.add_target(self.target)

    def test_enables_domains_and_subscribes(self):
        self.assertEqual(self.target.calls, ["Runtime.enable", "Runtime.setAsyncCallStackDepth", "Network.enable"])
        self.assertEqual(set(self.target.listeners), set(EVENT_NAMES))

    def test_malformed_notification_is_ignored(self):
        self.target.emit("Network.responseReceived", {"response": {}})
        self.target.emit("Network.requestWillBeSent", request_params("1", "https://example.com/"))
        self.assertEqual(len(self.collector.get_data("https://example.com/")), 1)

    def test_events_from_several_targets_share_one_log(self):
        worker = FakeTarget(url="https://example.com/sw.js", target_type="service_worker")
        self.collector.add_target(worker)
        self.target.emit("Network.requestWillBeSent", request_params("1", "https://example.com/"))
        worker.emit("Network.requestWillBeSent", request_params("w1", "https://example.com/cache.json"))
        worker.emit("Network.responseReceived", {
            "requestId": "w1", "response": {"status": 200, "headers": {"ETag": "1", "Vary": "x"}},
        })

        data = self.collector.get_data("https://example.com/")
        self.assertEqual([r["url"] for r in data], ["https://example.com/", "https://example.com/cache.json"])
        self.assertEqual(data[1]["responseHeaders"], {"etag": "1"})


class TestBuildCollectors(unittest.TestCase):

    def test_defaults(self):
        ids = [c.id() for c in build_collectors()]
        self.assertEqual(ids, ["requests", "targets"])

    def test_instances_are_copied_with_options(self):
        prototype = RequestCollector(save_response_hash=True)
        (copy,) = build_collectors([prototype])
        self.assertIsNot(copy, prototype)
        self.assertTrue(copy._save_response_hash)

    def test_target_collector(self):
        collector = TargetCollector()
        collector.init({})
        collector.add_target(FakeTarget(url="https://example.com/", target_type="page"))
        self.assertEqual(collector.get_data("https://example.com/"), [{"type": "page", "url": "https://example.com/"}])


if __name__ == "__main__":
    unittest.main()
