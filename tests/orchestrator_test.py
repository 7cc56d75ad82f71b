"""
Verification Scenarios for batch orchestration: pool sizing, retries, callbacks
"""

import threading
import time
import unittest
from collections import Counter
from unittest.mock import MagicMock, patch

from frontier.orchestrator import CrawlOrchestrator, compute_pool_size, crawl_batch
from tracker.core import MAX_NUMBER_OF_CRAWLERS
from tracker.models import CrawlResult, Failure, Success
from tests.fakes import FakeDriver


def make_result(url, rank, timeout=False):
    return CrawlResult(
        initial_url=url, final_url=url, rank=rank, timeout=timeout,
        test_started=0, test_finished=1, data={"requests": []},
    )


class ScriptedSessions:
    """
    Session factory whose sessions follow `behaviour(url, attempt_index)`.
    Tracks attempts per URL and the peak number of concurrently running sessions.
    """

    def __init__(self, behaviour, delay=0.0):
        self.behaviour = behaviour
        self.delay = delay
        self.attempts = Counter()
        self.kwargs = []
        self.running = 0
        self.peak = 0
        self.lock = threading.Lock()

    def __call__(self, url, **kwargs):
        with self.lock:
            attempt = self.attempts[url]
            self.attempts[url] += 1
            self.kwargs.append(kwargs)
        factory = self

        class Session:
            def run(self):
                with factory.lock:
                    factory.running += 1
                    factory.peak = max(factory.peak, factory.running)
                try:
                    time.sleep(factory.delay)
                    return factory.behaviour(url, attempt, kwargs)
                finally:
                    with factory.lock:
                        factory.running -= 1

        return Session()


URLS = [f"https://site{i}.example/" for i in range(10)]


class TestPoolSize(unittest.TestCase):

    def test_explicit_override_is_capped_by_url_count(self):
        self.assertEqual(compute_pool_size(3, number_of_crawlers=10), 3)

    def test_hard_ceiling(self):
        self.assertEqual(compute_pool_size(500, number_of_crawlers=100), MAX_NUMBER_OF_CRAWLERS)

    @patch("frontier.orchestrator.psutil.cpu_count", return_value=10)
    def test_derived_from_cpu_count(self, _):
        self.assertEqual(compute_pool_size(100), 8)

    @patch("frontier.orchestrator.psutil.cpu_count", return_value=1)
    def test_never_below_one(self, _):
        self.assertEqual(compute_pool_size(100), 1)


class TestRetries(unittest.TestCase):

    def setUp(self):
        self.log = MagicMock()
        self.data_callback = MagicMock()
        self.failure_callback = MagicMock()

    def run_batch(self, sessions, urls=URLS, crawlers=3):
        return crawl_batch(
            urls,
            self.data_callback,
            failure_callback=self.failure_callback,
            number_of_crawlers=crawlers,
            logger=self.log,
            driver=FakeDriver(),
            session_factory=sessions,
        )

    def test_always_failing_sessions(self):
        """Scenario: every attempt throws; batch still resolves."""
        def behaviour(url, attempt, kwargs):
            raise RuntimeError(f"crash {url}")

        sessions = ScriptedSessions(behaviour, delay=0.01)
        summary = self.run_batch(sessions)

        self.assertEqual(self.failure_callback.call_count, 10)
        self.data_callback.assert_not_called()
        self.assertEqual(set(sessions.attempts.values()), {3})
        self.assertEqual(summary.attempts, 30)
        self.assertEqual(summary.failed, 10)
        self.assertLessEqual(sessions.peak, 3)

        failed_urls = sorted(call.args[0] for call in self.failure_callback.call_args_list)
        self.assertEqual(failed_urls, sorted(URLS))
        for call in self.failure_callback.call_args_list:
            self.assertIsInstance(call.args[1], RuntimeError)

    def test_failure_outcomes_are_retried(self):
        def behaviour(url, attempt, kwargs):
            if attempt < 2:
                return Failure(ConnectionError("browser crashed"))
            return Success(make_result(url, kwargs["rank"]))

        sessions = ScriptedSessions(behaviour)
        summary = self.run_batch(sessions, urls=URLS[:2])

        self.failure_callback.assert_not_called()
        self.assertEqual(self.data_callback.call_count, 2)
        self.assertEqual(summary.succeeded, 2)
        self.assertEqual(summary.attempts, 6)

    def test_timed_out_session_is_success_and_not_retried(self):
        def behaviour(url, attempt, kwargs):
            return Success(make_result(url, kwargs["rank"], timeout=True))

        sessions = ScriptedSessions(behaviour)
        summary = self.run_batch(sessions, urls=URLS[:1])

        self.assertEqual(sessions.attempts[URLS[0]], 1)
        self.failure_callback.assert_not_called()
        url, result = self.data_callback.call_args.args
        self.assertEqual(url, URLS[0])
        self.assertTrue(result.timeout)
        self.assertEqual(summary.timed_out, 1)

    def test_rank_and_options_passed_to_sessions(self):
        def behaviour(url, attempt, kwargs):
            return Success(make_result(url, kwargs["rank"]))

        sessions = ScriptedSessions(behaviour)
        crawl_batch(
            URLS[:3], self.data_callback, logger=self.log, driver=FakeDriver(),
            session_factory=sessions, filter_out_first_party=True, emulate_mobile=True,
            proxy_host="http://proxy:3128",
        )

        ranks = sorted(result.rank for _, result in (c.args for c in self.data_callback.call_args_list))
        self.assertEqual(ranks, [1, 2, 3])
        for kwargs in sessions.kwargs:
            self.assertTrue(kwargs["filter_out_first_party"])
            self.assertTrue(kwargs["emulate_mobile"])
            self.assertEqual(kwargs["proxy_host"], "http://proxy:3128")

    def test_empty_batch(self):
        summary = self.run_batch(ScriptedSessions(lambda *a: None), urls=[])
        self.assertEqual(summary.total, 0)
        self.data_callback.assert_not_called()

    def test_callback_fault_fails_the_batch(self):
        def behaviour(url, attempt, kwargs):
            return Success(make_result(url, kwargs["rank"]))

        self.data_callback.side_effect = IOError("disk full")
        with self.assertRaises(IOError):
            self.run_batch(ScriptedSessions(behaviour), urls=URLS[:2])

    def test_callbacks_are_serialized(self):
        inside = []
        overlap = []

        def slow_callback(url, result):
            if inside:
                overlap.append(url)
            inside.append(url)
            time.sleep(0.01)
            inside.remove(url)

        def behaviour(url, attempt, kwargs):
            return Success(make_result(url, kwargs["rank"]))

        orchestrator = CrawlOrchestrator(driver=FakeDriver(), session_factory=ScriptedSessions(behaviour))
        orchestrator.crawl(URLS, slow_callback, number_of_crawlers=5, logger=self.log)
        self.assertEqual(overlap, [])


class TestWithRealSessions(unittest.TestCase):

    def test_navigation_failures_exhaust_retries(self):
        from tracker.driver import DriverError

        driver = FakeDriver(goto_error=DriverError("net::ERR_CONNECTION_REFUSED"))
        failures = []
        summary = crawl_batch(
            ["https://down.example/"], MagicMock(),
            failure_callback=lambda url, error: failures.append((url, error)),
            logger=MagicMock(), driver=driver, load_timeout=0.05, wait_time=0,
        )

        self.assertEqual(len(driver.browsers), 3)
        self.assertTrue(all(browser.closed for browser in driver.browsers))
        self.assertEqual(failures[0][0], "https://down.example/")
        self.assertIsInstance(failures[0][1], DriverError)
        self.assertEqual(summary.failed, 1)

    def test_expired_sessions_leave_no_browser_open(self):
        """Scenario: every attempt hangs past the session limit; each browser is killed before the retry."""
        from tracker.session import SessionTimeoutError

        blocker = threading.Event()
        self.addCleanup(blocker.set)
        driver = FakeDriver(reload_blocker=blocker)
        failures = []
        summary = crawl_batch(
            ["https://stuck.example/"], MagicMock(),
            failure_callback=lambda url, error: failures.append(error),
            logger=MagicMock(), driver=driver, load_timeout=0.05, wait_time=0, total_timeout=0.2,
        )

        self.assertEqual(len(driver.browsers), 3)
        still_open = [browser for browser in driver.browsers if not browser.closed]
        self.assertEqual(still_open, [])
        self.assertIsInstance(failures[0], SessionTimeoutError)
        self.assertEqual(summary.failed, 1)


if __name__ == "__main__":
    unittest.main()
