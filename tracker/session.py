"""
FILE DESCRIPTION: Runs one URL through a full browser visit and gathers collector output.
KEY FUNCTIONS/CLASSES: CrawlSession, SessionTimeoutError

Phases: open context -> attach collectors to every target -> navigate -> settle ->
reload -> settle -> artifacts -> collector export -> teardown.
The whole visit runs on its own thread. Once MAX_TOTAL_TIME passes the browser is
killed, which fails whatever call the thread is blocked in, and the thread is
given KILL_GRACE_TIME to unwind.
"""

import threading
import time
from urllib.parse import urlparse

from tracker.collectors import build_collectors
from tracker.core import (
    EXECUTION_WAIT_TIME,
    KILL_GRACE_TIME,
    MAX_LOAD_TIME,
    RELOAD_PAGE,
    TOTAL_TIME_FACTOR,
    session_logger,
)
from tracker.driver import NavigationTimeoutError
from tracker.models import CrawlResult, Failure, Success
from tracker.url_utils import is_third_party_request


class SessionTimeoutError(Exception):
    """Raised when a session exceeds its whole-session time limit."""
    pass


def _now_ms():
    return int(time.time() * 1000)


class CrawlSession:
    """
    FLOW: Launches a browser through the driver -> Runs the visit phases on a dedicated thread ->
    Waits at most `total_timeout` -> Returns Success(result) or Failure(error).

    A navigation timeout is not an error: loading is stopped, `timeout` is flagged and the
    visit goes on. Any other driver error fails the session.
    """

    def __init__(self, url, driver, collectors=None, rank=None, log=None,
                 filter_out_first_party=False, emulate_mobile=False, proxy_host=None,
                 load_timeout=MAX_LOAD_TIME, wait_time=EXECUTION_WAIT_TIME,
                 total_timeout=None, reload_page=RELOAD_PAGE, collect_artifacts=True):
        self.url = url
        self.hostname = self.hostname_of(url)
        self.driver = driver
        self.collectors = build_collectors(collectors)
        self.rank = rank
        self.log = log or session_logger(self.hostname)
        self.filter_out_first_party = filter_out_first_party
        self.emulate_mobile = emulate_mobile
        self.proxy_host = proxy_host
        self.load_timeout = load_timeout
        self.wait_time = wait_time
        self.total_timeout = total_timeout if total_timeout is not None else load_timeout * TOTAL_TIME_FACTOR
        self.reload_page = reload_page
        self.collect_artifacts = collect_artifacts
        self.targets = []
        self._abandoned = threading.Event()
        self._browser = None
        self._browser_lock = threading.Lock()

    @staticmethod
    def hostname_of(url):
        return urlparse(url).hostname or url

    # === ENTRY POINT ===

    def run(self):
        box = {}
        done = threading.Event()

        def visit():
            try:
                box["result"] = self._crawl()
            except Exception as e:
                box["error"] = e
            finally:
                done.set()

        thread = threading.Thread(target=visit, daemon=True, name=f"Session-{self.hostname}")
        thread.start()

        if not done.wait(timeout=self.total_timeout):
            self._abandoned.set()
            error = SessionTimeoutError(f"Crawl of {self.url} exceeded {self.total_timeout}s")
            self.log.error(f"[SESSION] Crawl failed: {error}")
            self._kill_browser()
            thread.join(timeout=KILL_GRACE_TIME)
            if thread.is_alive():
                self.log.warning(f"[SESSION] Session thread still running {KILL_GRACE_TIME}s after kill")
            return Failure(error)

        if "error" in box:
            error = box["error"]
            self.log.error(f"[SESSION] Crawl failed: {error}", exc_info=error)
            return Failure(error)

        return Success(box["result"])

    def _crawl(self):
        browser = self.driver.launch(emulate_mobile=self.emulate_mobile, proxy_host=self.proxy_host)
        with self._browser_lock:
            self._browser = browser
        try:
            # A launch that outlived the session limit is closed straight away
            self._checkpoint()
            return self._get_site_data(browser)
        finally:
            try:
                browser.close()
            except Exception as e:
                self.log.warning(f"[SESSION] Closing browser failed: {e}")

    def _kill_browser(self):
        with self._browser_lock:
            browser = self._browser
        if browser is None:
            return
        try:
            browser.kill()
        except Exception as e:
            self.log.warning(f"[SESSION] Killing browser failed: {e}")

    def _checkpoint(self):
        if self._abandoned.is_set():
            raise SessionTimeoutError(f"Crawl of {self.url} was abandoned")

    # === PHASES ===

    def _get_site_data(self, browser):
        test_started = _now_ms()
        context = browser.new_context()

        collector_options = {
            "browser": browser,
            "context": context,
            "url": self.url,
            "log": self.log,
        }
        for collector in self.collectors:
            started = time.monotonic()
            try:
                collector.init(collector_options)
                self.log.debug(f"{collector.id()} init took {time.monotonic() - started:.2f}s")
            except Exception as e:
                self.log.warning(f"[SESSION] {collector.id()} init failed: {e}")

        context.on_target_created(self._on_target_created)

        page = context.new_page()
        timeout = self._navigate(
            lambda: page.goto(self.url, timeout=self.load_timeout, wait_until="networkidle"),
            "Navigation timeout exceeded.",
        )

        # Give the site a bit more time for async activity
        page.wait(self.wait_time)
        final_url = page.url
        self._checkpoint()

        if self.reload_page:
            reload_timed_out = self._navigate(
                lambda: page.reload(timeout=self.load_timeout, wait_until="networkidle"),
                "Navigation timeout exceeded during reload.",
            )
            timeout = timeout or reload_timed_out
            page.wait(self.wait_time)
            self._checkpoint()

        result = CrawlResult(
            initial_url=self.url,
            final_url=final_url,
            rank=self.rank,
            timeout=timeout,
            test_started=test_started,
            test_finished=test_started,
        )

        if self.collect_artifacts:
            self._collect_artifacts(page, result)

        result.data = self._collect_data(final_url)

        for target in self.targets:
            try:
                target.detach()
            except Exception as e:
                self.log.warning(f"[SESSION] Detaching from {target.url} failed: {e}")

        page.close()
        context.close()

        result.test_finished = _now_ms()
        return result

    def _on_target_created(self, target):
        """New targets are paused; resume only once every collector is listening."""
        started = time.monotonic()
        self.targets.append(target)

        for collector in self.collectors:
            try:
                collector.add_target(target)
            except Exception as e:
                self.log.warning(f"[SESSION] {collector.id()} failed to attach to {target.url}: {e}")

        try:
            target.resume()
        except Exception as e:
            self.log.warning(f"[SESSION] Failed to resume target {target.url}: {e}")
            return

        self.log.debug(f"{target.url} context initiated in {time.monotonic() - started:.2f}s")

    def _navigate(self, action, message):
        """Returns True when the navigation timed out and loading was stopped."""
        try:
            action()
        except NavigationTimeoutError:
            self.log.warning(f"[SESSION] {message}")
            self._stop_loading_targets()
            return True
        return False

    def _stop_loading_targets(self):
        for target in self.targets:
            if target.type != "page":
                continue
            try:
                target.send("Page.stopLoading")
            except Exception as e:
                self.log.warning(f"[SESSION] Stop loading failed for {target.url}: {e}")

    def _collect_artifacts(self, page, result):
        try:
            result.screenshot = page.screenshot()
        except Exception as e:
            self.log.warning(f"[SESSION] Screenshot failed: {e}")
        try:
            result.sri_values = [[url, scripts] for url, scripts in page.collect_sri_values()]
        except Exception as e:
            self.log.warning(f"[SESSION] SRI collection failed: {e}")
        try:
            result.html = page.content()
        except Exception as e:
            self.log.warning(f"[SESSION] Reading page content failed: {e}")

    def _collect_data(self, final_url):
        url_filter = None
        if self.filter_out_first_party:
            url_filter = lambda request_url: is_third_party_request(final_url, request_url)

        data = {}
        for collector in self.collectors:
            started = time.monotonic()
            try:
                data[collector.id()] = collector.get_data(final_url, url_filter)
                self.log.debug(f"getting {collector.id()} data took {time.monotonic() - started:.2f}s")
            except Exception as e:
                self.log.warning(f"[SESSION] getting {collector.id()} data failed: {e}")
                data[collector.id()] = None
        return data
