"""
FILE DESCRIPTION: Playwright implementation of the browser driver contract.
KEY FUNCTIONS/CLASSES: PlaywrightDriver, PlaywrightBrowser, PlaywrightContext, PlaywrightPage, PlaywrightTarget

Uses the synchronous Playwright API. Every crawl session launches its own
Playwright instance from its own thread, so no Playwright object is ever
shared between threads. The only cross-thread entry point is
`PlaywrightBrowser.kill()`, which works on OS processes through psutil and
never touches Playwright objects.
"""

import threading
from typing import Any, Callable, Dict, List, Optional

import psutil
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from tracker.core import (
    DEFAULT_USER_AGENT,
    DEFAULT_VIEWPORT,
    HEADLESS,
    MOBILE_DEVICE_SCALE_FACTOR,
    MOBILE_USER_AGENT,
    MOBILE_VIEWPORT,
    logger,
)
from tracker.driver import (
    Browser,
    BrowserContext,
    Driver,
    DriverError,
    NavigationTimeoutError,
    Page,
    Target,
)

LAUNCH_ARGS = ["--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"]

# Serializes driver start-up so each launch can tell which child process is its own
_LAUNCH_LOCK = threading.Lock()

SRI_SCRIPT = """
() => Array.from(document.getElementsByTagName('script'))
    .filter(script => script.src)
    .map(script => [script.src, script.integrity])
"""


class PlaywrightTarget(Target):

    def __init__(self, cdp_session, target_type: str, url: str):
        self._cdp = cdp_session
        self.type = target_type
        self.url = url

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            return self._cdp.send(method, params or {})
        except PlaywrightError as e:
            raise DriverError(f"{method} failed: {e}") from e

    def on(self, event_name: str, handler: Callable[[Dict[str, Any]], None]) -> None:
        self._cdp.on(event_name, handler)

    def resume(self) -> None:
        self.send("Runtime.enable")
        self.send("Runtime.runIfWaitingForDebugger")

    def detach(self) -> None:
        try:
            self._cdp.detach()
        except PlaywrightError as e:
            raise DriverError(f"detach failed: {e}") from e


class PlaywrightPage(Page):

    def __init__(self, page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def goto(self, url: str, timeout: float, wait_until: str = "networkidle") -> None:
        self._navigate(lambda: self._page.goto(url, timeout=timeout * 1000, wait_until=wait_until))

    def reload(self, timeout: float, wait_until: str = "networkidle") -> None:
        self._navigate(lambda: self._page.reload(timeout=timeout * 1000, wait_until=wait_until))

    @staticmethod
    def _navigate(action):
        try:
            action()
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(str(e)) from e
        except PlaywrightError as e:
            raise DriverError(str(e)) from e

    def wait(self, seconds: float) -> None:
        self._page.wait_for_timeout(seconds * 1000)

    def content(self) -> str:
        return self._page.content()

    def screenshot(self) -> bytes:
        return self._page.screenshot()

    def collect_sri_values(self) -> List:
        # Top-level document is always reported, frames only when they load external scripts
        values = [(self._page.url, self._page.main_frame.evaluate(SRI_SCRIPT))]

        def extract_frame_contents(frame):
            for child in frame.child_frames:
                try:
                    scripts = child.evaluate(SRI_SCRIPT)
                except PlaywrightError as e:
                    logger.debug(f"[DRIVER] Could not read frame {child.url}: {e}")
                    continue
                if scripts:
                    values.append((child.url, scripts))
                extract_frame_contents(child)

        extract_frame_contents(self._page.main_frame)
        return values

    def close(self) -> None:
        self._page.close()


class PlaywrightContext(BrowserContext):
    """
    FLOW: Wraps a Playwright BrowserContext -> Opens a DevTools session for every page
    (ours and pop-ups) -> Hands it to the target handler.

    LIMITATION: Only the page created through `new_page()` is attached before it
    navigates. Pop-ups are reported by the `page` event once they are already
    loading, so their first requests are missed and `resume()` has nothing to
    release. Workers and service workers are never attached.
    """

    def __init__(self, context):
        self._context = context
        self._handlers: List[Callable[[Target], None]] = []
        self._attached = {}
        self._context.on("page", self._attach)
        # Dialogs left open make the page hang
        self._context.on("dialog", lambda dialog: dialog.dismiss())

    def on_target_created(self, handler: Callable[[Target], None]) -> None:
        self._handlers.append(handler)

    def _attach(self, page) -> None:
        if id(page) in self._attached:
            return
        cdp = self._context.new_cdp_session(page)
        target = PlaywrightTarget(cdp, "page", page.url)
        self._attached[id(page)] = (page, target)
        for handler in self._handlers:
            handler(target)

    def new_page(self) -> Page:
        page = self._context.new_page()
        # The page event may already have attached it
        self._attach(page)
        return PlaywrightPage(page)

    def close(self) -> None:
        self._context.close()


class PlaywrightBrowser(Browser):

    def __init__(self, playwright, browser, emulate_mobile: bool = False, driver_pids=()):
        self._playwright = playwright
        self._browser = browser
        self._emulate_mobile = emulate_mobile
        # Playwright driver process(es) started for this browser; Chromium runs underneath
        self._driver_pids = list(driver_pids)

    def new_context(self) -> BrowserContext:
        if self._emulate_mobile:
            options = {
                "user_agent": MOBILE_USER_AGENT,
                "viewport": MOBILE_VIEWPORT,
                "device_scale_factor": MOBILE_DEVICE_SCALE_FACTOR,
                "is_mobile": True,
                "has_touch": True,
            }
        else:
            options = {"user_agent": DEFAULT_USER_AGENT, "viewport": DEFAULT_VIEWPORT}
        return PlaywrightContext(self._browser.new_context(**options))

    def close(self) -> None:
        try:
            self._browser.close()
        finally:
            self._playwright.stop()

    def kill(self) -> None:
        """
        Kills the driver process tree (Chromium included). The owning thread's pending
        Playwright call then fails with a closed-connection error and unwinds.
        """
        for pid in self._driver_pids:
            try:
                root = psutil.Process(pid)
                processes = root.children(recursive=True) + [root]
            except psutil.NoSuchProcess:
                continue
            for process in processes:
                try:
                    process.kill()
                except psutil.NoSuchProcess:
                    pass
            logger.warning(f"[DRIVER] Killed browser process tree of driver {pid} ({len(processes)} processes)")


def _spawn_playwright():
    """Starts Playwright and returns it with the PIDs of the child processes it spawned."""
    current = psutil.Process()
    with _LAUNCH_LOCK:
        before = {child.pid for child in current.children()}
        playwright = sync_playwright().start()
        spawned = [child.pid for child in current.children() if child.pid not in before]
    return playwright, spawned


class PlaywrightDriver(Driver):

    def __init__(self, headless: bool = HEADLESS):
        self.headless = headless

    def launch(self, emulate_mobile: bool = False, proxy_host: Optional[str] = None) -> Browser:
        playwright, driver_pids = _spawn_playwright()
        options = {"headless": self.headless, "args": LAUNCH_ARGS}
        if proxy_host:
            options["proxy"] = {"server": proxy_host}
        try:
            browser = playwright.chromium.launch(**options)
        except Exception:
            playwright.stop()
            raise
        return PlaywrightBrowser(playwright, browser, emulate_mobile, driver_pids=driver_pids)
