"""
FILE DESCRIPTION: Runs a batch of crawl sessions on a bounded worker pool with retries.
KEY FUNCTIONS/CLASSES: CrawlOrchestrator, crawl_batch, compute_pool_size
"""

import dataclasses
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

import psutil

from frontier.models import BatchSummary, CrawlTask
from tracker.core import CPU_FRACTION, MAX_NUMBER_OF_CRAWLERS, MAX_NUMBER_OF_RETRIES, logger as default_logger, session_logger
from tracker.models import Failure, Success
from tracker.session import CrawlSession


def compute_pool_size(url_count: int, number_of_crawlers: Optional[int] = None) -> int:
    """
    min(explicit override or a fraction of the CPUs, MAX_NUMBER_OF_CRAWLERS, number of URLs).
    Never below 1.
    """
    if not number_of_crawlers:
        cores = psutil.cpu_count() or 1
        number_of_crawlers = math.floor(cores * CPU_FRACTION)
    return max(1, min(MAX_NUMBER_OF_CRAWLERS, number_of_crawlers, url_count))


class CrawlOrchestrator:
    """
    FLOW: Sizes the pool -> Submits one job per URL to a ThreadPoolExecutor (pool_size in flight) ->
    Each job runs a fresh session per attempt until Success or retries run out ->
    Reports through serialized callbacks -> Returns a BatchSummary.

    INVARIANT: A Success is never retried, even when the page timed out.
    A Failure is retried immediately, at most `max_retries` times.
    """

    def __init__(self, driver=None, session_factory: Callable = CrawlSession,
                 max_retries: int = MAX_NUMBER_OF_RETRIES, **session_options):
        if driver is None:
            from tracker.playwright_driver import PlaywrightDriver
            driver = PlaywrightDriver()
        self.driver = driver
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.session_options = session_options
        self._callback_lock = threading.Lock()
        self._stats_lock = threading.Lock()

    def crawl(self, urls: List[str], data_callback: Callable, collectors=None,
              failure_callback: Optional[Callable] = None, number_of_crawlers: Optional[int] = None,
              logger=None, filter_out_first_party: bool = False, emulate_mobile: bool = False,
              proxy_host: Optional[str] = None) -> BatchSummary:
        log = logger or default_logger
        summary = BatchSummary(total=len(urls))
        if not urls:
            return summary

        pool_size = compute_pool_size(len(urls), number_of_crawlers)
        log.info(f"[FRONTIER] Number of crawlers: {pool_size}")

        options = {
            "collectors": collectors,
            "filter_out_first_party": filter_out_first_party,
            "emulate_mobile": emulate_mobile,
            "proxy_host": proxy_host,
        }

        faults = []
        with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="Crawler") as executor:
            future_to_url = {}
            for idx, url in enumerate(urls):
                task = CrawlTask(url=url, rank=idx + 1)
                f = executor.submit(
                    self._process_task, task, options, log, summary,
                    data_callback, failure_callback,
                )
                future_to_url[f] = url

            for future in as_completed(future_to_url):
                try:
                    future.result()
                except Exception as e:
                    log.error(f"[FRONTIER] Orchestration fault while processing {future_to_url[future]}: {e}")
                    faults.append(e)

        if faults:
            raise faults[0]

        log.info(
            f"[FRONTIER] Done | total={summary.total} succeeded={summary.succeeded} "
            f"timed_out={summary.timed_out} failed={summary.failed} attempts={summary.attempts}"
        )
        return summary

    def _process_task(self, task: CrawlTask, options, log, summary, data_callback, failure_callback):
        log.info(f"[FRONTIER] Processing entry #{task.rank} ({task.url}).")
        started = time.monotonic()
        last_error = None

        while True:
            outcome = self._run_attempt(task, options, log)
            with self._stats_lock:
                summary.attempts += 1

            if isinstance(outcome, Success):
                with self._stats_lock:
                    summary.succeeded += 1
                    if outcome.timed_out:
                        summary.timed_out += 1
                with self._callback_lock:
                    data_callback(task.url, outcome.result)
                log.info(f"[FRONTIER] Processing \"{task.url}\" took {time.monotonic() - started:.1f}s.")
                return

            last_error = outcome.error
            if task.attempt >= self.max_retries:
                break
            task = dataclasses.replace(task, attempt=task.attempt + 1)
            log.warning(f"[FRONTIER] Retrying \"{task.url}\" (attempt {task.attempt + 1}): {last_error}")

        log.error(f"[FRONTIER] Max number of retries ({self.max_retries}) exceeded for \"{task.url}\".")
        with self._stats_lock:
            summary.failed += 1
            summary.failed_urls.append(task.url)
        if failure_callback is not None:
            with self._callback_lock:
                failure_callback(task.url, last_error)

    def _run_attempt(self, task: CrawlTask, options, log):
        """One fresh session (new browser, new collectors). Anything it raises counts as a Failure."""
        try:
            hostname = CrawlSession.hostname_of(task.url)
            session = self.session_factory(
                url=task.url,
                driver=self.driver,
                rank=task.rank,
                log=session_logger(hostname, base=log),
                **options,
                **self.session_options,
            )
            return session.run()
        except Exception as e:
            return Failure(e)


def crawl_batch(urls: List[str], data_callback: Callable, collectors=None,
                failure_callback: Optional[Callable] = None, number_of_crawlers: Optional[int] = None,
                logger=None, filter_out_first_party: bool = False, emulate_mobile: bool = False,
                proxy_host: Optional[str] = None, driver=None, session_factory: Callable = CrawlSession,
                **session_options) -> BatchSummary:
    """Convenience wrapper: one orchestrator, one batch."""
    orchestrator = CrawlOrchestrator(driver=driver, session_factory=session_factory, **session_options)
    return orchestrator.crawl(
        urls,
        data_callback,
        collectors=collectors,
        failure_callback=failure_callback,
        number_of_crawlers=number_of_crawlers,
        logger=logger,
        filter_out_first_party=filter_out_first_party,
        emulate_mobile=emulate_mobile,
        proxy_host=proxy_host,
    )
