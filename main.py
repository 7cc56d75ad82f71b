"""
Entry point for the request tracker.
Reads a URL list, crawls it with bounded parallelism, writes one JSON file per site
plus screenshots, rendered HTML and SRI values, and prints a batch summary.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from tabulate import tabulate

from frontier.orchestrator import crawl_batch
from tracker.collectors import RequestCollector, TargetCollector
from tracker.core import add_log_file, logger
from tracker.session import CrawlSession


def read_urls(path):
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.startswith("#")]


class ResultWriter:
    """Writes collector output and artifacts for every successful crawl."""

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.rows = []
        self.failures = []
        for sub in ("screenshots", "html", "sri"):
            (output_dir / sub).mkdir(parents=True, exist_ok=True)

    def on_data(self, url, result):
        name = CrawlSession.hostname_of(url)
        (self.output_dir / f"{name}.json").write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        if result.screenshot:
            (self.output_dir / "screenshots" / f"{name}.png").write_bytes(result.screenshot)
        if result.html is not None:
            (self.output_dir / "html" / f"{name}.html").write_text(result.html, encoding="utf-8")
        (self.output_dir / "sri" / f"{name}.json").write_text(json.dumps(result.sri_values, indent=2), encoding="utf-8")

        requests = (result.data or {}).get("requests") or []
        self.rows.append([
            result.rank,
            url,
            "timeout" if result.timeout else "ok",
            len(requests),
            f"{(result.test_finished - result.test_started) / 1000:.1f}s",
        ])

    def on_failure(self, url, error):
        self.failures.append({"url": url, "error": str(error)})
        self.rows.append(["-", url, "failed", 0, "-"])

    def finish(self):
        (self.output_dir / "failures.json").write_text(json.dumps(self.failures, indent=2), encoding="utf-8")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Headless browser request tracker")
    parser.add_argument("-i", "--input", required=True, help="File with one URL per line")
    parser.add_argument("-o", "--output", default="output", help="Output directory")
    parser.add_argument("-n", "--crawlers", type=int, default=None, help="Number of parallel crawlers")
    parser.add_argument("--mobile", action="store_true", help="Emulate a mobile device")
    parser.add_argument("--third-party-only", action="store_true", help="Drop first-party requests")
    parser.add_argument("--proxy", default=None, help="Proxy server, e.g. http://host:port")
    parser.add_argument("--hash-bodies", action="store_true", help="Store SHA-256 of response bodies")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    if args.log_file:
        add_log_file(args.log_file)
    if args.verbose:
        logger.setLevel(logging.DEBUG)

    urls = read_urls(args.input)
    writer = ResultWriter(Path(args.output))

    summary = crawl_batch(
        urls,
        writer.on_data,
        collectors=[RequestCollector(save_response_hash=args.hash_bodies), TargetCollector()],
        failure_callback=writer.on_failure,
        number_of_crawlers=args.crawlers,
        filter_out_first_party=args.third_party_only,
        emulate_mobile=args.mobile,
        proxy_host=args.proxy,
    )
    writer.finish()

    print(tabulate(sorted(writer.rows, key=lambda r: str(r[0])),
                   headers=["Rank", "URL", "Status", "Requests", "Duration"],
                   tablefmt="grid"))
    print(f"\nCrawled {summary.succeeded}/{summary.total} "
          f"({summary.timed_out} timed out, {summary.failed} failed, {summary.attempts} attempts)")
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
