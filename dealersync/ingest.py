"""Command-line entrypoint for scraping listings and operating the job queue."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import ProxyConfig, SyncConfig
from .jobs import JobError
from .runtime import build_runtime
from .sites import list_sites

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db-url", type=str, default=None, help="SQLAlchemy database URL (default: in-memory)")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for failure logs")


def build_arg_parser() -> argparse.ArgumentParser:
    available_sites = list_sites()
    if not available_sites:
        raise RuntimeError("No sites registered for scraping")

    parser = argparse.ArgumentParser(description="Scrape dealer listings and sync them into the vehicle store")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scrape = subparsers.add_parser("scrape", help="Scrape a batch of listing URLs")
    _add_common_arguments(scrape)
    scrape.add_argument("urls", nargs="*", help="Listing URLs to scrape in order")
    scrape.add_argument("--urls-file", type=Path, default=None, help="File with one listing URL per line")
    scrape.add_argument("--org", type=str, required=True, help="Organization that owns the scraped vehicles")
    scrape.add_argument("--assigned-user", type=str, default=None, help="User the vehicles are assigned to")
    scrape.add_argument(
        "--site",
        choices=available_sites,
        default=None,
        help="Force a site scraper instead of matching on the URL host",
    )
    scrape.add_argument("--use-browser", action="store_true", help="Render pages with Playwright")
    scrape.add_argument("--per-url-delay", type=float, default=None, help="Seconds to wait between URLs")
    scrape.add_argument("--proxy", type=str, help="Proxy endpoint in ip:port[:key] format")
    scrape.add_argument("--proxy-scheme", type=str, default="http", help="Proxy scheme (default: http)")
    scrape.add_argument("--proxy-change-url", type=str, help="API endpoint to trigger proxy IP rotation")

    sweep = subparsers.add_parser("sweep", help="Mark overdue scheduled jobs as stuck")
    _add_common_arguments(sweep)

    run_due = subparsers.add_parser("run-due", help="Run scheduled jobs that are due")
    _add_common_arguments(run_due)
    run_due.add_argument("--limit", type=int, default=None, help="Maximum number of jobs to run")

    requeue = subparsers.add_parser("requeue", help="Requeue and reschedule a stuck or failed job")
    _add_common_arguments(requeue)
    requeue.add_argument("job_id", help="Identifier of the job to requeue")
    requeue.add_argument("--no-schedule", action="store_true", help="Leave the job queued")

    return parser


def _read_urls(args: argparse.Namespace) -> list[str]:
    urls = list(args.urls or [])
    if args.urls_file is not None:
        with args.urls_file.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if line and not line.startswith("#"):
                    urls.append(line)
    return urls


def build_config(args: argparse.Namespace) -> SyncConfig:
    config = SyncConfig.from_env()
    if args.db_url:
        config.db_url = args.db_url
    if args.log_dir is not None:
        config.log_dir = args.log_dir
    if getattr(args, "use_browser", False):
        config.browser.enabled = True
    per_url_delay = getattr(args, "per_url_delay", None)
    if per_url_delay is not None:
        config.rate_limit.per_url_delay = max(0.0, per_url_delay)
    proxy_value = getattr(args, "proxy", None)
    if proxy_value:
        try:
            config.proxy = ProxyConfig.from_endpoint(
                proxy_value,
                scheme=args.proxy_scheme,
                change_ip_url=args.proxy_change_url,
            )
        except ValueError as exc:
            raise ValueError(f"Invalid proxy configuration: {exc}") from exc
    return config


def _print_json(payload: object) -> None:
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    urls: list[str] = []
    if args.command == "scrape":
        urls = _read_urls(args)
        if not urls:
            parser.error("No URLs given; pass them as arguments or with --urls-file")

    config.ensure_directories()
    with build_runtime(config) as runtime:
        if args.command == "scrape":
            report = runtime.orchestrator.run_batch(urls, args.org, args.assigned_user, args.site)
            _print_json(report.to_payload())
            return 0 if report.failed == 0 else 1

        if args.command == "sweep":
            marked = runtime.scheduler.sweep_stuck()
            _print_json({"stuck": [job.id for job in marked]})
            return 0

        if args.command == "run-due":
            finished = runtime.orchestrator.run_due_jobs(limit=args.limit)
            _print_json([job.to_payload() for job in finished])
            return 0

        try:
            job = runtime.scheduler.requeue(args.job_id)
            if not args.no_schedule:
                job = runtime.scheduler.schedule(job.id)
        except JobError as exc:
            LOGGER.error("Cannot requeue %s: %s", args.job_id, exc)
            return 1
        _print_json(job.to_payload())
        return 0


__all__ = ["build_arg_parser", "build_config", "configure_logging", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
