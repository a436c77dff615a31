#!/usr/bin/env python3
"""
TVMaze to Umbraco Heartcore migration v1.0.0

Downloads the TVMaze show index and creates one Heartcore content item per
show under a configured parent node, optionally with its poster attached in
the same request, then optionally publishes the new items.

Phases:
    1. Download    - GET api.tvmaze.com/shows?page=N until an empty page
    2. Startup     - validate the parent node, index existing children by showId
    3. Upload      - parallel, rate-limited create/update/skip per show
    4. Publish     - optional, every created item for every import culture

Environment Variables:
    HEARTCORE_PROJECT_ALIAS: Heartcore project alias (required)
    HEARTCORE_MANAGEMENT_API_KEY: Management API key (required)
    HEARTCORE_SHOWS_PARENT_KEY: Key of the TV shows container (required)
    HEARTCORE_IMPORT_CULTURES: ';'-separated cultures (default: en-US)
    HEARTCORE_RPS / HEARTCORE_MAX_DEGREE / HEARTCORE_TAKE: throughput and test limits
    LOG_LEVEL: Logging level (default: INFO)
    STRUCTURED_LOGGING: Emit JSON log lines when "true"
    LOG_FILE: Also write JSON lines to this rotating file

See config.HeartcoreOptions for the full list.
"""

import argparse
import dataclasses
import logging
import os
import signal
import sys
import threading
import time
from typing import List, Optional

import requests

from config import ConfigurationError, HeartcoreOptions
from content_index import ExistingContentIndex
from heartcore_client import HeartcoreClient
from http_client import TokenBucketRateLimiter, create_session
from images import ImageFetcher
from logging_config import configure_logging
from metrics import metrics
from models import TVMazeShow
from pipeline import CreatedKeys, MigrationPipeline, RunCounters, order_shows
from translator import Translator
from tvmaze_client import TVMazeClient
from upsert import UpsertService

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130
MAX_LISTED_FAILURES = 20


def _elapsed(seconds: float) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def install_interrupt_handler(cancel_event: threading.Event) -> None:
    """
    First Ctrl-C sets the cancellation event so workers finish their current
    show as failed; a second one restores the default handler and aborts.
    """
    def handler(signum, frame):
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        print("\nCancelling... (press Ctrl-C again to abort immediately)")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)


def load_options(args) -> HeartcoreOptions:
    """Read options from the environment and apply command-line overrides."""
    options = HeartcoreOptions.from_environment()
    overrides = {}
    if getattr(args, "take", None) is not None:
        overrides["take"] = args.take
    if getattr(args, "no_publish", False):
        overrides["publish_immediately"] = False
    if overrides:
        options = dataclasses.replace(options, **overrides)
    return options.validate()


def build_client(options: HeartcoreOptions) -> HeartcoreClient:
    session = create_session(
        timeout=options.http_timeout,
        pool_size=options.worker_count,
        max_retries=0,
    )
    return HeartcoreClient(options.project_alias, options.api_key, session=session)


def download_shows(start_page: int = 0) -> List[TVMazeShow]:
    """Phase 1: the full TVMaze show index."""
    print("Downloading TVMaze show index...")
    start = time.monotonic()
    client = TVMazeClient()
    try:
        shows = client.fetch_all_shows(start_page=start_page)
    finally:
        client.close()
    print(f"Downloaded {len(shows)} shows in {_elapsed(time.monotonic() - start)}\n")
    return shows


def connect(options: HeartcoreOptions, client: HeartcoreClient) -> Optional[ExistingContentIndex]:
    """
    Phase 2: validate the parent node and index existing children.

    Returns:
        The index, or None if Heartcore is unreachable (fatal)
    """
    try:
        client.validate_parent(options.shows_parent_key)
    except requests.RequestException as e:
        print(f"Heartcore connectivity failed: {e}")
        return None
    print("Heartcore connectivity OK\n")

    print("Checking for existing shows...")
    try:
        index = ExistingContentIndex.from_remote(client, options.shows_parent_key)
    except requests.RequestException as e:
        print(f"Could not list existing shows: {e}")
        return None
    print(f"Found {len(index)} existing shows\n")
    return index


def print_failures(failures) -> None:
    if not failures:
        return
    print(f"\nFailed shows ({len(failures)}):")
    for result in failures[:MAX_LISTED_FAILURES]:
        print(f"  {result.show_id} - {result.name}: {result.reason}")
    if len(failures) > MAX_LISTED_FAILURES:
        print(f"  ... and {len(failures) - MAX_LISTED_FAILURES} more")


def cmd_migrate(args) -> int:
    try:
        options = load_options(args)
    except ConfigurationError as e:
        print("Missing or invalid Heartcore configuration:")
        for problem in e.problems:
            print(f"  - {problem}")
        return EXIT_FATAL

    logger.info(f"Starting TVMaze to Heartcore migration: {options.describe()}")
    cancel_event = threading.Event()
    install_interrupt_handler(cancel_event)
    run_start = time.monotonic()

    try:
        shows = download_shows(start_page=args.start_page)
    except requests.RequestException as e:
        print(f"Downloading TVMaze shows failed: {e}")
        return EXIT_FATAL

    client = build_client(options)
    image_fetcher = ImageFetcher(pool_size=options.worker_count)
    translator = Translator.from_options(options) if options.use_translation else None
    try:
        index = connect(options, client)
        if index is None:
            return EXIT_FATAL

        to_process = order_shows(shows, options.take)

        if args.dry_run:
            existing = sum(1 for show in to_process if show.source_id in index)
            print(f"Dry run: {len(to_process) - existing} shows would be created, "
                  f"{existing} already exist (policy: {options.existing_policy.value})")
            return EXIT_OK

        limiter = TokenBucketRateLimiter(options.requests_per_second)
        counters = RunCounters()
        created_keys = CreatedKeys()
        service = UpsertService(
            client=client,
            options=options,
            limiter=limiter,
            index=index,
            created_keys=created_keys,
            image_fetcher=image_fetcher,
            translator=translator,
            cancel_event=cancel_event,
        )
        pipeline = MigrationPipeline(
            service, client, options, limiter,
            counters=counters, created_keys=created_keys, cancel_event=cancel_event,
        )

        print(f"Processing {len(to_process)} shows with {options.worker_count} parallel tasks...\n")
        upload = pipeline.run_upserts(to_process)
        print(f"\nUpload complete: {counters.created} created, {counters.updated} updated, "
              f"{counters.skipped} skipped, {counters.failed} failed in {_elapsed(upload.elapsed)}")
        print_failures(upload.failures)

        if options.publish_immediately and len(created_keys) and not cancel_event.is_set():
            print(f"\nPublishing {len(created_keys)} shows...")
            publish = pipeline.publish_created()
            print(f"Published {len(created_keys)} shows in {_elapsed(publish.elapsed)}")

        print(f"\nTotal migration time: {_elapsed(time.monotonic() - run_start)}")
        print(f"Stats: {len(shows)} total shows, {counters.processed} migrated, "
              f"{counters.skipped} skipped, {counters.failed} failed")

        if args.verbose:
            print("\nMetrics:")
            for line in metrics.summary_lines():
                print(f"  {line}")

        return EXIT_INTERRUPTED if cancel_event.is_set() else EXIT_OK
    finally:
        client.close()
        image_fetcher.close()
        if translator is not None:
            translator.close()


def cmd_cleanup(args) -> int:
    """Delete migrated shows (and optionally media) under the configured nodes."""
    try:
        options = load_options(args)
    except ConfigurationError as e:
        print(f"Missing or invalid Heartcore configuration: {e}")
        return EXIT_FATAL

    if args.media and not options.media_folder_key:
        print("HEARTCORE_MEDIA_FOLDER_KEY is required for --media")
        return EXIT_FATAL

    client = build_client(options)
    try:
        index = connect(options, client)
        if index is None:
            return EXIT_FATAL

        entries = index.entries()
        media_keys = client.get_media_in_folder(options.media_folder_key) if args.media else []
        print(f"{len(entries)} shows" + (f" and {len(media_keys)} media items" if args.media else "")
              + " will be deleted")
        if not args.yes:
            print("Re-run with --yes to delete")
            return EXIT_OK

        limiter = TokenBucketRateLimiter(options.requests_per_second)
        deleted = 0
        for show_id, entry in entries.items():
            limiter.acquire()
            if client.delete_content(entry.key):
                deleted += 1
        print(f"Deleted {deleted}/{len(entries)} shows")

        if media_keys:
            deleted = 0
            for key in media_keys:
                limiter.acquire()
                if client.delete_media(key):
                    deleted += 1
            print(f"Deleted {deleted}/{len(media_keys)} media items")
        return EXIT_OK
    finally:
        client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tvmaze-heartcore",
        description="Migrate TVMaze shows into Umbraco Heartcore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s migrate --take 100
  %(prog)s migrate --dry-run
  %(prog)s cleanup --media --yes
        """
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging and metrics")
    parser.add_argument("--structured-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    # also accepted after the subcommand; SUPPRESS keeps the top-level value
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS)
    common.add_argument("--structured-logs", action="store_true", default=argparse.SUPPRESS)

    subparsers = parser.add_subparsers(dest="command")

    migrate = subparsers.add_parser(
        "migrate", parents=[common], help="Download and upsert shows (default)"
    )
    migrate.add_argument("--take", type=int, help="Only process the first N shows by id")
    migrate.add_argument("--start-page", type=int, default=0, help="First TVMaze page to download")
    migrate.add_argument("--dry-run", action="store_true", help="Report what would be created")
    migrate.add_argument("--no-publish", action="store_true", help="Skip the publish pass")
    migrate.set_defaults(func=cmd_migrate)

    cleanup = subparsers.add_parser("cleanup", parents=[common], help="Delete migrated shows")
    cleanup.add_argument("--media", action="store_true", help="Also delete media in the media folder")
    cleanup.add_argument("--yes", action="store_true", help="Actually delete")
    cleanup.set_defaults(func=cmd_cleanup)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        args = parser.parse_args(list(argv if argv is not None else sys.argv[1:]) + ["migrate"])

    structured = args.structured_logs or os.environ.get("STRUCTURED_LOGGING", "").lower() == "true"
    level = "DEBUG" if args.verbose else os.environ.get("LOG_LEVEL", "INFO")
    configure_logging(level=level, structured=structured, log_file=os.environ.get("LOG_FILE"))

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nAborted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
