"""
Parallel upsert driver and publish pass.

Fans shows out over a bounded thread pool, aggregates one UpsertResult per
show into caller-owned RunCounters, and optionally publishes every newly
created item for each import culture afterwards.

Usage:
    pipeline = MigrationPipeline(service, client, options, limiter)
    report = pipeline.run_upserts(order_shows(shows, options.take))
    if options.publish_immediately:
        pipeline.publish_created()
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from constants import PROGRESS_EVERY
from http_client import TokenBucketRateLimiter
from metrics import MetricCounter, metrics
from models import TVMazeShow, UpsertOutcome, UpsertResult

logger = logging.getLogger(__name__)


class RunCounters:
    """
    Thread-safe outcome counters for one run.

    Created before the upsert pass, updated by workers, read for reporting.
    Never reset mid-run.
    """

    def __init__(self):
        self._counters: Dict[UpsertOutcome, MetricCounter] = {
            outcome: MetricCounter() for outcome in UpsertOutcome
        }

    def record(self, outcome: UpsertOutcome) -> None:
        self._counters[outcome].increment()

    def get(self, outcome: UpsertOutcome) -> int:
        return self._counters[outcome].value

    @property
    def created(self) -> int:
        return self.get(UpsertOutcome.CREATED)

    @property
    def updated(self) -> int:
        return self.get(UpsertOutcome.UPDATED)

    @property
    def skipped(self) -> int:
        return self.get(UpsertOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.get(UpsertOutcome.FAILED)

    @property
    def processed(self) -> int:
        """Created plus updated."""
        return self.created + self.updated

    @property
    def total(self) -> int:
        return sum(counter.value for counter in self._counters.values())

    def as_dict(self) -> Dict[str, int]:
        return {outcome.value: self.get(outcome) for outcome in UpsertOutcome}


class CreatedKeys:
    """Append-only, thread-safe collection of keys created during the run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: List[str] = []

    def add(self, key: str) -> None:
        with self._lock:
            self._keys.append(key)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


@dataclass
class PhaseReport:
    """Totals of one pipeline phase for the console summary."""
    name: str
    elapsed: float = 0.0
    counts: Dict[str, int] = field(default_factory=dict)
    failures: List[UpsertResult] = field(default_factory=list)

    def summary(self) -> str:
        minutes, seconds = divmod(int(self.elapsed), 60)
        parts = ", ".join(f"{v} {k}" for k, v in self.counts.items())
        return f"{self.name} complete: {parts} in {minutes:02d}:{seconds:02d}"


def order_shows(shows: Iterable[TVMazeShow], take: int = 0) -> List[TVMazeShow]:
    """
    Sort shows by id and keep the first `take` (all when take <= 0).

    TVMaze pages are not guaranteed to be ordered, so ids are re-sorted
    before processing.
    """
    ordered = sorted(shows, key=lambda s: s.id)
    if take and take > 0:
        return ordered[:take]
    return ordered


class MigrationPipeline:
    """
    Run the upsert worker for every show with bounded concurrency.

    Owns the run counters and the created-key set; both are handed to the
    upsert service so workers record into the same objects.
    """

    def __init__(
        self,
        service,
        client,
        options,
        limiter: TokenBucketRateLimiter,
        counters: Optional[RunCounters] = None,
        created_keys: Optional[CreatedKeys] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_every: int = PROGRESS_EVERY,
    ):
        """
        Args:
            service: UpsertService processing one show at a time
            client: HeartcoreClient used by the publish pass
            options: HeartcoreOptions
            limiter: Token bucket shared with the service
            counters: Outcome counters (new ones when omitted)
            created_keys: Created-key set; must be the one the service adds to
            cancel_event: Run cancellation signal
            progress_every: Outcomes between progress log lines
        """
        self.service = service
        self.client = client
        self.options = options
        self.limiter = limiter
        self.counters = counters or RunCounters()
        self.created_keys = created_keys if created_keys is not None else service.created_keys
        self.cancel_event = cancel_event or getattr(service, "cancel_event", None) or threading.Event()
        self.progress_every = max(1, progress_every)

    def _record(self, result: UpsertResult) -> None:
        self.counters.record(result.outcome)

        total = self.counters.total
        if total % self.progress_every == 0:
            logger.info(
                f"Progress: {total} shows processed "
                f"({self.counters.created} created, {self.counters.updated} updated, "
                f"{self.counters.skipped} skipped, {self.counters.failed} failed)"
            )

    def run_upserts(self, shows: Sequence[TVMazeShow]) -> PhaseReport:
        """
        Upsert every show, at most max_degree_of_parallelism at a time.

        Blocks until every show has an outcome. Shows that never started
        because the run was cancelled count as failed.

        Returns:
            PhaseReport with created/updated/skipped/failed counts
        """
        workers = self.options.worker_count
        logger.info(f"Processing {len(shows)} shows with {workers} parallel workers...")

        failures: List[UpsertResult] = []
        start = time.monotonic()

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upsert") as pool:
            futures = {pool.submit(self.service.upsert, show): show for show in shows}
            for future in as_completed(futures):
                show = futures[future]
                exc = future.exception()
                if exc is not None:
                    # upsert() returns failures; this only catches programming errors
                    logger.error(f"Worker crashed on {show.id} - {show.display_name}: {exc}")
                    result = UpsertResult(show.id, show.display_name, UpsertOutcome.FAILED, reason=str(exc))
                else:
                    result = future.result()

                if not result.ok:
                    failures.append(result)
                self._record(result)

        report = PhaseReport(
            name="Upload",
            elapsed=time.monotonic() - start,
            counts=self.counters.as_dict(),
            failures=failures,
        )
        logger.info(report.summary())
        return report

    def _publish_one(self, key: str) -> int:
        """Publish every import culture of one item. Returns cultures published."""
        published = 0
        for culture in self.options.import_cultures:
            if not self.limiter.acquire(self.cancel_event):
                break
            if self.client.publish(key, culture):
                published += 1
                metrics.inc("publish", labels={"status": "success"})
            else:
                metrics.inc("publish", labels={"status": "error"})
        return published

    def publish_created(self) -> PhaseReport:
        """
        Publish each created item for every import culture.

        Best effort: failures are logged and counted in metrics only, they
        never change the run counters.

        Returns:
            PhaseReport with items and cultures published
        """
        keys = self.created_keys.snapshot()
        report = PhaseReport(name="Publish", counts={"items": 0, "cultures published": 0})
        if not keys:
            return report

        logger.info(f"Publishing {len(keys)} shows...")
        start = time.monotonic()
        cultures_published = 0

        with ThreadPoolExecutor(max_workers=self.options.worker_count, thread_name_prefix="publish") as pool:
            futures = {pool.submit(self._publish_one, key): key for key in keys}
            for future in as_completed(futures):
                exc = future.exception()
                if exc is not None:
                    logger.warning(f"Publishing {futures[future]} failed: {exc}")
                    continue
                cultures_published += future.result()

        report.elapsed = time.monotonic() - start
        report.counts = {"items": len(keys), "cultures published": cultures_published}
        logger.info(report.summary())
        return report
