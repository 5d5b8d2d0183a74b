"""
Snapshot intake pipeline.

Pages of snapshots are read from DescribeSnapshots, filtered by start time
and pushed onto a bounded work queue. Each queued page gets one enrichment
task on a bounded thread pool; the task resolves the page's volumes and
marks every record's has_volume flag. The pipeline completes only after
every spawned task has finished.
"""
import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .models import IntakeResult, SnapshotRecord
from .utils import ConfigurationError, ProgressTracker, as_utc, format_date
from .volumes import VolumeResolver

logger = logging.getLogger(__name__)

QueuedPage = Tuple[int, List[Dict[str, Any]]]


def filter_snapshots(snapshots: List[Dict[str, Any]], cutoff: datetime) -> List[Dict[str, Any]]:
    """Keep only snapshots started strictly before the cutoff."""
    cutoff = as_utc(cutoff)
    return [
        s for s in snapshots
        if s.get('StartTime') is not None and as_utc(s['StartTime']) < cutoff
    ]


class SnapshotIntake:
    """
    Paginate, filter and enrich the account's snapshots.

    Args:
        provider: Source of snapshot pages (see AwsProvider)
        resolver: Volume resolver shared by every page task
        owner_id: Account whose snapshots are read
        cutoff: Snapshots started on or after this are ignored
        page_size: Snapshots requested per page
        max_pages: Safety cap on pages read
        page_workers: Maximum page tasks running at once
        queue_size: Capacity of the work queue
        tracker: Optional progress display
    """

    def __init__(
        self,
        provider,
        resolver: VolumeResolver,
        owner_id: str,
        cutoff: datetime,
        page_size: int,
        max_pages: int,
        page_workers: int = 4,
        queue_size: int = 10,
        tracker: Optional[ProgressTracker] = None
    ):
        if max_pages < 1:
            raise ConfigurationError(f"max pages must be at least 1, got {max_pages}")
        if page_workers < 1:
            raise ConfigurationError(f"page workers must be at least 1, got {page_workers}")
        if queue_size < 1:
            raise ConfigurationError(f"queue size must be at least 1, got {queue_size}")
        self.provider = provider
        self.resolver = resolver
        self.owner_id = owner_id
        self.cutoff = as_utc(cutoff)
        self.page_size = page_size
        self.max_pages = max_pages
        self.page_workers = page_workers
        self.queue_size = queue_size
        self.tracker = tracker

        self.pages_read = 0
        self.snapshots_seen = 0
        self.truncated = False

        self._failure_lock = threading.Lock()
        self._failure: Optional[BaseException] = None

    def iter_filtered_pages(self) -> Iterator[List[Dict[str, Any]]]:
        """
        Yield each page's snapshots that pass the date filter.

        Pages with nothing left after filtering are skipped. Stops when the
        API has no more pages or max_pages pages have been read; in the
        latter case self.truncated is set if more pages were available.
        """
        for page in self.provider.iter_snapshot_pages(self.owner_id, self.page_size):
            self.pages_read += 1
            self.snapshots_seen += len(page.snapshots)
            filtered = filter_snapshots(page.snapshots, self.cutoff)
            logger.info(
                f"Filtered snapshots page {self.pages_read} by date "
                f"(pre-filter={len(page.snapshots)}, post-filter={len(filtered)})"
            )
            if self.tracker:
                self.tracker.add_page(len(page.snapshots), len(filtered))

            if filtered:
                yield filtered

            if self.pages_read >= self.max_pages:
                if page.has_more:
                    self.truncated = True
                    logger.warning(
                        f"Stopped after {self.pages_read} pages (max_pages={self.max_pages}); "
                        f"more snapshots exist and were not analyzed"
                    )
                break

    def run(self) -> IntakeResult:
        """
        Run the pipeline to completion.

        Raises:
            ProviderError: If any page read or volume lookup fails
        """
        logger.info(
            f"Reading snapshots owned by {self.owner_id} started before "
            f"{format_date(self.cutoff)} (page_size={self.page_size}, max_pages={self.max_pages})"
        )
        work_queue: "queue.Queue[QueuedPage]" = queue.Queue(maxsize=self.queue_size)
        futures: List[Future] = []

        with ThreadPoolExecutor(max_workers=self.page_workers, thread_name_prefix='snapshot-page') as executor:
            try:
                for index, page in enumerate(self.iter_filtered_pages()):
                    self._raise_if_failed()
                    # Blocks while the queue is full
                    work_queue.put((index, page))
                    future = executor.submit(self._enrich_page, work_queue)
                    future.add_done_callback(self._record_failure)
                    futures.append(future)

                # Global barrier: every spawned page task, not just an empty queue
                logger.debug(f"Waiting for {len(futures)} page tasks")
                pages = [future.result() for future in as_completed(futures)]
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        work_queue.join()
        logger.debug("Closed work queue")

        records: List[SnapshotRecord] = []
        for _index, page_records in sorted(pages, key=lambda p: p[0]):
            records.extend(page_records)

        logger.info(f"Total snapshots analyzed: {self.snapshots_seen}")
        logger.info(f"Total snapshots post date filter: {len(records)}")
        return IntakeResult(
            records=records,
            pages_read=self.pages_read,
            snapshots_seen=self.snapshots_seen,
            truncated=self.truncated,
        )

    def _enrich_page(self, work_queue: "queue.Queue[QueuedPage]") -> Tuple[int, List[SnapshotRecord]]:
        """Consume one page: build records, resolve their volumes, mark has_volume."""
        index, snapshots = work_queue.get()
        try:
            records = [SnapshotRecord(snapshot=s) for s in snapshots]
            logger.debug(f"Built page of {len(records)} nuggets")
            self.resolver.resolve(r.volume_id for r in records if r.volume_id)
            for record in records:
                record.has_volume = record.volume_id in self.resolver.existing
            logger.debug(f"Page {index + 1}: {sum(r.has_volume for r in records)} snapshots still have a volume")
            return index, records
        finally:
            work_queue.task_done()

    def _record_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            with self._failure_lock:
                if self._failure is None:
                    self._failure = exc

    def _raise_if_failed(self) -> None:
        # Stop paginating as soon as any page task has failed
        with self._failure_lock:
            failure = self._failure
        if failure is not None:
            raise failure
