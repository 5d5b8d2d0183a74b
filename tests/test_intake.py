"""
Tests for snapaudit/intake.py.

Covers:
- Date filtering (strictly before the cutoff)
- Empty filtered pages dropped without spawning work
- max_pages cap and truncation reporting
- Every page task finishing before run() returns
- Fail-fast on page task errors
"""
import os
import sys
import threading
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import ACCOUNT_ID, NEW, OLD, FakeProvider, make_snapshot
from snapaudit.intake import SnapshotIntake, filter_snapshots
from snapaudit.utils import ConfigurationError, ProviderError
from snapaudit.volumes import ExistingVolumes, VolumeResolver, make_volume_lookup

CUTOFF = datetime(2019, 1, 1, tzinfo=timezone.utc)


def make_intake(provider, max_pages=25, page_workers=2, queue_size=2, batch_size=2, tracker=None):
    resolver = VolumeResolver(make_volume_lookup(provider), ExistingVolumes(), batch_size, 4)
    return SnapshotIntake(
        provider,
        resolver,
        owner_id=ACCOUNT_ID,
        cutoff=CUTOFF,
        page_size=500,
        max_pages=max_pages,
        page_workers=page_workers,
        queue_size=queue_size,
        tracker=tracker,
    )


def page(prefix, count, start=OLD):
    return [make_snapshot(f"snap-{prefix}{i}", f"vol-{prefix}{i}", start=start) for i in range(count)]


class TestFilterSnapshots:

    def test_keeps_only_before_cutoff(self):
        snapshots = [
            make_snapshot('snap-old', 'vol-1', start=OLD),
            make_snapshot('snap-new', 'vol-2', start=NEW),
            make_snapshot('snap-edge', 'vol-3', start=CUTOFF),
        ]
        kept = filter_snapshots(snapshots, CUTOFF)
        assert [s['SnapshotId'] for s in kept] == ['snap-old']

    def test_naive_start_time_treated_as_utc(self):
        snapshots = [make_snapshot('snap-1', 'vol-1', start=datetime(2018, 12, 31, 23, 59))]
        assert len(filter_snapshots(snapshots, CUTOFF)) == 1

    def test_missing_start_time_skipped(self):
        snapshot = make_snapshot('snap-1', 'vol-1')
        del snapshot['StartTime']
        assert filter_snapshots([snapshot], CUTOFF) == []


class TestSnapshotIntake:

    def test_marks_has_volume_and_keeps_page_order(self):
        pages = [page('a', 3), page('b', 3), page('c', 2)]
        provider = FakeProvider(pages=pages, volumes={'vol-a1', 'vol-c0'})

        result = make_intake(provider).run()

        assert [r.snapshot_id for r in result.records] == [
            'snap-a0', 'snap-a1', 'snap-a2', 'snap-b0', 'snap-b1', 'snap-b2', 'snap-c0', 'snap-c1',
        ]
        assert {r.snapshot_id for r in result.records if r.has_volume} == {'snap-a1', 'snap-c0'}
        assert result.pages_read == 3
        assert result.snapshots_seen == 8
        assert result.truncated is False

    def test_filters_by_date(self):
        mixed = page('old', 2) + page('new', 3, start=NEW)
        provider = FakeProvider(pages=[mixed])

        result = make_intake(provider).run()

        assert [r.snapshot_id for r in result.records] == ['snap-old0', 'snap-old1']
        assert result.snapshots_seen == 5

    def test_empty_filtered_page_spawns_no_task(self):
        provider = FakeProvider(pages=[page('new', 4, start=NEW), page('old', 2)])

        result = make_intake(provider).run()

        assert len(result.records) == 2
        # Only the second page reached the volume resolver
        looked_up = {v for batch in provider.volume_batches for v in batch}
        assert looked_up == {'vol-old0', 'vol-old1'}

    def test_max_pages_truncates(self):
        provider = FakeProvider(pages=[page(str(i), 2) for i in range(5)])

        result = make_intake(provider, max_pages=2).run()

        assert result.pages_read == 2
        assert result.truncated is True
        assert len(result.records) == 4
        assert provider.pages_yielded == 2

    def test_cap_reached_on_last_page_is_not_truncation(self):
        provider = FakeProvider(pages=[page('a', 1), page('b', 1)])

        result = make_intake(provider, max_pages=2).run()

        assert result.truncated is False

    def test_truncated_when_last_allowed_page_reports_more(self):
        provider = FakeProvider(pages=[page('a', 1)], more_after_last=True)

        result = make_intake(provider, max_pages=1).run()

        assert result.truncated is True

    def test_no_snapshots(self):
        result = make_intake(FakeProvider(pages=[])).run()
        assert result.records == []
        assert result.pages_read == 0

    def test_all_page_tasks_finish_before_return(self):
        pages = [page(f"p{i}-", 3) for i in range(12)]
        provider = FakeProvider(pages=pages, delay=0.01)

        result = make_intake(provider, page_workers=3, queue_size=2, batch_size=1).run()

        assert len(result.records) == 36
        assert len(provider.volume_batches) == 36
        # No page task threads left running
        assert not [t for t in threading.enumerate() if t.name.startswith('snapshot-page')]

    def test_page_workers_bound_concurrency(self):
        pages = [page(f"p{i}-", 1) for i in range(10)]
        provider = FakeProvider(pages=pages, delay=0.02)

        make_intake(provider, page_workers=2, queue_size=1).run()

        # One volume batch per page, so lookups in flight never exceed page workers
        assert provider.max_active_lookups <= 2

    def test_failure_aborts_run(self):
        pages = [page(f"p{i}-", 2) for i in range(6)]
        provider = FakeProvider(
            pages=pages,
            fail={'existing_volumes': ProviderError('slow down', code='RequestLimitExceeded')},
        )

        with pytest.raises(ProviderError) as exc_info:
            make_intake(provider, page_workers=1, queue_size=1).run()
        assert exc_info.value.code == 'RequestLimitExceeded'

    def test_pagination_failure_propagates(self):
        provider = FakeProvider(fail={'iter_snapshot_pages': ProviderError('denied')})
        with pytest.raises(ProviderError):
            make_intake(provider).run()

    def test_tracker_receives_pages(self):
        class Tracker:
            def __init__(self):
                self.pages = []

            def add_page(self, page_size, in_scope):
                self.pages.append((page_size, in_scope))

        tracker = Tracker()
        provider = FakeProvider(pages=[page('a', 2) + page('n', 1, start=NEW), page('b', 1)])

        make_intake(provider, tracker=tracker).run()

        assert tracker.pages == [(3, 2), (1, 1)]

    @pytest.mark.parametrize("field", ['max_pages', 'page_workers', 'queue_size'])
    def test_invalid_settings(self, field):
        with pytest.raises(ConfigurationError):
            make_intake(FakeProvider(), **{field: 0})
