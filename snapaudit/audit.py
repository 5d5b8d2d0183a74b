"""
Snapshot audit orchestration.

SnapshotAudit runs the stages in order: account identity, snapshot intake,
resource index, correlation, grouping and planning. It then exposes the
results and the text/CSV/JSON exports.

Usage:
    audit = SnapshotAudit(AuditInput(session=session, logger=logger))
    plan = audit.start()
    audit.export_recommendations("out-summary.txt")
"""
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3

from .constants import (
    BAR_CSV_HEADERS,
    DEFAULT_DATE_FILTER,
    DEFAULT_EBS_SNAP_RATE,
    DEFAULT_MAX_PAGES,
    DEFAULT_OUTFILE_BARS,
    DEFAULT_OUTFILE_NUGGETS,
    DEFAULT_OUTFILE_RECOMMENDATIONS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_PAGE_WORKERS,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_SHARE_WORKERS,
    DEFAULT_VOLUME_BATCH_SIZE,
    DEFAULT_VOLUME_WORKERS,
    MAX_PAGE_SIZE,
    MIN_PAGE_SIZE,
    NUGGET_CSV_HEADERS,
    VOLUME_LOOKUP_FILTER,
    VOLUME_LOOKUP_MODES,
)
from .correlate import enrich
from .intake import SnapshotIntake
from .models import DeletionPlan, SnapshotRecord, VolumeGroup
from .plan import build_plan, group_by_volume, render_recommendations
from .provider import AwsProvider
from .resource_index import ResourceIndex
from .utils import (
    ConfigurationError,
    ProgressTracker,
    ProviderError,
    SnapshotAuditError,
    generate_run_id,
    get_timestamp,
    is_rate_limited,
    join_output_path,
    parse_date,
    write_csv,
    write_json,
    write_text,
)
from .volumes import ExistingVolumes, VolumeResolver, make_volume_lookup


@dataclass
class AuditInput:
    """
    Inputs for one audit run.

    Either session or provider must be given; provider takes precedence and
    exists so tests can run the whole pipeline against a fake.
    """
    session: Optional[boto3.Session] = None
    logger: Optional[logging.Logger] = None
    provider: Any = None
    region: Optional[str] = None
    date_filter: str = DEFAULT_DATE_FILTER
    max_pages: int = DEFAULT_MAX_PAGES
    page_size: int = DEFAULT_PAGE_SIZE
    volume_batch_size: int = DEFAULT_VOLUME_BATCH_SIZE
    volume_workers: int = DEFAULT_VOLUME_WORKERS
    page_workers: int = DEFAULT_PAGE_WORKERS
    queue_size: int = DEFAULT_QUEUE_SIZE
    share_workers: int = DEFAULT_SHARE_WORKERS
    volume_lookup: str = VOLUME_LOOKUP_FILTER
    check_snapshot_sharing: bool = False
    ebs_snap_rate: float = DEFAULT_EBS_SNAP_RATE
    show_progress: bool = False


class SnapshotAudit:
    """
    Analyze an account's EBS snapshots and build a deletion plan.

    Raises (at construction):
        ConfigurationError: Missing session/provider or logger, or an invalid setting
        DateParseError: date_filter is not YYYY-MM-DD
    """

    def __init__(self, audit_input: AuditInput):
        self._validate(audit_input)
        self.input = audit_input
        self.log = audit_input.logger
        self.cutoff: datetime = parse_date(audit_input.date_filter)
        self.run_id = generate_run_id()

        self.account_id = ""
        self.records: List[SnapshotRecord] = []
        self.groups: List[VolumeGroup] = []
        self.plan: Optional[DeletionPlan] = None
        self.truncated = False
        self.pages_read = 0
        self.snapshots_seen = 0
        self._recommendations: List[str] = []

    @staticmethod
    def _validate(audit_input: AuditInput) -> None:
        if audit_input.session is None and audit_input.provider is None:
            raise ConfigurationError("an AWS session (or provider) is required")
        if audit_input.logger is None:
            raise ConfigurationError("a logger is required")
        if not MIN_PAGE_SIZE <= audit_input.page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(
                f"page size must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}, got {audit_input.page_size}"
            )
        for name in ('max_pages', 'volume_batch_size', 'volume_workers',
                     'page_workers', 'queue_size', 'share_workers'):
            value = getattr(audit_input, name)
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")
        if audit_input.ebs_snap_rate < 0:
            raise ConfigurationError(f"ebs_snap_rate must not be negative, got {audit_input.ebs_snap_rate}")
        if audit_input.volume_lookup not in VOLUME_LOOKUP_MODES:
            raise ConfigurationError(
                f"Unknown volume lookup mode {audit_input.volume_lookup!r} "
                f"(expected one of: {', '.join(VOLUME_LOOKUP_MODES)})"
            )

    # =========================================================================
    # Run
    # =========================================================================

    def start(self) -> DeletionPlan:
        """
        Run the audit to completion.

        Returns:
            The deletion plan

        Raises:
            ProviderError: Any AWS call failed; nothing partial is kept
        """
        try:
            return self._run()
        except ProviderError as e:
            if is_rate_limited(e):
                self.log.warning(
                    f"detected {e.code or 'rate limiting'}. Try adjusting volume_batch_size higher "
                    f"(fewer, larger lookups) or volume_workers lower"
                )
            raise

    def _run(self) -> DeletionPlan:
        opts = self.input
        provider = opts.provider or AwsProvider(opts.session, region=opts.region)

        self.account_id = provider.get_account_id()
        self.log.info(f"Auditing snapshots for account {self.account_id} (run {self.run_id})")

        existing = ExistingVolumes()
        resolver = VolumeResolver(
            make_volume_lookup(provider, opts.volume_lookup),
            existing,
            batch_size=opts.volume_batch_size,
            max_workers=opts.volume_workers,
        )
        tracker_context = (
            ProgressTracker("EBS Snapshots", total_pages=opts.max_pages)
            if opts.show_progress else nullcontext()
        )
        with tracker_context as tracker:
            intake = SnapshotIntake(
                provider,
                resolver,
                owner_id=self.account_id,
                cutoff=self.cutoff,
                page_size=opts.page_size,
                max_pages=opts.max_pages,
                page_workers=opts.page_workers,
                queue_size=opts.queue_size,
                tracker=tracker,
            )
            result = intake.run()

        self.records = result.records
        self.truncated = result.truncated
        self.pages_read = result.pages_read
        self.snapshots_seen = result.snapshots_seen
        self.log.info(f"Found {len(existing)} existing volumes")

        index = ResourceIndex.build(provider, self.account_id)
        enrich(
            self.records,
            index,
            existing,
            provider,
            share_workers=opts.share_workers,
            check_snapshot_sharing=opts.check_snapshot_sharing,
        )

        self.groups = group_by_volume(self.records)
        self.plan = build_plan(self.groups, opts.ebs_snap_rate, truncated=self.truncated)
        self._recommendations = render_recommendations(self.plan, opts.date_filter, opts.max_pages)
        return self.plan

    def get_recommendations(self) -> List[str]:
        """Recommendation text, one entry per line."""
        return list(self._recommendations)

    def _require_plan(self) -> DeletionPlan:
        if self.plan is None:
            raise SnapshotAuditError("audit has not been run; call start() first")
        return self.plan

    # =========================================================================
    # Exports
    # =========================================================================

    def export_recommendations(self, path: str = DEFAULT_OUTFILE_RECOMMENDATIONS) -> None:
        self._require_plan()
        write_text(self._recommendations, path)

    def export_nuggets(self, path: str = DEFAULT_OUTFILE_NUGGETS) -> None:
        self._require_plan()
        write_csv([r.to_row() for r in self.records], path, NUGGET_CSV_HEADERS)

    def export_bars(self, path: str = DEFAULT_OUTFILE_BARS) -> None:
        self._require_plan()
        write_csv([g.to_row() for g in self.groups], path, BAR_CSV_HEADERS)

    def inventory_data(self, timestamp: Optional[str] = None) -> Dict[str, Any]:
        """Nuggets and Bars in the JSON inventory layout."""
        self._require_plan()
        return {
            'run_id': self.run_id,
            'timestamp': timestamp or get_timestamp(),
            'provider': 'aws',
            'account_id': self.account_id,
            'snapshot_count': len(self.records),
            'nuggets': [r.to_dict() for r in self.records],
            'bars': [g.to_dict() for g in self.groups],
        }

    def plan_data(self, timestamp: Optional[str] = None) -> Dict[str, Any]:
        """Deletion plan and run statistics in the JSON plan layout."""
        plan = self._require_plan()
        return {
            'run_id': self.run_id,
            'timestamp': timestamp or get_timestamp(),
            'provider': 'aws',
            'account_id': self.account_id,
            'date_filter': self.input.date_filter,
            'truncated': self.truncated,
            'stats': {
                'pages_read': self.pages_read,
                'max_pages': self.input.max_pages,
                'snapshots_seen': self.snapshots_seen,
                'snapshots_in_scope': len(self.records),
                'volume_groups': len(self.groups),
            },
            'plan': plan.to_dict(),
        }

    def export_json(self, directory: str = ".") -> List[str]:
        """
        Write the inventory and plan JSON documents.

        Returns:
            Paths written
        """
        timestamp = get_timestamp()
        file_ts = datetime.now(timezone.utc).strftime('%H%M%S')
        inventory_path = join_output_path(directory, f"snapaudit_inv_{file_ts}.json")
        plan_path = join_output_path(directory, f"snapaudit_plan_{file_ts}.json")
        write_json(self.inventory_data(timestamp), inventory_path)
        write_json(self.plan_data(timestamp), plan_path)
        return [inventory_path, plan_path]
