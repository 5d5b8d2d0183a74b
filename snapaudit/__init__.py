"""
EBS snapshot audit library.
"""
# Import constants module for easy access
from . import constants
from .audit import AuditInput, SnapshotAudit
from .constants import (
    DEFAULT_DATE_FILTER,
    DEFAULT_EBS_SNAP_RATE,
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_VOLUME_BATCH_SIZE,
    VOLUME_LOOKUP_FILTER,
    VOLUME_LOOKUP_PER_ID,
)
from .models import DeletionPlan, SnapshotRecord, VolumeGroup
from .plan import build_plan, group_by_volume, render_recommendations
from .provider import AwsProvider
from .utils import (
    ConfigurationError,
    DateParseError,
    ProviderError,
    SnapshotAuditError,
    dedupe,
    is_rate_limited,
    make_batches,
    setup_logging,
)

__all__ = [
    # Constants
    'constants',
    'DEFAULT_DATE_FILTER',
    'DEFAULT_EBS_SNAP_RATE',
    'DEFAULT_MAX_PAGES',
    'DEFAULT_PAGE_SIZE',
    'DEFAULT_VOLUME_BATCH_SIZE',
    'VOLUME_LOOKUP_FILTER',
    'VOLUME_LOOKUP_PER_ID',
    # Audit
    'AuditInput',
    'SnapshotAudit',
    'AwsProvider',
    # Models
    'DeletionPlan',
    'SnapshotRecord',
    'VolumeGroup',
    # Planning
    'build_plan',
    'group_by_volume',
    'render_recommendations',
    # Errors
    'SnapshotAuditError',
    'ConfigurationError',
    'DateParseError',
    'ProviderError',
    'is_rate_limited',
    # Utils
    'dedupe',
    'make_batches',
    'setup_logging',
]
