"""
Constants for the EBS snapshot audit.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Byte/Size Conversion Constants
# =============================================================================

BYTES_PER_GB = 1024 ** 3

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_DATE_FILTER = "2019-01-01"
DATE_FORMAT = "%Y-%m-%d"

DEFAULT_MAX_PAGES = 25
DEFAULT_PAGE_SIZE = 500
DEFAULT_VOLUME_BATCH_SIZE = 30
DEFAULT_VOLUME_WORKERS = 8
DEFAULT_PAGE_WORKERS = 4
DEFAULT_QUEUE_SIZE = 10
DEFAULT_SHARE_WORKERS = 8

# USD per GB-month for EBS snapshot storage
DEFAULT_EBS_SNAP_RATE = 0.05

# DescribeSnapshots accepts MaxResults in this range
MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 1000

# =============================================================================
# Volume Lookup Modes
# =============================================================================

# One DescribeVolumes call per batch using the volume-id filter (misses are dropped)
VOLUME_LOOKUP_FILTER = "filter"
# One DescribeVolumes call per volume id (InvalidVolume.NotFound means absent)
VOLUME_LOOKUP_PER_ID = "per-id"
VOLUME_LOOKUP_MODES = (VOLUME_LOOKUP_FILTER, VOLUME_LOOKUP_PER_ID)

# =============================================================================
# AWS Constants
# =============================================================================

LATEST_TEMPLATE_VERSION = "$Latest"

VOLUME_NOT_FOUND_CODES = {'InvalidVolume.NotFound', 'InvalidVolumeID.Malformed'}

RATE_LIMIT_ERROR_CODES = {
    'RequestLimitExceeded', 'Throttling', 'ThrottlingException',
    'TooManyRequestsException',
}

# =============================================================================
# Output Files
# =============================================================================

DEFAULT_OUTFILE_RECOMMENDATIONS = "out-summary.txt"
DEFAULT_OUTFILE_NUGGETS = "out-nuggets.csv"
DEFAULT_OUTFILE_BARS = "out-bars.csv"

NUGGET_CSV_HEADERS = [
    "OwnerId", "SnapshotId", "ImageIds", "LaunchConfigNames",
    "LaunchTemplateNames-LATEST_VERSION_ONLY!",
    "ASGNames", "AMISharedWith", "HasVolume", "StartTime",
    "Tags", "VolumeSize", "Description",
]

BAR_CSV_HEADERS = ["OwnerId", "SnapshotIds", "HasVolume", "StartTime", "VolumeSize"]

# Separator for multi-valued CSV cells
LIST_SEPARATOR = "|"

# =============================================================================
# Configuration
# =============================================================================

ENV_PREFIX = "SNAPAUDIT_"
