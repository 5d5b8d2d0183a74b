#!/usr/bin/env python3
"""
EBS Snapshot Audit - Snapshot Collector

Inventories the account's EBS snapshots, works out which ones can be
deleted, and writes an ordered deletion plan with a savings estimate.
Nothing is deleted.

Usage:
    # Current credentials and region
    python3 snapshot_collect.py

    # Specific profile, region and cutoff
    python3 snapshot_collect.py --profile prod --region us-west-2 --date-filter 2021-06-01

    # Write reports to S3
    python3 snapshot_collect.py --output s3://my-bucket/snapshot-audits/

    # Large accounts: read more pages and fewer, larger volume lookups
    python3 snapshot_collect.py --max-pages 100 --volume-batch-size 200
"""
import argparse
import logging
import os
import sys
from typing import Optional

# boto3 is pre-installed in AWS CloudShell
import boto3
import yaml

from snapaudit.audit import AuditInput, SnapshotAudit
from snapaudit.config import generate_sample_config, load_config
from snapaudit.constants import (
    DEFAULT_OUTFILE_BARS,
    DEFAULT_OUTFILE_NUGGETS,
    DEFAULT_OUTFILE_RECOMMENDATIONS,
    VOLUME_LOOKUP_MODES,
)
from snapaudit.utils import (
    ConfigurationError,
    DateParseError,
    ProviderError,
    join_output_path,
    print_summary_table,
    setup_logging,
)

logger = logging.getLogger(__name__)

EXIT_PROVIDER_ERROR = 1
EXIT_CONFIG_ERROR = 2


# =============================================================================
# Session Management
# =============================================================================

def get_session(profile: Optional[str] = None, region: Optional[str] = None) -> boto3.Session:
    """Create boto3 session. In CloudShell, credentials are automatic."""
    return boto3.Session(profile_name=profile, region_name=region)


# =============================================================================
# Arguments
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='EBS Snapshot Audit - find snapshots that are safe to delete',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Current credentials and region
  python3 snapshot_collect.py

  # Only snapshots started before 2021
  python3 snapshot_collect.py --date-filter 2021-01-01

  # Also retain snapshots shared directly to other accounts
  python3 snapshot_collect.py --check-snapshot-sharing

  # Describe volumes one ID at a time
  python3 snapshot_collect.py --volume-lookup per-id
"""
    )

    # Basic options
    parser.add_argument('--config', '-c', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Generate a sample config file and exit')
    parser.add_argument('--profile', help='AWS profile name (optional in CloudShell)')
    parser.add_argument('--region', help='AWS region to audit (default: session region)')
    parser.add_argument('--output', '-o', help='Output directory or S3 path (default: .)')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--no-progress', action='store_true',
                        help='Disable the progress display')

    # Audit options
    parser.add_argument(
        '--date-filter',
        help='Only consider snapshots started before this date, YYYY-MM-DD (default: 2019-01-01)'
    )
    parser.add_argument(
        '--max-pages',
        type=int,
        help='Stop after N snapshot pages; results are flagged as truncated (default: 25)'
    )
    parser.add_argument(
        '--page-size',
        type=int,
        help='Snapshots per DescribeSnapshots page, 5-1000 (default: 500)'
    )
    parser.add_argument(
        '--volume-batch-size',
        type=int,
        help='Volume IDs per existence lookup (default: 30)'
    )
    parser.add_argument(
        '--volume-workers',
        type=int,
        metavar='N',
        help='Concurrent volume lookups per page (default: 8)'
    )
    parser.add_argument(
        '--page-workers',
        type=int,
        metavar='N',
        help='Snapshot pages enriched in parallel (default: 4)'
    )
    parser.add_argument(
        '--queue-size',
        type=int,
        metavar='N',
        help='Pages buffered ahead of the workers (default: 10)'
    )
    parser.add_argument(
        '--share-workers',
        type=int,
        metavar='N',
        help='Concurrent AMI/snapshot permission lookups (default: 8)'
    )
    parser.add_argument(
        '--volume-lookup',
        choices=VOLUME_LOOKUP_MODES,
        help='filter: one filtered DescribeVolumes call per batch; '
             'per-id: one call per volume ID (default: filter)'
    )
    parser.add_argument(
        '--check-snapshot-sharing',
        action='store_true',
        default=None,
        help='Also retain snapshots shared via createVolumePermission'
    )
    parser.add_argument(
        '--ebs-snap-rate',
        type=float,
        help='USD per GB-month used for the savings estimate (default: 0.05)'
    )
    return parser


def print_plan_summary(audit: SnapshotAudit) -> None:
    plan = audit.plan
    rows = [
        ["Snapshots analyzed", f"{audit.snapshots_seen:,}"],
        ["Snapshots before cutoff", f"{len(audit.records):,}"],
        ["Launch templates to delete", str(len(plan.launch_templates))],
        ["Launch configurations to delete", str(len(plan.launch_configurations))],
        ["AMIs to delete", str(len(plan.images))],
        ["Snapshots to delete", str(len(plan.snapshots))],
        ["Spared (volume exists)", str(plan.retained_because_volume_exists)],
        ["Spared (ASG or shared)", str(plan.retained_because_shared)],
        ["Reclaimable GB", f"{plan.total_reclaimable_gb:,}"],
        ["Estimated savings / month", f"${plan.estimated_savings:,.2f}"],
    ]
    print_summary_table(rows)
    if plan.truncated:
        print(f"WARNING: only the first {audit.pages_read} snapshot pages were analyzed "
              f"(raise --max-pages to cover the rest)")


def main():
    parser = build_parser()
    args = parser.parse_args()

    # Handle --generate-config
    if args.generate_config:
        print(generate_sample_config())
        sys.exit(0)

    # Load configuration from file/env/args
    try:
        config = load_config(args)
    except (FileNotFoundError, ConfigurationError, yaml.YAMLError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    # Setup logging - write to file if output is local directory
    is_s3 = args.output.startswith('s3://')
    if not is_s3:
        os.makedirs(args.output, exist_ok=True)
    audit_logger = setup_logging(args.log_level, output_dir=None if is_s3 else args.output)
    if config:
        logger.debug(f"Loaded configuration: {list(config.keys())}")

    try:
        session = get_session(args.profile, args.region)
    except Exception as e:
        logger.error(f"Failed to create AWS session: {e}")
        logger.error("Check your AWS credentials are configured correctly.")
        sys.exit(EXIT_PROVIDER_ERROR)

    try:
        audit = SnapshotAudit(AuditInput(
            session=session,
            logger=audit_logger,
            region=args.region,
            date_filter=args.date_filter,
            max_pages=args.max_pages,
            page_size=args.page_size,
            volume_batch_size=args.volume_batch_size,
            volume_workers=args.volume_workers,
            page_workers=args.page_workers,
            queue_size=args.queue_size,
            share_workers=args.share_workers,
            volume_lookup=args.volume_lookup,
            check_snapshot_sharing=args.check_snapshot_sharing,
            ebs_snap_rate=args.ebs_snap_rate,
            show_progress=not args.no_progress,
        ))
    except (ConfigurationError, DateParseError) as e:
        logger.error(str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        audit.start()
    except ProviderError as e:
        logger.error(f"Snapshot audit failed: {e}")
        sys.exit(EXIT_PROVIDER_ERROR)

    output_base = args.output.rstrip('/') if is_s3 else args.output
    if is_s3:
        output_base = f"{output_base}/{audit.run_id}"

    audit.export_recommendations(join_output_path(output_base, DEFAULT_OUTFILE_RECOMMENDATIONS))
    audit.export_nuggets(join_output_path(output_base, DEFAULT_OUTFILE_NUGGETS))
    audit.export_bars(join_output_path(output_base, DEFAULT_OUTFILE_BARS))
    audit.export_json(output_base)

    print()
    for line in audit.get_recommendations():
        print(line)

    print(f"\nRun ID: {audit.run_id}")
    print_plan_summary(audit)
    print(f"Output: {output_base}/")


if __name__ == '__main__':
    main()
