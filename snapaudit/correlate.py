"""
Correlation and enrichment of snapshot records.

Each record gains the AMIs that map its snapshot, the launch
configurations/templates that reference either the snapshot or those AMIs,
the autoscaling groups driven by them, and the accounts the AMIs (and
optionally the snapshot itself) are shared with.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List

from .models import SnapshotRecord
from .resource_index import ResourceIndex
from .utils import ConfigurationError, dedupe

logger = logging.getLogger(__name__)


def fetch_share_permissions(lookup, resource_ids: Iterable[str], max_workers: int) -> Dict[str, List[str]]:
    """
    Call lookup(resource_id) for every distinct ID concurrently.

    Args:
        lookup: Provider method returning the accounts a resource is shared with
        resource_ids: Image or snapshot IDs
        max_workers: Maximum lookups in flight

    Returns:
        Dict mapping each ID to its list of accounts (or 'all')

    Raises:
        ProviderError: The first lookup failure; outstanding lookups are cancelled
    """
    if max_workers < 1:
        raise ConfigurationError(f"share workers must be at least 1, got {max_workers}")
    ids = dedupe(resource_ids)
    if not ids:
        return {}

    shares: Dict[str, List[str]] = {}
    with ThreadPoolExecutor(max_workers=min(max_workers, len(ids))) as executor:
        futures = {executor.submit(lookup, resource_id): resource_id for resource_id in ids}
        try:
            for future in as_completed(futures):
                shares[futures[future]] = future.result()
        except Exception:
            for future in futures:
                future.cancel()
            raise
    return shares


def link_dependents(record: SnapshotRecord, index: ResourceIndex) -> None:
    """Attach AMIs, launch configurations/templates and autoscaling groups to one record."""
    snapshot_id = record.snapshot_id
    image_ids = index.images_for_snapshot(snapshot_id)
    for image_id in image_ids:
        logger.debug(f"mapping {snapshot_id} to {image_id}")
    record.add_images(image_ids)

    # The raw snapshot ID is searched even when no AMI maps it
    record.add_launch_configs(index.launch_configs_referencing(snapshot_id=snapshot_id))
    record.add_launch_templates(index.launch_templates_referencing(snapshot_id=snapshot_id))
    for image_id in image_ids:
        record.add_launch_configs(index.launch_configs_referencing(image_id=image_id, snapshot_id=snapshot_id))
        record.add_launch_templates(index.launch_templates_referencing(image_id=image_id, snapshot_id=snapshot_id))

    for name in record.launch_config_names:
        record.add_autoscaling_groups(index.asgs_using_launch_config(name))
    for name in record.launch_template_names:
        record.add_autoscaling_groups(index.asgs_using_launch_template(name))


def enrich(
    records: List[SnapshotRecord],
    index: ResourceIndex,
    existing_volumes,
    provider,
    share_workers: int = 8,
    check_snapshot_sharing: bool = False
) -> None:
    """
    Enrich every record in place.

    Args:
        records: Snapshot records from the intake pipeline
        index: Resource index for the account
        existing_volumes: Volume IDs known to exist (supports `in`)
        provider: Source of share permissions
        share_workers: Concurrent share-permission lookups
        check_snapshot_sharing: Also read each snapshot's createVolumePermission

    Raises:
        ProviderError: If any share-permission lookup fails
    """
    logger.info(f"Correlating {len(records)} snapshots with AMIs, launch configurations and templates")
    for record in records:
        record.has_volume = record.volume_id in existing_volumes
        link_dependents(record, index)

    image_ids = [image_id for record in records for image_id in record.image_ids]
    image_shares = fetch_share_permissions(provider.get_image_share_permissions, image_ids, share_workers)
    logger.info(f"Checked launch permissions for {len(image_shares)} AMIs")
    for record in records:
        for image_id in record.image_ids:
            record.add_shared_accounts(image_shares.get(image_id, []))

    if check_snapshot_sharing:
        snapshot_shares = fetch_share_permissions(
            provider.get_snapshot_share_permissions,
            [record.snapshot_id for record in records],
            share_workers
        )
        logger.info(f"Checked create-volume permissions for {len(snapshot_shares)} snapshots")
        for record in records:
            record.add_shared_accounts(snapshot_shares.get(record.snapshot_id, []))

    associated = sum(1 for r in records if not r.is_deletable)
    logger.info(f"{associated} snapshots are used by an autoscaling group or shared")
