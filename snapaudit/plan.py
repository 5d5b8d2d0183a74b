"""
Aggregation and deletion planning.

Records are grouped by source volume (Bars). A group whose volume still
exists is retained whole; inside any other group each record is deletable
unless an autoscaling group uses it or it is shared out. Deletable records
feed an ordered plan: launch templates, then launch configurations, then
AMIs, then snapshots.
"""
import logging
from typing import Dict, List

from .models import DeletionPlan, SnapshotRecord, VolumeGroup
from .utils import dedupe

logger = logging.getLogger(__name__)


def group_by_volume(records: List[SnapshotRecord]) -> List[VolumeGroup]:
    """
    Group records by volume ID, in order of each volume's first appearance.

    Every record lands in exactly one group.
    """
    groups: Dict[str, VolumeGroup] = {}
    for record in records:
        group = groups.get(record.volume_id)
        if group is None:
            groups[record.volume_id] = VolumeGroup.start(record)
        else:
            group.add(record)
    return list(groups.values())


def build_plan(groups: List[VolumeGroup], rate_per_gb_month: float, truncated: bool = False) -> DeletionPlan:
    """
    Build the deletion plan from grouped records.

    Args:
        groups: Volume groups from group_by_volume()
        rate_per_gb_month: Snapshot storage price used for the estimate
        truncated: Whether intake stopped at its page cap

    Returns:
        DeletionPlan with deduplicated, ordered sequences
    """
    launch_templates: List[str] = []
    launch_configurations: List[str] = []
    images: List[str] = []
    snapshots: List[str] = []
    retained_volume = 0
    retained_shared = 0
    total_gb = 0

    for group in groups:
        if group.has_volume:
            retained_volume += len(group.records)
            continue

        group_deletable = False
        for record in group.records:
            if record.is_deletable:
                launch_templates.extend(record.launch_template_names)
                launch_configurations.extend(record.launch_config_names)
                images.extend(record.image_ids)
                snapshots.append(record.snapshot_id)
                group_deletable = True
            else:
                retained_shared += 1

        # Snapshots of one volume are costed once, at the first member's size
        if group_deletable:
            total_gb += group.first.volume_size

    plan = DeletionPlan(
        launch_templates=tuple(dedupe(launch_templates)),
        launch_configurations=tuple(dedupe(launch_configurations)),
        images=tuple(dedupe(images)),
        snapshots=tuple(dedupe(snapshots)),
        retained_because_volume_exists=retained_volume,
        retained_because_shared=retained_shared,
        total_reclaimable_gb=total_gb,
        rate_per_gb_month=rate_per_gb_month,
        truncated=truncated,
    )
    logger.info(
        f"Deletion plan: {len(plan.launch_templates)} launch templates, "
        f"{len(plan.launch_configurations)} launch configurations, {len(plan.images)} AMIs, "
        f"{len(plan.snapshots)} snapshots ({plan.total_reclaimable_gb} GB)"
    )
    return plan


def render_recommendations(plan: DeletionPlan, date_filter: str, max_pages: int = 0) -> List[str]:
    """Render the plan as the ordered recommendation text, one entry per line."""
    lines = [
        f"After analyzing the account we can see that there are {len(plan.snapshots)} snapshots "
        f"that can be deleted because they were created before {date_filter} and are not used in "
        f"any AutoScaling group or AMI sharing capacity. However, before these snapshots can be "
        f"deleted several other resources need to be deleted first. Below you can find the "
        f"ordered deletion plan:\n\n",
        "Some of the snapshots we need to delete are currently registered as AMIs or used in "
        "Launch Templates/Configs. However we've detected that those AMI's and Launch "
        "Templates/Configs are not used in any autoscaling group. This doesn't mean they're not "
        "being used by someone (e.g., referenced in a cloudformation template). You should be "
        "safe to delete them but you should always check to be sure\n\n"
        "If you feel comfortable then here's the plan:\n",
    ]
    sections = [
        ("Delete the following LaunchTemplates first:", plan.launch_templates),
        ("then delete the following LaunchConfigurations:", plan.launch_configurations),
        ("then delete the following AMIs:", plan.images),
        ("then finally delete the following Snapshots:", plan.snapshots),
    ]
    for heading, items in sections:
        lines.append(heading)
        lines.extend(f"\t{item}" for item in items)

    lines.append(
        f"{plan.retained_because_volume_exists} snapshots were spared because their EBS volume still exists"
    )
    lines.append(
        f"{plan.retained_because_shared} snapshots were spared because they were associated with an "
        f"autoscaling group, were shared directly to another account, or were registered as an AMI "
        f"that was shared to another account."
    )
    lines.append(
        f"Total size of eligible for deletion is {plan.total_reclaimable_gb} GB. "
        f"At a per GB-month rate of ${plan.rate_per_gb_month:f} "
        f"there is a potential savings of ${plan.estimated_savings:f}"
    )
    if plan.truncated:
        pages = f"first {max_pages}" if max_pages else "first"
        lines.append(
            f"WARNING: snapshot listing stopped after the {pages} pages (max_pages); "
            f"older snapshots beyond that point were not analyzed"
        )
    return lines
