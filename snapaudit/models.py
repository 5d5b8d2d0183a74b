"""
Data models for the EBS snapshot audit.

A Nugget (SnapshotRecord) is a snapshot enriched with the resources that
depend on it. A Bar (VolumeGroup) lumps together the Nuggets that share a
source volume so their savings can be estimated.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .constants import BYTES_PER_GB, LIST_SEPARATOR
from .utils import format_bool, format_date, format_tags, join_values


def _ebs_snapshot_ids(mappings: Optional[List[Dict[str, Any]]]) -> Tuple[str, ...]:
    """Collect EBS snapshot IDs from a block-device mapping list."""
    return tuple(
        m['Ebs']['SnapshotId']
        for m in mappings or []
        if m.get('Ebs', {}).get('SnapshotId')
    )


def _extend_unique(target: List[str], values: Iterable[str]) -> None:
    """Append values not already present, keeping insertion order."""
    for value in values:
        if value not in target:
            target.append(value)


# =============================================================================
# Resource Index Entries
# =============================================================================

@dataclass(frozen=True)
class Image:
    """An AMI owned by the account and the snapshots it maps."""
    image_id: str
    snapshot_ids: Tuple[str, ...] = ()

    @classmethod
    def from_api(cls, image: Dict[str, Any]) -> "Image":
        return cls(
            image_id=image.get('ImageId', ''),
            snapshot_ids=_ebs_snapshot_ids(image.get('BlockDeviceMappings')),
        )


@dataclass(frozen=True)
class LaunchConfiguration:
    name: str
    image_id: str = ""
    snapshot_ids: Tuple[str, ...] = ()

    @classmethod
    def from_api(cls, lc: Dict[str, Any]) -> "LaunchConfiguration":
        return cls(
            name=lc.get('LaunchConfigurationName', ''),
            image_id=lc.get('ImageId', ''),
            snapshot_ids=_ebs_snapshot_ids(lc.get('BlockDeviceMappings')),
        )


@dataclass(frozen=True)
class LaunchTemplateVersion:
    """Latest version of a launch template."""
    name: str
    image_id: str = ""
    snapshot_ids: Tuple[str, ...] = ()

    @classmethod
    def from_api(cls, version: Dict[str, Any]) -> "LaunchTemplateVersion":
        data = version.get('LaunchTemplateData', {})
        return cls(
            name=version.get('LaunchTemplateName', ''),
            image_id=data.get('ImageId', ''),
            snapshot_ids=_ebs_snapshot_ids(data.get('BlockDeviceMappings')),
        )


@dataclass(frozen=True)
class AutoscalingGroup:
    name: str
    launch_configuration_name: Optional[str] = None
    launch_template_name: Optional[str] = None

    @classmethod
    def from_api(cls, asg: Dict[str, Any]) -> "AutoscalingGroup":
        template = asg.get('LaunchTemplate') or {}
        template_name = template.get('LaunchTemplateName')
        if not template_name:
            # Mixed instances policies carry the template one level down
            spec = (
                asg.get('MixedInstancesPolicy', {})
                .get('LaunchTemplate', {})
                .get('LaunchTemplateSpecification', {})
            )
            template_name = spec.get('LaunchTemplateName')
        return cls(
            name=asg.get('AutoScalingGroupName', ''),
            launch_configuration_name=asg.get('LaunchConfigurationName'),
            launch_template_name=template_name,
        )


# =============================================================================
# Nuggets and Bars
# =============================================================================

@dataclass
class SnapshotRecord:
    """
    A snapshot plus the metadata gathered about it (a Nugget):
      * whether its original volume still exists
      * AMIs that map it, and the accounts those AMIs are shared with
      * launch configurations/templates that use it or its AMIs
      * autoscaling groups driven by those launch configurations/templates
    """
    snapshot: Dict[str, Any]
    has_volume: bool = False
    image_ids: List[str] = field(default_factory=list)
    launch_config_names: List[str] = field(default_factory=list)
    launch_template_names: List[str] = field(default_factory=list)
    autoscaling_group_names: List[str] = field(default_factory=list)
    shared_with_accounts: List[str] = field(default_factory=list)

    @property
    def snapshot_id(self) -> str:
        return self.snapshot.get('SnapshotId', '')

    @property
    def volume_id(self) -> str:
        return self.snapshot.get('VolumeId', '')

    @property
    def owner_id(self) -> str:
        return self.snapshot.get('OwnerId', '')

    @property
    def start_time(self) -> Optional[datetime]:
        return self.snapshot.get('StartTime')

    @property
    def volume_size(self) -> int:
        return int(self.snapshot.get('VolumeSize') or 0)

    @property
    def description(self) -> str:
        return self.snapshot.get('Description') or ''

    @property
    def tags(self) -> List[Dict[str, str]]:
        return self.snapshot.get('Tags', [])

    def add_images(self, image_ids: Iterable[str]) -> None:
        _extend_unique(self.image_ids, image_ids)

    def add_launch_configs(self, names: Iterable[str]) -> None:
        _extend_unique(self.launch_config_names, names)

    def add_launch_templates(self, names: Iterable[str]) -> None:
        _extend_unique(self.launch_template_names, names)

    def add_autoscaling_groups(self, names: Iterable[str]) -> None:
        _extend_unique(self.autoscaling_group_names, names)

    def add_shared_accounts(self, accounts: Iterable[str]) -> None:
        _extend_unique(self.shared_with_accounts, accounts)

    @property
    def is_deletable(self) -> bool:
        """No autoscaling group depends on it and nothing is shared out."""
        return not self.autoscaling_group_names and not self.shared_with_accounts

    def to_row(self) -> List[str]:
        """Render the snapshot as a Nugget CSV row."""
        return [
            self.owner_id,
            self.snapshot_id,
            join_values(self.image_ids),
            join_values(self.launch_config_names),
            join_values(self.launch_template_names),
            join_values(self.autoscaling_group_names),
            join_values(self.shared_with_accounts),
            format_bool(self.has_volume),
            format_date(self.start_time),
            format_tags(self.tags),
            str(self.volume_size),
            self.description,
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'owner_id': self.owner_id,
            'snapshot_id': self.snapshot_id,
            'volume_id': self.volume_id,
            'has_volume': self.has_volume,
            'start_time': format_date(self.start_time),
            'volume_size': self.volume_size,
            'description': self.description,
            'tags': format_tags(self.tags),
            'image_ids': list(self.image_ids),
            'launch_config_names': list(self.launch_config_names),
            'launch_template_names': list(self.launch_template_names),
            'autoscaling_group_names': list(self.autoscaling_group_names),
            'shared_with_accounts': list(self.shared_with_accounts),
        }


@dataclass
class VolumeGroup:
    """Snapshots lumped together by their source volume (a Bar)."""
    volume_id: str
    records: List[SnapshotRecord] = field(default_factory=list)
    has_volume: bool = False

    @classmethod
    def start(cls, record: SnapshotRecord) -> "VolumeGroup":
        return cls(volume_id=record.volume_id, records=[record], has_volume=record.has_volume)

    def add(self, record: SnapshotRecord) -> None:
        # Any member whose volume still exists retains the whole group
        self.records.append(record)
        self.has_volume = self.has_volume or record.has_volume

    @property
    def first(self) -> SnapshotRecord:
        return self.records[0]

    @property
    def snapshot_ids(self) -> List[str]:
        return [r.snapshot_id for r in self.records]

    def to_row(self) -> List[str]:
        """Render the group as a Bar CSV row."""
        return [
            self.first.owner_id,
            LIST_SEPARATOR.join(self.snapshot_ids),
            format_bool(self.has_volume),
            format_date(self.first.start_time),
            str(self.first.volume_size),
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'owner_id': self.first.owner_id,
            'volume_id': self.volume_id,
            'snapshot_ids': self.snapshot_ids,
            'has_volume': self.has_volume,
            'start_time': format_date(self.first.start_time),
            'volume_size': self.first.volume_size,
        }


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class DeletionPlan:
    """Ordered, deduplicated resources that can be removed, innermost dependency first."""
    launch_templates: Tuple[str, ...] = ()
    launch_configurations: Tuple[str, ...] = ()
    images: Tuple[str, ...] = ()
    snapshots: Tuple[str, ...] = ()
    retained_because_volume_exists: int = 0
    retained_because_shared: int = 0
    total_reclaimable_gb: int = 0
    rate_per_gb_month: float = 0.0
    truncated: bool = False

    @property
    def total_reclaimable_bytes(self) -> int:
        return self.total_reclaimable_gb * BYTES_PER_GB

    @property
    def estimated_savings(self) -> float:
        return self.total_reclaimable_gb * self.rate_per_gb_month

    def steps(self) -> List[Tuple[str, str]]:
        """(resource type, id) pairs in deletion order."""
        return (
            [('LaunchTemplate', name) for name in self.launch_templates]
            + [('LaunchConfiguration', name) for name in self.launch_configurations]
            + [('AMI', image_id) for image_id in self.images]
            + [('Snapshot', snapshot_id) for snapshot_id in self.snapshots]
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'launch_templates': list(self.launch_templates),
            'launch_configurations': list(self.launch_configurations),
            'images': list(self.images),
            'snapshots': list(self.snapshots),
            'steps': [list(step) for step in self.steps()],
            'retained_because_volume_exists': self.retained_because_volume_exists,
            'retained_because_shared': self.retained_because_shared,
            'total_reclaimable_gb': self.total_reclaimable_gb,
            'total_reclaimable_bytes': self.total_reclaimable_bytes,
            'rate_per_gb_month': self.rate_per_gb_month,
            'estimated_savings': self.estimated_savings,
            'truncated': self.truncated,
        }


@dataclass
class IntakeResult:
    """Everything the intake pipeline produced."""
    records: List[SnapshotRecord] = field(default_factory=list)
    pages_read: int = 0
    snapshots_seen: int = 0
    truncated: bool = False
