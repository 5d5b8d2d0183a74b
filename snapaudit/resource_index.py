"""
In-memory lookups over the account's AMIs, launch configurations, launch
templates and autoscaling groups.

Built once per run and only read afterwards, so it is safe to share
between threads without locking.
"""
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .models import AutoscalingGroup, Image, LaunchConfiguration, LaunchTemplateVersion

logger = logging.getLogger(__name__)


def _add(target: List[str], value: str) -> None:
    if value not in target:
        target.append(value)


class _ReferenceMap:
    """Launch configuration/template names keyed by the image and snapshot IDs they reference."""

    def __init__(self, entries: Iterable):
        self._order: Dict[str, int] = {}
        self._by_image: Dict[str, List[str]] = defaultdict(list)
        self._by_snapshot: Dict[str, List[str]] = defaultdict(list)
        for entry in entries:
            self._order.setdefault(entry.name, len(self._order))
            if entry.image_id:
                _add(self._by_image[entry.image_id], entry.name)
            for snapshot_id in entry.snapshot_ids:
                _add(self._by_snapshot[snapshot_id], entry.name)

    def referencing(self, image_id: Optional[str] = None, snapshot_id: Optional[str] = None) -> List[str]:
        """Names whose image is image_id OR whose block devices include snapshot_id."""
        names = set()
        if image_id:
            names.update(self._by_image.get(image_id, ()))
        if snapshot_id:
            names.update(self._by_snapshot.get(snapshot_id, ()))
        return sorted(names, key=self._order.__getitem__)

    def __len__(self) -> int:
        return len(self._order)


class ResourceIndex:
    """
    Lookup structures used to find what depends on a snapshot.

    Args:
        images: AMIs owned by the account
        launch_configs: All launch configurations
        launch_templates: Latest version of every launch template
        autoscaling_groups: All autoscaling groups
    """

    def __init__(
        self,
        images: List[Image],
        launch_configs: List[LaunchConfiguration],
        launch_templates: List[LaunchTemplateVersion],
        autoscaling_groups: List[AutoscalingGroup]
    ):
        self.images = list(images)
        self.launch_configs = list(launch_configs)
        self.launch_templates = list(launch_templates)
        self.autoscaling_groups = list(autoscaling_groups)

        self._images_by_snapshot: Dict[str, List[str]] = defaultdict(list)
        for image in self.images:
            for snapshot_id in image.snapshot_ids:
                _add(self._images_by_snapshot[snapshot_id], image.image_id)

        self._lc_refs = _ReferenceMap(self.launch_configs)
        self._lt_refs = _ReferenceMap(self.launch_templates)

        self._asgs_by_lc: Dict[str, List[str]] = defaultdict(list)
        self._asgs_by_lt: Dict[str, List[str]] = defaultdict(list)
        for asg in self.autoscaling_groups:
            if asg.launch_configuration_name:
                _add(self._asgs_by_lc[asg.launch_configuration_name], asg.name)
            if asg.launch_template_name:
                _add(self._asgs_by_lt[asg.launch_template_name], asg.name)

    @classmethod
    def build(cls, provider, account_id: str) -> "ResourceIndex":
        """Fetch everything the index needs from the provider."""
        logger.info("Grabbing launch configurations, launch templates, AMIs and autoscaling groups")
        index = cls(
            images=provider.list_images_owned_by(account_id),
            launch_configs=provider.list_launch_configurations(),
            launch_templates=provider.list_launch_template_latest_versions(),
            autoscaling_groups=provider.list_autoscaling_groups(),
        )
        logger.info(
            f"Resource index built: {len(index.images)} AMIs, {len(index._lc_refs)} launch configurations, "
            f"{len(index._lt_refs)} launch templates, {len(index.autoscaling_groups)} autoscaling groups"
        )
        return index

    def images_for_snapshot(self, snapshot_id: str) -> List[str]:
        """AMIs whose block-device mappings reference the snapshot."""
        return list(self._images_by_snapshot.get(snapshot_id, ()))

    def launch_configs_referencing(self, image_id: Optional[str] = None, snapshot_id: Optional[str] = None) -> List[str]:
        return self._lc_refs.referencing(image_id=image_id, snapshot_id=snapshot_id)

    def launch_templates_referencing(self, image_id: Optional[str] = None, snapshot_id: Optional[str] = None) -> List[str]:
        return self._lt_refs.referencing(image_id=image_id, snapshot_id=snapshot_id)

    def asgs_using_launch_config(self, name: str) -> List[str]:
        return list(self._asgs_by_lc.get(name, ()))

    def asgs_using_launch_template(self, name: str) -> List[str]:
        return list(self._asgs_by_lt.get(name, ()))
