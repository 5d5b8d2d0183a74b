"""
AWS describe/list calls used by the snapshot audit.

Every call is wrapped so that botocore failures surface as ProviderError.
Nothing here retries; throttling propagates to the caller like any other
failure.
"""
import logging
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

import boto3
from botocore.exceptions import ClientError

from .constants import LATEST_TEMPLATE_VERSION, VOLUME_NOT_FOUND_CODES
from .models import AutoscalingGroup, Image, LaunchConfiguration, LaunchTemplateVersion
from .utils import get_error_code, provider_errors

logger = logging.getLogger(__name__)


class SnapshotPage(NamedTuple):
    """One DescribeSnapshots page and whether the API reported more."""
    snapshots: List[Dict[str, Any]]
    has_more: bool


def _permission_accounts(permissions: List[Dict[str, Any]]) -> List[str]:
    """
    Flatten launch/create-volume permissions into account identifiers.

    A public share comes back as Group "all" and is kept as that literal.
    """
    accounts = []
    for perm in permissions:
        for key in ('Group', 'UserId', 'OrganizationArn', 'OrganizationalUnitArn'):
            if perm.get(key):
                accounts.append(perm[key])
    return accounts


class AwsProvider:
    """boto3-backed source of snapshots, volumes, images and launch resources."""

    def __init__(self, session: boto3.Session, region: Optional[str] = None):
        self.session = session
        self.region = region or session.region_name
        # Clients are thread-safe once created; sessions are not
        self.ec2 = session.client('ec2', region_name=self.region)
        self.autoscaling = session.client('autoscaling', region_name=self.region)
        self.sts = session.client('sts', region_name=self.region)

    # =========================================================================
    # Identity
    # =========================================================================

    def get_account_id(self) -> str:
        """Get AWS account ID."""
        with provider_errors('GetCallerIdentity'):
            return self.sts.get_caller_identity()['Account']

    # =========================================================================
    # Snapshots and Volumes
    # =========================================================================

    def iter_snapshot_pages(self, owner_id: str, page_size: int) -> Iterator[SnapshotPage]:
        """Yield DescribeSnapshots pages for snapshots owned by owner_id."""
        paginator = self.ec2.get_paginator('describe_snapshots')
        with provider_errors('DescribeSnapshots'):
            for page in paginator.paginate(
                OwnerIds=[owner_id],
                PaginationConfig={'PageSize': page_size}
            ):
                yield SnapshotPage(
                    snapshots=page.get('Snapshots', []),
                    has_more=bool(page.get('NextToken')),
                )

    def volume_exists(self, volume_id: str) -> bool:
        """
        Describe a single volume.

        DescribeVolumes fails the whole request when any requested ID is
        unknown, so a not-found error here just means the volume is gone.
        """
        with provider_errors('DescribeVolumes'):
            try:
                response = self.ec2.describe_volumes(VolumeIds=[volume_id])
            except ClientError as e:
                if get_error_code(e) not in VOLUME_NOT_FOUND_CODES:
                    raise
                logger.debug(f"Volume {volume_id} not found")
                return False
        return any(v.get('VolumeId') == volume_id for v in response.get('Volumes', []))

    def existing_volumes(self, volume_ids: List[str]) -> List[str]:
        """Return the subset of volume_ids that exist, using the volume-id filter."""
        if not volume_ids:
            return []
        found = []
        paginator = self.ec2.get_paginator('describe_volumes')
        with provider_errors('DescribeVolumes'):
            for page in paginator.paginate(Filters=[{'Name': 'volume-id', 'Values': list(volume_ids)}]):
                found.extend(v['VolumeId'] for v in page.get('Volumes', []) if v.get('VolumeId'))
        return found

    def get_snapshot_share_permissions(self, snapshot_id: str) -> List[str]:
        """Accounts (or 'all') that may create volumes from the snapshot."""
        with provider_errors('DescribeSnapshotAttribute'):
            response = self.ec2.describe_snapshot_attribute(
                Attribute='createVolumePermission',
                SnapshotId=snapshot_id
            )
        return _permission_accounts(response.get('CreateVolumePermissions', []))

    # =========================================================================
    # Images
    # =========================================================================

    def list_images_owned_by(self, account_id: str) -> List[Image]:
        """All AMIs owned by the account with their block-device snapshots."""
        images = []
        paginator = self.ec2.get_paginator('describe_images')
        with provider_errors('DescribeImages'):
            for page in paginator.paginate(Owners=[account_id]):
                images.extend(Image.from_api(image) for image in page.get('Images', []))
        logger.info(f"Found {len(images)} AMIs owned by {account_id}")
        return images

    def get_image_share_permissions(self, image_id: str) -> List[str]:
        """Accounts (or 'all') the AMI is shared with."""
        logger.debug(f"Describing launch permissions for {image_id}")
        with provider_errors('DescribeImageAttribute'):
            response = self.ec2.describe_image_attribute(
                Attribute='launchPermission',
                ImageId=image_id
            )
        return _permission_accounts(response.get('LaunchPermissions', []))

    # =========================================================================
    # Launch Configurations, Templates and Autoscaling Groups
    # =========================================================================

    def list_launch_configurations(self) -> List[LaunchConfiguration]:
        """All launch configurations in the region."""
        lcs = []
        paginator = self.autoscaling.get_paginator('describe_launch_configurations')
        with provider_errors('DescribeLaunchConfigurations'):
            for page in paginator.paginate():
                lcs.extend(LaunchConfiguration.from_api(lc) for lc in page.get('LaunchConfigurations', []))
        logger.info(f"Found {len(lcs)} launch configurations")
        return lcs

    def list_launch_template_latest_versions(self) -> List[LaunchTemplateVersion]:
        """The $Latest version of every launch template in the region."""
        versions = []
        paginator = self.ec2.get_paginator('describe_launch_templates')
        with provider_errors('DescribeLaunchTemplates'):
            for page in paginator.paginate():
                for template in page.get('LaunchTemplates', []):
                    response = self.ec2.describe_launch_template_versions(
                        LaunchTemplateId=template['LaunchTemplateId'],
                        Versions=[LATEST_TEMPLATE_VERSION]
                    )
                    versions.extend(
                        LaunchTemplateVersion.from_api(v)
                        for v in response.get('LaunchTemplateVersions', [])
                    )
        logger.info(f"Found {len(versions)} launch templates (latest versions)")
        return versions

    def list_autoscaling_groups(self) -> List[AutoscalingGroup]:
        """All autoscaling groups in the region."""
        asgs = []
        paginator = self.autoscaling.get_paginator('describe_auto_scaling_groups')
        with provider_errors('DescribeAutoScalingGroups'):
            for page in paginator.paginate():
                asgs.extend(AutoscalingGroup.from_api(asg) for asg in page.get('AutoScalingGroups', []))
        logger.info(f"Found {len(asgs)} autoscaling groups")
        return asgs
