"""
Tests for snapaudit/resource_index.py.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import ACCOUNT_ID, FakeProvider
from snapaudit.models import AutoscalingGroup, Image, LaunchConfiguration, LaunchTemplateVersion
from snapaudit.resource_index import ResourceIndex


def sample_index():
    return ResourceIndex(
        images=[
            Image('ami-1', ('snap-1', 'snap-2')),
            Image('ami-2', ('snap-2',)),
            Image('ami-3', ()),
        ],
        launch_configs=[
            LaunchConfiguration('lc-by-image', image_id='ami-1'),
            LaunchConfiguration('lc-by-snapshot', image_id='ami-9', snapshot_ids=('snap-1',)),
            LaunchConfiguration('lc-both', image_id='ami-1', snapshot_ids=('snap-1', 'snap-1')),
            LaunchConfiguration('lc-unrelated', image_id='ami-3'),
        ],
        launch_templates=[
            LaunchTemplateVersion('lt-1', image_id='ami-2'),
            LaunchTemplateVersion('lt-2', image_id='', snapshot_ids=('snap-5',)),
        ],
        autoscaling_groups=[
            AutoscalingGroup('asg-1', launch_configuration_name='lc-by-image'),
            AutoscalingGroup('asg-2', launch_configuration_name='lc-by-image'),
            AutoscalingGroup('asg-3', launch_template_name='lt-1'),
            AutoscalingGroup('asg-4'),
        ],
    )


class TestResourceIndex:

    def test_images_for_snapshot(self):
        index = sample_index()
        assert index.images_for_snapshot('snap-2') == ['ami-1', 'ami-2']
        assert index.images_for_snapshot('snap-1') == ['ami-1']
        assert index.images_for_snapshot('snap-404') == []

    def test_launch_config_matches_image_or_snapshot(self):
        index = sample_index()
        assert index.launch_configs_referencing(image_id='ami-1', snapshot_id='snap-1') == [
            'lc-by-image', 'lc-by-snapshot', 'lc-both',
        ]

    def test_launch_config_match_on_snapshot_only(self):
        index = sample_index()
        assert index.launch_configs_referencing(snapshot_id='snap-1') == ['lc-by-snapshot', 'lc-both']

    def test_launch_config_match_on_image_only(self):
        index = sample_index()
        assert index.launch_configs_referencing(image_id='ami-3') == ['lc-unrelated']

    def test_empty_image_id_never_matches(self):
        index = sample_index()
        assert index.launch_templates_referencing(image_id='') == []

    def test_launch_templates(self):
        index = sample_index()
        assert index.launch_templates_referencing(image_id='ami-2') == ['lt-1']
        assert index.launch_templates_referencing(snapshot_id='snap-5') == ['lt-2']

    def test_asg_lookups(self):
        index = sample_index()
        assert index.asgs_using_launch_config('lc-by-image') == ['asg-1', 'asg-2']
        assert index.asgs_using_launch_template('lt-1') == ['asg-3']
        assert index.asgs_using_launch_config('lc-unrelated') == []

    def test_results_are_copies(self):
        index = sample_index()
        index.images_for_snapshot('snap-2').append('ami-x')
        assert index.images_for_snapshot('snap-2') == ['ami-1', 'ami-2']

    def test_build_from_provider(self):
        provider = FakeProvider(
            images=[Image('ami-1', ('snap-1',))],
            launch_configs=[LaunchConfiguration('lc-1', image_id='ami-1')],
            asgs=[AutoscalingGroup('asg-1', launch_configuration_name='lc-1')],
        )
        index = ResourceIndex.build(provider, ACCOUNT_ID)

        assert index.images_for_snapshot('snap-1') == ['ami-1']
        assert index.asgs_using_launch_config('lc-1') == ['asg-1']
        for name in ('list_images_owned_by', 'list_launch_configurations',
                     'list_launch_template_latest_versions', 'list_autoscaling_groups'):
            assert provider.calls[name] == 1
