"""
Tests for snapaudit/config.py.

Covers:
- Env var substitution in YAML values
- Environment, file and CLI layering (CLI wins)
- Defaults and type conversion
- Sample config round-trip through load_config
"""
import argparse
import os
import sys

import pytest
import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from snapaudit.config import (
    ENV_VAR_MAPPING,
    SETTINGS,
    _substitute_env_vars,
    generate_sample_config,
    load_config,
    load_config_file,
    load_env_config,
    merge_configs,
)
from snapaudit.constants import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE
from snapaudit.utils import ConfigurationError


def empty_args(**values):
    """Namespace shaped like the CLI's parsed args, everything unset."""
    args = argparse.Namespace(config=None)
    for arg_name, _key, _default, _convert in SETTINGS:
        setattr(args, arg_name, None)
    for name, value in values.items():
        setattr(args, name, value)
    return args


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """No default config files and no SNAPAUDIT_* variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('HOME', str(tmp_path))
    for env_var in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_var, raising=False)
    return tmp_path


def write_config(directory, text, name='audit.yaml'):
    path = directory / name
    path.write_text(text)
    os.chmod(path, 0o600)
    return str(path)


class TestSubstituteEnvVars:

    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv('AUDIT_PROFILE', 'prod')
        assert _substitute_env_vars('${AUDIT_PROFILE}') == 'prod'

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv('AUDIT_PROFILE', raising=False)
        assert _substitute_env_vars('${AUDIT_PROFILE:-default}') == 'default'
        assert _substitute_env_vars('${AUDIT_PROFILE}') == ''

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv('AUDIT_REGION', 'eu-west-1')
        data = {'aws': {'region': '${AUDIT_REGION}'}, 'items': ['${AUDIT_REGION}', 3]}
        assert _substitute_env_vars(data) == {'aws': {'region': 'eu-west-1'}, 'items': ['eu-west-1', 3]}


class TestLoadConfigFile:

    def test_missing_file(self, isolated):
        with pytest.raises(FileNotFoundError):
            load_config_file(str(isolated / 'nope.yaml'))

    def test_non_mapping_rejected(self, isolated):
        path = write_config(isolated, "- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_config_file(path)

    def test_empty_file_is_empty_config(self, isolated):
        path = write_config(isolated, "")
        assert load_config_file(path) == {}


class TestMergeConfigs:

    def test_later_wins_and_nested_merge(self):
        merged = merge_configs(
            {'snapshots': {'max_pages': 5, 'page_size': 100}, 'output': 'a'},
            {'snapshots': {'max_pages': 10}},
            {'output': None},
        )
        assert merged == {'snapshots': {'max_pages': 10, 'page_size': 100}, 'output': 'a'}


class TestLoadConfig:

    def test_defaults(self, isolated):
        args = empty_args()
        load_config(args)

        assert args.max_pages == DEFAULT_MAX_PAGES
        assert args.page_size == DEFAULT_PAGE_SIZE
        assert args.volume_lookup == 'filter'
        assert args.check_snapshot_sharing is False
        assert args.output == '.'
        assert args.profile is None

    def test_env_vars(self, isolated, monkeypatch):
        monkeypatch.setenv('SNAPAUDIT_MAX_PAGES', '40')
        monkeypatch.setenv('SNAPAUDIT_CHECK_SNAPSHOT_SHARING', 'yes')
        monkeypatch.setenv('SNAPAUDIT_EBS_SNAP_RATE', '0.04')

        assert load_env_config()['snapshots']['max_pages'] == '40'

        args = empty_args()
        load_config(args)
        assert args.max_pages == 40
        assert args.check_snapshot_sharing is True
        assert args.ebs_snap_rate == pytest.approx(0.04)

    def test_priority_cli_over_file_over_env(self, isolated, monkeypatch):
        monkeypatch.setenv('SNAPAUDIT_MAX_PAGES', '40')
        monkeypatch.setenv('SNAPAUDIT_PAGE_SIZE', '200')
        monkeypatch.setenv('SNAPAUDIT_QUEUE_SIZE', '3')
        path = write_config(isolated, "snapshots:\n  max_pages: 30\n  page_size: 300\n")

        args = empty_args(config=path, max_pages=20)
        load_config(args)

        assert args.max_pages == 20
        assert args.page_size == 300
        assert args.queue_size == 3

    def test_default_location_picked_up(self, isolated):
        write_config(isolated, "aws:\n  region: ap-south-1\n", name='snapaudit.yaml')

        args = empty_args()
        load_config(args)

        assert args.region == 'ap-south-1'

    def test_file_substitution(self, isolated, monkeypatch):
        monkeypatch.setenv('AUDIT_PROFILE', 'security')
        path = write_config(isolated, "aws:\n  profile: ${AUDIT_PROFILE:-default}\n")

        args = empty_args(config=path)
        load_config(args)

        assert args.profile == 'security'

    def test_bad_value(self, isolated):
        path = write_config(isolated, "snapshots:\n  max_pages: lots\n")
        with pytest.raises(ConfigurationError, match='snapshots.max_pages'):
            load_config(empty_args(config=path))


class TestSampleConfig:

    def test_sample_parses(self):
        sample = yaml.safe_load(generate_sample_config())

        assert sample['output'] == './audit'
        assert sample['snapshots']['max_pages'] == DEFAULT_MAX_PAGES
        assert sample['snapshots']['date_filter'] == '2019-01-01'
        assert sample['snapshots']['volume_lookup'] == 'filter'
        assert sample['snapshots']['check_snapshot_sharing'] is False

    def test_sample_loads_cleanly(self, isolated):
        path = write_config(isolated, generate_sample_config())

        args = empty_args(config=path)
        load_config(args)

        assert args.output == './audit'
        assert args.page_size == DEFAULT_PAGE_SIZE
        assert args.profile is None
