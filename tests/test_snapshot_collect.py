"""
Tests for the snapshot_collect.py command line.

Covers:
- Argument parsing
- --generate-config
- Exit codes for configuration errors
- Full run against moto writing every report, locally and to S3
"""
import glob
import os
import re
import sys

import boto3
import pytest
from moto import mock_aws

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import snapshot_collect
from snapaudit.config import ENV_VAR_MAPPING


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run from an empty directory with no SNAPAUDIT_* overrides."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('HOME', str(tmp_path))
    for env_var in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_var, raising=False)
    return tmp_path


def run_main(monkeypatch, *argv):
    monkeypatch.setattr(sys, 'argv', ['snapshot_collect.py', *argv])
    snapshot_collect.main()


class TestParser:

    def test_unset_options_are_none(self):
        args = snapshot_collect.build_parser().parse_args([])
        assert args.max_pages is None
        assert args.volume_lookup is None
        assert args.check_snapshot_sharing is None
        assert args.no_progress is False

    def test_options(self):
        args = snapshot_collect.build_parser().parse_args([
            '--date-filter', '2021-06-01',
            '--max-pages', '50',
            '--volume-lookup', 'per-id',
            '--check-snapshot-sharing',
            '--ebs-snap-rate', '0.045',
        ])
        assert args.date_filter == '2021-06-01'
        assert args.max_pages == 50
        assert args.volume_lookup == 'per-id'
        assert args.check_snapshot_sharing is True
        assert args.ebs_snap_rate == pytest.approx(0.045)

    def test_unknown_lookup_mode_rejected(self):
        with pytest.raises(SystemExit):
            snapshot_collect.build_parser().parse_args(['--volume-lookup', 'bulk'])


class TestMain:

    def test_generate_config(self, workdir, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, '--generate-config')
        assert exc_info.value.code == 0
        assert 'snapshots:' in capsys.readouterr().out

    def test_missing_config_file(self, workdir, monkeypatch):
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, '--config', str(workdir / 'missing.yaml'))
        assert exc_info.value.code == snapshot_collect.EXIT_CONFIG_ERROR

    def test_bad_date_filter(self, workdir, aws_credentials, monkeypatch):
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, '--output', str(workdir / 'out'), '--date-filter', 'June 2019', '--no-progress')
        assert exc_info.value.code == snapshot_collect.EXIT_CONFIG_ERROR

    @mock_aws
    def test_full_run_writes_reports(self, workdir, aws_credentials, monkeypatch, capsys):
        ec2 = boto3.client("ec2", region_name="us-east-1")
        volume_id = ec2.create_volume(AvailabilityZone="us-east-1a", Size=8)['VolumeId']
        snapshot_id = ec2.create_snapshot(VolumeId=volume_id)['SnapshotId']
        ec2.delete_volume(VolumeId=volume_id)
        out_dir = workdir / 'out'

        run_main(
            monkeypatch,
            '--region', 'us-east-1',
            '--output', str(out_dir),
            '--date-filter', '2100-01-01',
            '--no-progress',
        )

        for name in ('out-summary.txt', 'out-nuggets.csv', 'out-bars.csv'):
            assert (out_dir / name).exists()
        assert glob.glob(str(out_dir / 'snapaudit_inv_*.json'))
        assert glob.glob(str(out_dir / 'snapaudit_plan_*.json'))

        summary = (out_dir / 'out-summary.txt').read_text()
        assert f"\t{snapshot_id}\n" in summary
        assert 'Run ID:' in capsys.readouterr().out

    @mock_aws
    def test_s3_output_uses_run_id_prefix(self, workdir, aws_credentials, monkeypatch, capsys):
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket='audit-reports')
        ec2 = boto3.client("ec2", region_name="us-east-1")
        volume_id = ec2.create_volume(AvailabilityZone="us-east-1a", Size=8)['VolumeId']
        snapshot_id = ec2.create_snapshot(VolumeId=volume_id)['SnapshotId']
        ec2.delete_volume(VolumeId=volume_id)

        run_main(
            monkeypatch,
            '--region', 'us-east-1',
            '--output', 's3://audit-reports/runs/',
            '--date-filter', '2100-01-01',
            '--no-progress',
        )

        out = capsys.readouterr().out
        run_id = re.search(r"Run ID: (\S+)", out).group(1)
        prefix = f"runs/{run_id}/"
        keys = [obj['Key'] for obj in s3.list_objects_v2(Bucket='audit-reports')['Contents']]

        assert len(keys) == 5
        assert all(key.startswith(prefix) for key in keys)
        for name in ('out-summary.txt', 'out-nuggets.csv', 'out-bars.csv'):
            assert prefix + name in keys
        assert f"Output: s3://audit-reports/{prefix}" in out

        summary = s3.get_object(Bucket='audit-reports', Key=prefix + 'out-summary.txt')['Body'].read().decode()
        assert f"\t{snapshot_id}\n" in summary
