"""
EBS Snapshot Audit - Configuration Management

Supports loading configuration from:
1. Environment variables (SNAPAUDIT_*)
2. YAML config file (--config or a default location)
3. Command-line arguments (highest priority)

Config file example:
```yaml
output: "./audit"
log_level: INFO

aws:
  profile: ${AWS_PROFILE:-default}  # env var substitution
  region: us-east-1

snapshots:
  date_filter: "2019-01-01"
  max_pages: 25
  volume_lookup: filter
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from .constants import (
    DEFAULT_DATE_FILTER,
    DEFAULT_EBS_SNAP_RATE,
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_PAGE_WORKERS,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_SHARE_WORKERS,
    DEFAULT_VOLUME_BATCH_SIZE,
    DEFAULT_VOLUME_WORKERS,
    ENV_PREFIX,
    VOLUME_LOOKUP_FILTER,
)
from .utils import ConfigurationError

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './snapaudit.yaml',
    './snapaudit.yml',
    '~/.snapaudit/config.yaml',
]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes')


# (argparse attribute, config key, default, converter)
SETTINGS: List[Tuple[str, str, Any, Callable[[Any], Any]]] = [
    ('output', 'output', '.', str),
    ('log_level', 'log_level', 'INFO', str),
    ('profile', 'aws.profile', None, str),
    ('region', 'aws.region', None, str),
    ('date_filter', 'snapshots.date_filter', DEFAULT_DATE_FILTER, str),
    ('max_pages', 'snapshots.max_pages', DEFAULT_MAX_PAGES, int),
    ('page_size', 'snapshots.page_size', DEFAULT_PAGE_SIZE, int),
    ('volume_batch_size', 'snapshots.volume_batch_size', DEFAULT_VOLUME_BATCH_SIZE, int),
    ('volume_workers', 'snapshots.volume_workers', DEFAULT_VOLUME_WORKERS, int),
    ('page_workers', 'snapshots.page_workers', DEFAULT_PAGE_WORKERS, int),
    ('queue_size', 'snapshots.queue_size', DEFAULT_QUEUE_SIZE, int),
    ('share_workers', 'snapshots.share_workers', DEFAULT_SHARE_WORKERS, int),
    ('volume_lookup', 'snapshots.volume_lookup', VOLUME_LOOKUP_FILTER, str),
    ('check_snapshot_sharing', 'snapshots.check_snapshot_sharing', False, _parse_bool),
    ('ebs_snap_rate', 'snapshots.ebs_snap_rate', DEFAULT_EBS_SNAP_RATE, float),
]

# Mapping from config keys to env vars, e.g. snapshots.max_pages -> SNAPAUDIT_MAX_PAGES
ENV_VAR_MAPPING = {
    config_key: f"{ENV_PREFIX}{arg_name.upper()}"
    for arg_name, config_key, _default, _convert in SETTINGS
}


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Warn if group or others can read the file
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping at the top level")

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}
    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(config, config_key, value)
    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}
    for arg_name, config_key, _default, _convert in SETTINGS:
        value = getattr(args, arg_name, None)
        if value is not None:
            _set_nested(config, config_key, value)
    return config


def config_to_args(config: Dict[str, Any], args) -> None:
    """
    Apply merged config values (or defaults) to the argparse args object.

    Raises:
        ConfigurationError: If a value cannot be converted to its setting's type
    """
    for arg_name, config_key, default, convert in SETTINGS:
        value = _get_nested(config, config_key)
        if value is None:
            setattr(args, arg_name, default)
            continue
        try:
            setattr(args, arg_name, convert(value))
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid value for {config_key}: {value!r}") from None


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    # 1. Environment variables (lowest priority)
    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    # 2. Config file
    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    # 3. CLI arguments (highest priority)
    configs.append(args_to_config(args))

    merged = merge_configs(*configs)
    config_to_args(merged, args)
    return merged


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return f'''# EBS Snapshot Audit Configuration
#
# Environment variable substitution supported:
#   ${{VAR_NAME}}           - required env var
#   ${{VAR_NAME:-default}}  - env var with default value
#
# Every key can also be set as SNAPAUDIT_<KEY>, e.g. SNAPAUDIT_MAX_PAGES=50

# Output directory (or s3://bucket/prefix) for reports
output: "./audit"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO


# =============================================================================
# AWS Settings
# =============================================================================
aws:
  # AWS CLI profile (optional, uses default credentials if not set)
  # profile: my-profile

  # Region to audit (default: the session's region)
  # region: us-east-1


# =============================================================================
# Snapshot Audit Settings
# =============================================================================
snapshots:
  # Only snapshots started before this date (YYYY-MM-DD) are considered
  date_filter: "{DEFAULT_DATE_FILTER}"

  # Stop reading snapshots after this many pages (results are flagged as truncated)
  max_pages: {DEFAULT_MAX_PAGES}

  # Snapshots per DescribeSnapshots page (5-1000)
  page_size: {DEFAULT_PAGE_SIZE}

  # Volume IDs per existence lookup batch
  volume_batch_size: {DEFAULT_VOLUME_BATCH_SIZE}

  # Concurrent volume batches per page, and concurrent pages
  volume_workers: {DEFAULT_VOLUME_WORKERS}
  page_workers: {DEFAULT_PAGE_WORKERS}

  # Pages waiting for a worker before reading more blocks
  queue_size: {DEFAULT_QUEUE_SIZE}

  # Concurrent AMI/snapshot share-permission lookups
  share_workers: {DEFAULT_SHARE_WORKERS}

  # filter: one filtered DescribeVolumes call per batch
  # per-id: one DescribeVolumes call per volume ID
  volume_lookup: {VOLUME_LOOKUP_FILTER}

  # Also retain snapshots shared directly via createVolumePermission
  check_snapshot_sharing: false

  # USD per GB-month used for the savings estimate
  ebs_snap_rate: {DEFAULT_EBS_SNAP_RATE}
'''
