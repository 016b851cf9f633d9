"""
Configuration management and loading.

Handles application settings read from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

DEFAULT_CONFIG_PATH = "aws-cost-monitor.yaml"


@dataclass(frozen=True)
class AwsSettings:
    """Where to reach Cost Explorer."""
    profile: str = "default"
    region: str = "us-east-1"
    # Accepted so existing settings files still load; SSO profiles are
    # resolved by boto3 from the profile itself and nothing reads this flag.
    use_sso: bool = True

    def __post_init__(self):
        """Validate profile and region are set."""
        if not self.profile or not self.profile.strip():
            raise ValueError("aws.profile must not be empty")
        if not self.region or not self.region.strip():
            raise ValueError("aws.region must not be empty")


@dataclass(frozen=True)
class AppSettings:
    """Complete application settings."""
    aws: AwsSettings = field(default_factory=AwsSettings)
    database_path: str = "costs.db"
    refresh_interval_minutes: int = 60

    def __post_init__(self):
        """Validate database path and refresh interval."""
        if not self.database_path or not self.database_path.strip():
            raise ValueError("database_path must not be empty")
        if self.refresh_interval_minutes <= 0:
            raise ValueError("refresh_interval_minutes must be > 0")


def load_settings(path: Union[str, Path]) -> AppSettings:
    """Load and validate application settings from a YAML file.

    Missing keys take their defaults; unknown keys and wrong types are
    rejected so a typo never silently falls back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppSettings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppSettings()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'aws', 'database_path', 'refresh_interval_minutes'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    aws = _parse_aws_settings(raw_config.get('aws', {}))

    database_path = raw_config.get('database_path', AppSettings.database_path)
    if not isinstance(database_path, str):
        raise ValueError("'database_path' must be a string")

    interval = raw_config.get('refresh_interval_minutes', AppSettings.refresh_interval_minutes)
    # bool is an int subclass; reject it explicitly
    if not isinstance(interval, int) or isinstance(interval, bool):
        raise ValueError("'refresh_interval_minutes' must be an integer")

    return AppSettings(
        aws=aws,
        database_path=database_path,
        refresh_interval_minutes=interval
    )


def _parse_aws_settings(data: Optional[Dict]) -> AwsSettings:
    """Parse and validate the aws section.

    Args:
        data: aws section of the configuration

    Returns:
        Validated AwsSettings

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return AwsSettings()
    if not isinstance(data, dict):
        raise ValueError("'aws' must be a dictionary")

    allowed_keys = {'profile', 'region', 'use_sso'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in aws: {unknown_keys}")

    for key in ('profile', 'region'):
        if key in data and not isinstance(data[key], str):
            raise ValueError(f"'{key}' in aws must be a string")

    use_sso = data.get('use_sso', True)
    if not isinstance(use_sso, bool):
        raise ValueError("'use_sso' in aws must be true or false")

    return AwsSettings(
        profile=data.get('profile', AwsSettings.profile),
        region=data.get('region', AwsSettings.region),
        use_sso=use_sso
    )


def resolve_database_path(settings: AppSettings, config_path: Optional[Union[str, Path]] = None) -> str:
    """Resolve a relative database path against the config file's directory.

    Args:
        settings: Loaded settings
        config_path: Config file the settings came from, if any

    Returns:
        Database path usable from the current working directory
    """
    db_path = Path(settings.database_path)
    if db_path.is_absolute() or config_path is None:
        return str(db_path)
    return str(Path(config_path).parent / db_path)
