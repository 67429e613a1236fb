"""
Configuration loading, validation, and parsing.

Settings come from an optional YAML file and from the command line, with
command line values taking precedence. The merged, validated result is a
Config value handed to each component at construction.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Any, Optional

import yaml

from .authority import DEFAULT_BINARY, DEFAULT_TIMEOUT
from .logger import get_logger, parse_log_level


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class RenewalRequest:
    """What to renew. Fixed for the whole run."""
    cert_path: str
    key_path: str
    trc_path: str
    renew_before_days: int

    @property
    def renew_before(self) -> timedelta:
        """Renewal horizon as a duration of whole 24-hour days."""
        return timedelta(days=self.renew_before_days)


@dataclass
class AuthorityConfig:
    """External certificate authority tool settings."""
    binary: str = DEFAULT_BINARY
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class Settings:
    """Global settings."""
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = None
    use_colors: bool = True
    temp_dir: Optional[str] = None
    dry_run: bool = False


@dataclass
class TeamsNotificationConfig:
    """Teams notification configuration."""
    enabled: bool = False
    webhook_url: Optional[str] = None


@dataclass
class NotificationsConfig:
    """Notification channels configuration."""
    teams: TeamsNotificationConfig = field(default_factory=TeamsNotificationConfig)


@dataclass
class Config:
    """Root configuration object."""
    request: RenewalRequest
    authority: AuthorityConfig = field(default_factory=AuthorityConfig)
    settings: Settings = field(default_factory=Settings)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


def _expand_env_vars(value: Any) -> Any:
    """
    Expand environment variables in string values.

    Supports ${VAR_NAME} syntax. Unknown variables are left as-is.

    Args:
        value: Value to expand (string, dict, or list)

    Returns:
        Value with environment variables expanded
    """
    if isinstance(value, str):
        pattern = r"\$\{([^}]+)\}"

        def replace(match):
            var_name = match.group(1)
            return os.environ.get(var_name, match.group(0))

        return re.sub(pattern, replace, value)

    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]

    return value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load raw configuration values from a YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Raw configuration sections with environment variables expanded

    Raises:
        ConfigurationError: If the file is missing, unreadable or not valid YAML
    """
    logger = get_logger()
    path = Path(config_path)

    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    if path.suffix not in (".yaml", ".yml"):
        raise ConfigurationError(
            f"Configuration file must be YAML (.yaml or .yml): {config_path}"
        )

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except IOError as e:
        raise ConfigurationError(f"Failed to read configuration file: {e}")

    if not raw_data:
        raise ConfigurationError("Configuration file is empty")

    if not isinstance(raw_data, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    logger.debug(f"Loaded configuration from {config_path}")
    return _expand_env_vars(raw_data)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' section must be a mapping")
    return section


def _pick(override: Any, section: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Command line value if given, else the file value, else the default."""
    if override is not None:
        return override
    return section.get(key, default)


def _parse_days(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"renew_before_days must be a whole number of days, got {value!r}")
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"renew_before_days must be a whole number of days, got {value!r}")
    if isinstance(value, float) and value != days:
        raise ConfigurationError(f"renew_before_days must be a whole number of days, got {value!r}")
    if days < 0:
        raise ConfigurationError("renew_before_days must not be negative")
    return days


def _parse_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"timeout must be a number of seconds, got {value!r}")
    if timeout <= 0:
        raise ConfigurationError("timeout must be greater than zero")
    return timeout


def build_config(
    config_path: Optional[str] = None,
    trc: Optional[str] = None,
    cert: Optional[str] = None,
    key: Optional[str] = None,
    days: Optional[int] = None,
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    authority_binary: Optional[str] = None,
    timeout: Optional[float] = None,
    temp_dir: Optional[str] = None,
    dry_run: bool = False,
    no_color: bool = False,
) -> Config:
    """
    Merge command line values over the configuration file and validate.

    Args:
        config_path: Optional YAML configuration file
        trc: Trust root configuration path
        cert: Current certificate path
        key: Current private key path
        days: Renew if the certificate expires within this many days
        log_level: Verbosity name
        log_file: Optional log file
        authority_binary: Name or path of the authority tool
        timeout: Per-operation timeout in seconds
        temp_dir: Directory for staging files
        dry_run: Only evaluate, never renew
        no_color: Disable colored output

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If a required value is missing or a value is invalid
    """
    data = load_config_file(config_path) if config_path else {}

    settings_data = _section(data, "settings")
    authority_data = _section(data, "authority")
    teams_data = _section(_section(data, "notifications"), "teams")

    values = {
        "trc": _pick(trc, settings_data, "trc"),
        "cert": _pick(cert, settings_data, "cert"),
        "key": _pick(key, settings_data, "key"),
    }
    missing = [name for name, value in values.items() if not value]
    raw_days = _pick(days, settings_data, "renew_before_days")
    if raw_days is None:
        missing.append("days")
    if missing:
        raise ConfigurationError(f"Missing required setting(s): {', '.join(missing)}")

    request = RenewalRequest(
        cert_path=str(values["cert"]),
        key_path=str(values["key"]),
        trc_path=str(values["trc"]),
        renew_before_days=_parse_days(raw_days),
    )

    level = _pick(log_level, settings_data, "log_level", DEFAULT_LOG_LEVEL)
    try:
        level = parse_log_level(str(level)).name
    except ValueError as e:
        raise ConfigurationError(str(e))

    settings = Settings(
        log_level=level,
        log_file=_pick(log_file, settings_data, "log_file"),
        use_colors=not no_color and settings_data.get("use_colors", True),
        temp_dir=_pick(temp_dir, settings_data, "temp_dir"),
        dry_run=dry_run or bool(settings_data.get("dry_run", False)),
    )

    if settings.temp_dir and not os.path.isdir(settings.temp_dir):
        raise ConfigurationError(f"temp_dir is not a directory: {settings.temp_dir}")

    if settings.log_file:
        log_dir = os.path.dirname(os.path.abspath(settings.log_file))
        if not os.path.isdir(log_dir):
            raise ConfigurationError(f"log_file directory does not exist: {log_dir}")

    authority = AuthorityConfig(
        binary=_pick(authority_binary, authority_data, "binary", DEFAULT_BINARY),
        timeout=_parse_timeout(_pick(timeout, authority_data, "timeout", DEFAULT_TIMEOUT)),
    )

    teams = TeamsNotificationConfig(
        enabled=bool(teams_data.get("enabled", False)),
        webhook_url=teams_data.get("webhook_url"),
    )
    if teams.enabled and not teams.webhook_url:
        raise ConfigurationError("Teams notifications are enabled but no webhook_url is set")

    return Config(
        request=request,
        authority=authority,
        settings=settings,
        notifications=NotificationsConfig(teams=teams),
    )
