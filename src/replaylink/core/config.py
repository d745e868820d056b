"""
Configuration Management for ReplayLink

Provides configuration loading from multiple sources:
- Default values
- Configuration files (YAML, TOML, JSON)
- Environment variables
- Command line arguments

Configuration precedence (highest to lowest):
1. Command line arguments
2. Environment variables (REPLAYLINK_*)
3. Configuration file
4. Default values
"""

import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import yaml

from replaylink.core.constants import (
    DEFAULT_BACKFILL_LIMIT,
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_MARGIN_MIN,
    MIN_REVEALED_TO_TRUST,
    PREVIEW_MIN_CONFIDENCE,
    PREVIEW_MIN_OVERLAP,
    SHOWDOWN_REPLAY_BASE,
    STRONG_MIN_CONFIDENCE,
    STRONG_MIN_OVERLAP,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".replaylink" / "replays.db"


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass
class DatabaseConfig:
    """Configuration for the SQLite store."""

    path: str = str(DEFAULT_DB_PATH)
    echo: bool = False


@dataclass
class IngestConfig:
    """Configuration for replay ingestion."""

    # Showdown name of the local user; sides whose normalized name matches are flagged
    showdown_username: str | None = None

    # Drop automatic team links when a replay is re-ingested (user links always survive)
    clear_auto_links_on_reingest: bool = False


@dataclass
class MatchingConfig:
    """Configuration for species-overlap linking."""

    min_revealed_to_trust: int = MIN_REVEALED_TO_TRUST

    # brought / revealed provenance
    strong_min_overlap: int = STRONG_MIN_OVERLAP
    strong_min_confidence: float = STRONG_MIN_CONFIDENCE

    # preview-only provenance
    preview_min_overlap: int = PREVIEW_MIN_OVERLAP
    preview_min_confidence: float = PREVIEW_MIN_CONFIDENCE

    # Best candidate must beat the runner-up by margin_min (perfect matches exempt)
    require_margin: bool = False
    margin_min: int = DEFAULT_MARGIN_MIN

    # Per game type floor on min_overlap, e.g. {"singles": 6}
    game_type_min_overlap: dict[str, int] = field(default_factory=dict)

    candidate_limit: int = DEFAULT_CANDIDATE_LIMIT
    backfill_limit: int = DEFAULT_BACKFILL_LIMIT


@dataclass
class FetchConfig:
    """Configuration for fetching replay JSON."""

    base_url: str = SHOWDOWN_REPLAY_BASE
    timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    user_agent: str = "ReplayLink/0.1"


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


@dataclass
class ReplayLinkConfig:
    """Main configuration container."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Version of the config format
    config_version: str = "1.0"


_SECTIONS = ("database", "ingest", "matching", "fetch", "logging")


# ============================================================================
# Configuration Loading
# ============================================================================


def get_default_config_paths() -> list[Path]:
    """Get the default paths to search for configuration files."""
    paths = []

    # Current directory
    paths.append(Path.cwd() / "replaylink.yaml")
    paths.append(Path.cwd() / "replaylink.toml")
    paths.append(Path.cwd() / "replaylink.json")
    paths.append(Path.cwd() / ".replaylink.yaml")

    # User home directory
    home = Path.home()
    paths.append(home / ".config" / "replaylink" / "config.yaml")
    paths.append(home / ".config" / "replaylink" / "config.toml")
    paths.append(home / ".replaylink.yaml")

    # XDG config directory
    xdg_config = os.environ.get("XDG_CONFIG_HOME", str(home / ".config"))
    paths.append(Path(xdg_config) / "replaylink" / "config.yaml")

    return paths


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(path) as f:
        return json.load(f)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a file, detecting format from extension."""
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_yaml_config(path)
    elif suffix == ".toml":
        return load_toml_config(path)
    elif suffix == ".json":
        return load_json_config(path)
    else:
        logger.warning(f"Unknown config file format: {suffix}")
        return {}


def _coerce_env_value(value: str) -> Any:
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    env_mappings = {
        "REPLAYLINK_DB_PATH": ("database", "path"),
        "REPLAYLINK_DB_ECHO": ("database", "echo"),
        "REPLAYLINK_SHOWDOWN_USERNAME": ("ingest", "showdown_username"),
        "REPLAYLINK_CLEAR_AUTO_LINKS": ("ingest", "clear_auto_links_on_reingest"),
        "REPLAYLINK_REQUIRE_MARGIN": ("matching", "require_margin"),
        "REPLAYLINK_MARGIN_MIN": ("matching", "margin_min"),
        "REPLAYLINK_MIN_REVEALED_TO_TRUST": ("matching", "min_revealed_to_trust"),
        "REPLAYLINK_BACKFILL_LIMIT": ("matching", "backfill_limit"),
        "REPLAYLINK_FETCH_TIMEOUT": ("fetch", "timeout_seconds"),
        "REPLAYLINK_REPLAY_BASE_URL": ("fetch", "base_url"),
        "REPLAYLINK_LOG_LEVEL": ("logging", "level"),
        "REPLAYLINK_LOG_FILE": ("logging", "file"),
    }

    for env_var, (section, key) in env_mappings.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        # Names and paths stay strings even when they look numeric
        if key in ("path", "showdown_username", "base_url", "file", "level"):
            config.setdefault(section, {})[key] = value
        else:
            config.setdefault(section, {})[key] = _coerce_env_value(value)

    return config


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def dict_to_config(data: dict[str, Any]) -> ReplayLinkConfig:
    """Convert a dictionary to ReplayLinkConfig, ignoring unknown keys."""
    config = ReplayLinkConfig()

    for section in _SECTIONS:
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section)
        known = {f.name for f in fields(target)}
        for key, value in values.items():
            if key in known:
                setattr(target, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {section}.{key}")

    return config


def load_config(config_file: Path | None = None, include_env: bool = True) -> ReplayLinkConfig:
    """
    Load configuration from all sources.

    Args:
        config_file: Explicit path to a config file (optional)
        include_env: Whether to include environment variables

    Returns:
        Merged ReplayLinkConfig
    """
    config_data: dict[str, Any] = {}

    # Try to find and load a config file
    if config_file:
        config_data = load_config_file(config_file)
        logger.info(f"Loaded config from: {config_file}")
    else:
        for path in get_default_config_paths():
            if path.exists():
                config_data = load_config_file(path)
                logger.info(f"Loaded config from: {path}")
                break

    # Merge environment variables
    if include_env:
        env_config = load_env_config()
        config_data = merge_configs(config_data, env_config)

    return dict_to_config(config_data)


# ============================================================================
# Configuration Saving
# ============================================================================


def config_to_dict(config: ReplayLinkConfig) -> dict[str, Any]:
    """Convert ReplayLinkConfig to a dictionary."""
    return asdict(config)


def save_config(config: ReplayLinkConfig, path: Path) -> None:
    """
    Save configuration to a file.

    Args:
        config: Configuration to save
        path: Path to save to (format detected from extension)
    """
    data = config_to_dict(config)
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    elif suffix == ".json":
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    else:
        raise ValueError(f"Unsupported config format for saving: {suffix}")

    logger.info(f"Saved config to: {path}")


# ============================================================================
# Logging
# ============================================================================


def setup_logging(config: LoggingConfig) -> None:
    """Configure the root logger from a LoggingConfig."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(config.level).upper(), logging.INFO))
    formatter = logging.Formatter(config.format)

    if not root.handlers:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        target = os.path.abspath(log_path)
        already_attached = any(
            isinstance(h, RotatingFileHandler) and h.baseFilename == target for h in root.handlers
        )
        if not already_attached:
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=config.file_max_bytes,
                backupCount=config.file_backup_count,
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)


# ============================================================================
# Global Configuration
# ============================================================================

_global_config: ReplayLinkConfig | None = None


def get_config() -> ReplayLinkConfig:
    """Get the global configuration, loading it if necessary."""
    global _global_config

    if _global_config is None:
        _global_config = load_config()

    return _global_config


def set_config(config: ReplayLinkConfig) -> None:
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration to defaults."""
    global _global_config
    _global_config = None


# ============================================================================
# Configuration Templates
# ============================================================================

DEFAULT_CONFIG_YAML = """# ReplayLink Configuration

# SQLite store
database:
  path: ~/.replaylink/replays.db
  echo: false

# Replay ingestion
ingest:
  # showdown_username: YourName   # flags your side in every ingested battle
  clear_auto_links_on_reingest: false

# Team linking policy
matching:
  min_revealed_to_trust: 4
  strong_min_overlap: 4        # brought / revealed species lists
  strong_min_confidence: 0.66
  preview_min_overlap: 5       # preview-only species lists
  preview_min_confidence: 0.83
  require_margin: false
  margin_min: 1
  game_type_min_overlap: {}    # e.g. {singles: 6}
  candidate_limit: 200
  backfill_limit: 500

# Replay fetching
fetch:
  base_url: https://replay.pokemonshowdown.com
  timeout_seconds: 20

# Logging settings
logging:
  level: INFO
  # file: /path/to/replaylink.log
"""


def generate_default_config(path: Path) -> None:
    """Generate a default configuration file."""
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        path.write_text(DEFAULT_CONFIG_YAML)
    else:
        save_config(ReplayLinkConfig(), path)

    logger.info(f"Generated default config at: {path}")
