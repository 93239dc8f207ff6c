"""
Configuration management and loading.

Reads the YAML settings file and validates it strictly: unknown keys and
wrongly typed values are rejected instead of silently ignored.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from claudelytics.core.realtime import BudgetConfig
from claudelytics.core.session_blocks import SessionBlockConfig
from claudelytics.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "claudelytics" / "config.yaml"
DEFAULT_CLAUDE_PATH = Path.home() / ".claude"


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    claude_path: Path = DEFAULT_CLAUDE_PATH
    pricing_file: Optional[str] = None
    workers: Optional[int] = None
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    session_blocks: SessionBlockConfig = field(default_factory=SessionBlockConfig)
    export_directory: Optional[Path] = None

    def __post_init__(self):
        if self.workers is not None and not 1 <= self.workers <= 256:
            raise ConfigurationError("workers must be between 1 and 256")

    def with_overrides(self, **overrides: Any) -> "AppConfig":
        """Copy with every non-None override applied (CLI flags win)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    A missing file at the default location yields the defaults; a missing
    file that was asked for explicitly is an error.

    Args:
        path: Path to YAML configuration file, or None for the default

    Returns:
        Validated AppConfig object

    Raises:
        ConfigurationError: If the file is missing, not valid YAML or invalid
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        if path:
            raise ConfigurationError(f"Config file not found: {path}")
        return AppConfig()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    if not raw_config:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    return parse_config(raw_config)


def parse_config(raw_config: Dict[str, Any]) -> AppConfig:
    """Validate an already-decoded configuration mapping."""
    allowed_top_keys = {
        'claude_path', 'pricing_file', 'workers', 'budget', 'session_blocks', 'export_directory'
    }
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown configuration keys: {unknown_keys}")

    kwargs: Dict[str, Any] = {}

    if raw_config.get('claude_path') is not None:
        kwargs['claude_path'] = Path(_string(raw_config['claude_path'], 'claude_path')).expanduser()
    if raw_config.get('pricing_file') is not None:
        kwargs['pricing_file'] = _string(raw_config['pricing_file'], 'pricing_file')
    if raw_config.get('export_directory') is not None:
        kwargs['export_directory'] = Path(_string(raw_config['export_directory'], 'export_directory')).expanduser()
    if raw_config.get('workers') is not None:
        kwargs['workers'] = _integer(raw_config['workers'], 'workers')

    if raw_config.get('budget') is not None:
        kwargs['budget'] = _parse_budget(raw_config['budget'])
    if raw_config.get('session_blocks') is not None:
        kwargs['session_blocks'] = _parse_session_blocks(raw_config['session_blocks'])

    return AppConfig(**kwargs)


def _parse_budget(data: Any) -> BudgetConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("'budget' must be a dictionary")

    allowed_keys = {'daily', 'monthly', 'yearly', 'alert_threshold'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown budget keys: {unknown_keys}")

    kwargs = {
        key: _number(data[key], f"budget.{key}")
        for key in allowed_keys
        if data.get(key) is not None
    }
    return BudgetConfig(**kwargs)


def _parse_session_blocks(data: Any) -> SessionBlockConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("'session_blocks' must be a dictionary")

    allowed_keys = {'block_hours', 'token_limit', 'cost_limit'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown session_blocks keys: {unknown_keys}")

    kwargs: Dict[str, Any] = {}
    if data.get('block_hours') is not None:
        kwargs['block_hours'] = _integer(data['block_hours'], 'session_blocks.block_hours')
    if data.get('token_limit') is not None:
        kwargs['token_limit'] = _integer(data['token_limit'], 'session_blocks.token_limit')
    if data.get('cost_limit') is not None:
        kwargs['cost_limit'] = _number(data['cost_limit'], 'session_blocks.cost_limit')
    return SessionBlockConfig(**kwargs)


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"'{path}' must be a non-empty string")
    return value


def _integer(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{path}' must be an integer")
    return value


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"'{path}' must be a number")
    return float(value)
