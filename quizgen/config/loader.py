"""
Configuration management and loading.

Handles application settings read from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from quizgen.core.usage import GENERATE_QUIZ, UPLOAD_PDF
from quizgen.storage.db import DEFAULT_DATA_DIR

DEFAULT_MODEL = "gpt-4o-mini"

DEFAULT_COST_ESTIMATES = {
    GENERATE_QUIZ: 0.01,
    UPLOAD_PDF: 0.02,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StorageConfig:
    data_dir: str = DEFAULT_DATA_DIR

    def __post_init__(self):
        if not self.data_dir:
            raise ValueError("storage.data_dir cannot be empty")


@dataclass(frozen=True)
class GenerationConfig:
    """Model and per-action cost estimates for metered generation."""
    model: str = DEFAULT_MODEL
    cost_estimates: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COST_ESTIMATES)
    )

    def __post_init__(self):
        """Validate the model name and cost estimates."""
        if not self.model:
            raise ValueError("generation.model cannot be empty")
        for action, cost in self.cost_estimates.items():
            if cost < 0:
                raise ValueError(f"cost estimate for '{action}' must be >= 0")

    def cost_for(self, action: str) -> float:
        return self.cost_estimates.get(action, 0.0)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None

    def __post_init__(self):
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_config() -> AppConfig:
    return AppConfig()


def load_app_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Every section is optional and falls back to its defaults, but unknown
    keys and wrongly typed values are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

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
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'storage', 'generation', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage_data = _section(raw_config, 'storage', {'data_dir'})
    storage = StorageConfig(
        data_dir=_string(storage_data, 'data_dir', 'storage', DEFAULT_DATA_DIR)
    )

    generation_data = _section(raw_config, 'generation', {'model', 'cost_estimates'})
    generation = GenerationConfig(
        model=_string(generation_data, 'model', 'generation', DEFAULT_MODEL),
        cost_estimates=_parse_cost_estimates(generation_data.get('cost_estimates'))
    )

    logging_data = _section(raw_config, 'logging', {'level', 'file'})
    file_value = logging_data.get('file')
    if file_value is not None and not isinstance(file_value, str):
        raise ValueError("'file' in logging must be a string")
    log_config = LoggingConfig(
        level=_string(logging_data, 'level', 'logging', "INFO").upper(),
        file=file_value
    )

    return AppConfig(storage=storage, generation=generation, logging=log_config)


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return a validated top-level section, or an empty dict if absent.

    Raises:
        ValueError: If the section is not a mapping or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _string(data: Dict[str, Any], key: str, path: str, default: str) -> str:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value


def _parse_cost_estimates(data: Any) -> Dict[str, float]:
    """Merge configured cost estimates over the defaults.

    Raises:
        ValueError: If the mapping or any cost is invalid
    """
    costs = dict(DEFAULT_COST_ESTIMATES)
    if data is None:
        return costs
    if not isinstance(data, dict):
        raise ValueError("'cost_estimates' in generation must be a dictionary")
    for action, cost in data.items():
        if isinstance(cost, bool) or not isinstance(cost, (int, float)):
            raise ValueError(f"cost estimate for '{action}' must be a number")
        if cost < 0:
            raise ValueError(f"cost estimate for '{action}' must be >= 0")
        costs[str(action)] = float(cost)
    return costs
