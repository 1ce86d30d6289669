"""
Pipeline configuration.

Sources, lowest to highest precedence:
    1. Defaults (PipelineConfig field defaults)
    2. YAML file (e.g. config/pipeline.yaml)
    3. Environment variables (a .env file is loaded if present)
    4. Explicit overrides (CLI flags)

Environment variables:
    DATASET_PATH, OUTPUT_PATH, LOG_LEVEL, STRICT_MODE, MAX_FILE_SIZE,
    ALLOWED_ORIGINS, EXCLUDE_PATTERNS, EXTENSIONS, WORKERS
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml
from dotenv import dotenv_values

from ..errors import ConfigurationError
from ..logging_config import resolve_level
from ..metadata.record import Origin

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_EXTENSIONS = (".txt", ".md", ".html", ".json")
DEFAULT_MIN_HUMAN_RATIO = 0.3
DEFAULT_MAX_AI_RATIO = 0.7

ENV_VARIABLES = {
    "DATASET_PATH": "content_root",
    "OUTPUT_PATH": "output_root",
    "LOG_LEVEL": "log_level",
    "STRICT_MODE": "strict_mode",
    "MAX_FILE_SIZE": "max_file_size",
    "ALLOWED_ORIGINS": "allowed_origins",
    "EXCLUDE_PATTERNS": "exclude_patterns",
    "EXTENSIONS": "extensions",
    "WORKERS": "workers",
}

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off", "")


@dataclass(frozen=True)
class PipelineConfig:
    """Recognized options for one pipeline run."""
    content_root: str = "./dataset"
    output_root: Optional[str] = "./clean-dataset"
    log_level: str = "info"
    strict_mode: bool = False
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_origins: Tuple[str, ...] = ("human",)
    exclude_patterns: Tuple[str, ...] = ()
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    workers: int = 1
    min_human_ratio: float = DEFAULT_MIN_HUMAN_RATIO
    max_ai_ratio: float = DEFAULT_MAX_AI_RATIO

    def validate(self) -> "PipelineConfig":
        """
        Check every option.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: On the first invalid option
        """
        if not self.content_root:
            raise ConfigurationError("content_root must not be empty")

        resolve_level(self.log_level)

        if isinstance(self.max_file_size, bool) or not isinstance(self.max_file_size, int):
            raise ConfigurationError(f"max_file_size must be an integer, got {self.max_file_size!r}")
        if self.max_file_size < 0:
            raise ConfigurationError(f"max_file_size must not be negative, got {self.max_file_size}")

        if not self.allowed_origins:
            raise ConfigurationError("allowed_origins must name at least one origin")
        valid_origins = [o.value for o in Origin]
        for origin in self.allowed_origins:
            if origin not in valid_origins:
                raise ConfigurationError(
                    f"Unknown origin in allowed_origins: {origin!r}. Must be one of {valid_origins}"
                )

        for ext in self.extensions:
            if not ext.startswith(".") or len(ext) < 2:
                raise ConfigurationError(f"Extensions must look like '.txt', got {ext!r}")

        if isinstance(self.workers, bool) or not isinstance(self.workers, int) or self.workers < 1:
            raise ConfigurationError(f"workers must be a positive integer, got {self.workers!r}")

        for name in ("min_human_ratio", "max_ai_ratio"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0.0, 1.0], got {value!r}")

        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        for key in ("allowed_origins", "exclude_patterns", "extensions"):
            data[key] = list(data[key])
        return data


_FIELD_NAMES = {f.name for f in fields(PipelineConfig)}


def _split_list(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        raise ConfigurationError(f"Expected a list or comma-separated string, got {value!r}")
    return tuple(str(item).strip() for item in items if str(item).strip())


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _to_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _coerce_option(name: str, value: Any) -> Any:
    if name in ("allowed_origins", "exclude_patterns"):
        return _split_list(value)
    if name == "extensions":
        return tuple(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in _split_list(value)
        )
    if name == "strict_mode":
        return _to_bool(name, value)
    if name in ("max_file_size", "workers"):
        return _to_int(name, value)
    if name in ("min_human_ratio", "max_ai_ratio"):
        return _to_float(name, value)
    if name == "output_root":
        return str(value) if value not in (None, "") else None
    if name == "log_level":
        return str(value).strip().lower()
    return str(value)


def apply_overrides(config: PipelineConfig, overrides: Mapping[str, Any]) -> PipelineConfig:
    """
    Return a copy of config with overrides applied.

    None values are ignored, so unset CLI flags leave lower layers in place.

    Raises:
        ConfigurationError: For unknown option names or uncoercible values
    """
    changes = {}
    for name, value in overrides.items():
        if value is None:
            continue
        if name not in _FIELD_NAMES:
            raise ConfigurationError(f"Unknown configuration option: {name}")
        changes[name] = _coerce_option(name, value)
    return replace(config, **changes)


def load_pipeline_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load options from a YAML file.

    The file may hold the options at top level or under a ``pipeline`` key.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    if isinstance(data.get("pipeline"), dict):
        data = data["pipeline"]
    return data


def config_from_env(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[Union[str, Path]] = None
) -> Dict[str, Any]:
    """
    Collect options from environment variables.

    Values from ``env_file`` (default: ``.env`` in the working directory, if
    present) fill in variables the environment does not set.
    """
    environ = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    env_path = Path(env_file) if env_file else Path(".env")
    if env_path.exists():
        values.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
        logger.debug(f"Loaded environment defaults from {env_path}")
    values.update(environ)

    return {
        option: values[variable]
        for variable, option in ENV_VARIABLES.items()
        if variable in values
    }


def build_config(
    config_file: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[Union[str, Path]] = None
) -> PipelineConfig:
    """
    Resolve the effective configuration from all layers and validate it.

    Raises:
        ConfigurationError: If any layer holds an invalid option
    """
    config = PipelineConfig()
    if config_file:
        config = apply_overrides(config, load_pipeline_config(config_file))
    config = apply_overrides(config, config_from_env(environ, env_file))
    if overrides:
        config = apply_overrides(config, overrides)
    return config.validate()
