"""Configuration loader for the Cognify graph builder."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

_MODEL_OVERRIDE_ENV = "COGNIFY_OPENAI_MODEL"
_LOG_LEVEL_ENV = "COGNIFY_LOG_LEVEL"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class _FrozenModel(BaseModel):
    """Base model enforcing immutability for config sections."""

    model_config = ConfigDict(frozen=True)


class PipelineConfig(_FrozenModel):
    """Pipeline-level configuration."""

    version: str = Field(..., min_length=1)


class OpenAIConfig(_FrozenModel):
    """Settings required for the OpenAI chat completions client."""

    model: str = Field(..., min_length=1)
    api_base: str = Field(..., min_length=1)
    timeout_seconds: float = Field(..., gt=0)
    max_retries: int = Field(..., ge=0)
    temperature: float = Field(0.0, ge=0.0, le=2.0)
    max_output_tokens: int = Field(..., ge=1)
    prompt_version: str = Field(..., min_length=1)
    backoff_initial_seconds: float = Field(..., gt=0)
    backoff_max_seconds: float = Field(..., gt=0)
    retry_statuses: List[int] = Field(default_factory=list)


class ExtractionConfig(_FrozenModel):
    """Triple extraction parameters."""

    openai_model: str = Field(..., min_length=1)
    openai_base_url: str = Field(..., min_length=1)
    openai_timeout_seconds: float = Field(..., gt=0)
    openai_prompt_version: str = Field(..., min_length=1)
    openai_max_retries: int = Field(..., ge=0)
    openai_temperature: float = Field(..., ge=0.0, le=2.0)
    openai_max_output_tokens: int = Field(..., ge=1)
    openai_backoff_initial_seconds: float = Field(..., gt=0)
    openai_backoff_max_seconds: float = Field(..., gt=0)
    openai_retry_statuses: List[int] = Field(default_factory=list)
    streaming: bool = True
    max_predicate_words: int = Field(3, ge=1)

    @property
    def openai(self) -> OpenAIConfig:
        """Return the OpenAI client configuration.

        Returns:
            OpenAIConfig: Immutable settings for the OpenAI client.
        """

        return OpenAIConfig(
            model=self.openai_model,
            api_base=self.openai_base_url,
            timeout_seconds=self.openai_timeout_seconds,
            max_retries=self.openai_max_retries,
            temperature=self.openai_temperature,
            max_output_tokens=self.openai_max_output_tokens,
            prompt_version=self.openai_prompt_version,
            backoff_initial_seconds=self.openai_backoff_initial_seconds,
            backoff_max_seconds=self.openai_backoff_max_seconds,
            retry_statuses=list(self.openai_retry_statuses),
        )


class GraphConfig(_FrozenModel):
    """Limits applied while building a graph in one session."""

    soft_node_cap: int = Field(300, ge=1)
    hard_node_cap: int = Field(500, ge=1)
    edge_confidence: float = Field(0.9, ge=0.0, le=1.0)
    max_input_chars: int = Field(50_000, ge=1)

    @model_validator(mode="after")
    def _validate_caps(self) -> "GraphConfig":
        if self.soft_node_cap > self.hard_node_cap:
            msg = "graph.soft_node_cap cannot exceed graph.hard_node_cap"
            raise ValueError(msg)
        return self


class TopicConfig(_FrozenModel):
    """Settings for generating source text from a topic."""

    enabled: bool = True
    max_output_tokens: int = Field(2000, ge=1)
    temperature: float = Field(0.7, ge=0.0, le=2.0)


class APIConfig(_FrozenModel):
    """HTTP surface configuration."""

    allowed_origins: List[str] = Field(default_factory=list)


class LoggingConfig(_FrozenModel):
    """Logging defaults applied by the app factory and CLI."""

    level: str = Field("INFO", min_length=1)
    format: str = Field("%(asctime)s %(levelname)s [%(name)s] %(message)s", min_length=1)


class AppConfig(_FrozenModel):
    """Top-level application configuration composed from config.yaml."""

    pipeline: PipelineConfig
    extraction: ExtractionConfig
    graph: GraphConfig = Field(default_factory=GraphConfig)
    topic: TopicConfig = Field(default_factory=TopicConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def default_path() -> Path:
        """Return the default location of the configuration file.

        Returns:
            Path: Absolute path to config.yaml at the repository root.
        """
        return REPO_ROOT / "config.yaml"


def _determine_env_file_path() -> Optional[Path]:
    """Return the path to the environment file if one should be loaded."""

    if os.getenv("COGNIFY_SKIP_ENV_FILE"):
        return None
    override = os.getenv("COGNIFY_ENV_FILE")
    if override:
        candidate = Path(override).expanduser()
        if candidate.exists():
            return candidate
        LOGGER.warning("Configured environment file override does not exist: %s", candidate)
        return None
    if DEFAULT_ENV_FILE.exists():
        return DEFAULT_ENV_FILE
    return None


def _load_env_file(path: Path) -> None:
    """Set ``KEY=value`` pairs from ``path`` that the environment does not define yet."""

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        LOGGER.warning("Unable to read environment file at %s", path)
        return
    for line in lines:
        key, sep, value = line.strip().partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#") or os.environ.get(key, "").strip():
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        os.environ[key] = value


def _apply_environment_overrides(raw_content: Dict[str, Any]) -> Dict[str, Any]:
    """Merge environment-based overrides into the raw configuration mapping."""

    env_file_path = _determine_env_file_path()
    if env_file_path is not None:
        _load_env_file(env_file_path)

    model_override = os.getenv(_MODEL_OVERRIDE_ENV, "").strip()
    if model_override:
        raw_content.setdefault("extraction", {})["openai_model"] = model_override
        LOGGER.info("Extraction model overridden from environment: %s", model_override)

    level_override = os.getenv(_LOG_LEVEL_ENV, "").strip()
    if level_override:
        raw_content.setdefault("logging", {})["level"] = level_override.upper()
    return raw_content


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Parse ``path`` as a YAML mapping, raising ``ConfigError`` on any problem."""

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        LOGGER.error("Configuration file missing at %s", path)
        raise ConfigError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        LOGGER.error("Invalid YAML syntax in %s", path)
        raise ConfigError(f"Invalid YAML syntax in {path}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root in {path} must be a mapping")
    return data


@lru_cache(maxsize=1)
def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from YAML.

    Args:
        path: Optional override path to the YAML file.

    Returns:
        AppConfig: Parsed configuration object.

    Raises:
        ConfigError: If the configuration cannot be loaded or validated.
    """
    config_path = path or AppConfig.default_path()
    raw_content = _read_yaml(config_path)
    raw_content = _apply_environment_overrides(raw_content)
    try:
        return AppConfig(**raw_content)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration values: %s", exc)
        raise ConfigError("Configuration validation failed") from exc


def configure_logging(config: AppConfig) -> None:
    """Apply the configured log level and format to the root logger."""

    level = logging.getLevelName(config.logging.level.upper())
    if not isinstance(level, int):
        LOGGER.warning("Unknown log level %s; falling back to INFO", config.logging.level)
        level = logging.INFO
    logging.basicConfig(level=level, format=config.logging.format)


__all__ = [
    "APIConfig",
    "AppConfig",
    "ConfigError",
    "ExtractionConfig",
    "GraphConfig",
    "LoggingConfig",
    "OpenAIConfig",
    "PipelineConfig",
    "TopicConfig",
    "configure_logging",
    "load_config",
]
