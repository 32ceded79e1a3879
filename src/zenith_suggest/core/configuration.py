import os
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

from zenith_suggest.core import settings
from zenith_suggest.logger import get_logger, setup_logging

ValueType = Literal["string", "int", "float"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    description: str
    attribute: str
    value_type: ValueType = "string"
    options: tuple[str, ...] | None = None
    min_value: float | int | None = None
    max_value: float | int | None = None


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    ConfigField(
        key="SUGGEST_MAX_SUGGESTIONS",
        label="Max Suggestions",
        description="Number of suggestions returned per transaction.",
        attribute="max_suggestions",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="SUGGEST_MIN_CONFIDENCE",
        label="Min Confidence",
        description="Suggestions below this merged confidence are dropped (0-1).",
        attribute="min_confidence",
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="SUGGEST_HISTORY_LIMIT",
        label="History Limit",
        description="Most recent transactions handed to every source.",
        attribute="history_limit",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="SIMILARITY_HISTORY_LIMIT",
        label="Similarity History Limit",
        description="Candidates the similarity matcher compares against.",
        attribute="similarity_history_limit",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="SIMILARITY_MIN_SCORE",
        label="Similarity Threshold",
        description="Minimum composite similarity for a historical match (0-1).",
        attribute="similarity_min_score",
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="SUGGESTION_CACHE_SIZE",
        label="Suggestion Cache Size",
        description="Maximum number of cached suggestion lists.",
        attribute="suggestion_cache_size",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="SIMILARITY_CACHE_SIZE",
        label="Similarity Cache Size",
        description="Maximum number of cached pairwise similarity scores.",
        attribute="similarity_cache_size",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="SUGGESTION_CACHE_TTL",
        label="Suggestion Cache TTL",
        description="Seconds a cached suggestion list stays valid. 0 disables expiry.",
        attribute="suggestion_cache_ttl",
        value_type="float",
        min_value=0,
    ),
    ConfigField(
        key="WARMUP_BATCH_SIZE",
        label="Warm-up Batch Size",
        description="Transactions precomputed concurrently after an import.",
        attribute="warmup_batch_size",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="DATA_DIR",
        label="Data Directory",
        description="Directory holding the JSON transaction store.",
        attribute="data_dir",
    ),
    ConfigField(
        key="LOG_DIR",
        label="Log Directory",
        description="Directory for application logs (app.log).",
        attribute="log_dir",
    ),
    ConfigField(
        key="LOG_LEVEL",
        label="Log Level",
        description="Logging verbosity.",
        attribute="log_level",
        options=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
    ),
)


class EngineConfig(BaseModel):
    max_suggestions: int = Field(default=5, ge=1)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    history_limit: int = Field(default=1000, ge=1)
    similarity_history_limit: int = Field(default=500, ge=1)
    similarity_min_score: float = Field(default=0.6, ge=0.0, le=1.0)
    suggestion_cache_size: int = Field(default=2048, ge=1)
    similarity_cache_size: int = Field(default=20_000, ge=1)
    suggestion_cache_ttl: float = Field(default=0.0, ge=0.0)
    warmup_batch_size: int = Field(default=3, ge=1)
    data_dir: str = "."
    log_dir: str | None = None
    log_level: str = "INFO"


def get_config_keys() -> tuple[str, ...]:
    return tuple(field.key for field in CONFIG_FIELDS)


def _validate_value(field: ConfigField, raw_value: str) -> tuple[str, str | None]:
    value = raw_value.strip()
    if not value:
        return "", None

    if "\n" in value or "\r" in value:
        return value, "Value must be a single line."

    if field.options:
        normalized = value.upper()
        if normalized not in field.options:
            return value, f"Must be one of: {', '.join(field.options)}."
        return normalized, None

    if field.value_type == "int":
        try:
            parsed = int(value)
        except ValueError:
            return value, "Must be a whole number."
        if field.min_value is not None and parsed < field.min_value:
            return value, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed > field.max_value:
            return value, f"Must be at most {field.max_value}."
        return str(parsed), None

    if field.value_type == "float":
        try:
            parsed = float(value)
        except ValueError:
            return value, "Must be a number."
        if field.min_value is not None and parsed < field.min_value:
            return value, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed > field.max_value:
            return value, f"Must be at most {field.max_value}."
        return str(parsed), None

    return value, None


def build_engine_config(values: dict[str, str]) -> tuple[EngineConfig, dict[str, str]]:
    """Validate raw ``KEY -> value`` strings into an ``EngineConfig``.

    Invalid entries are reported per key and fall back to the model default.
    """
    errors: dict[str, str] = {}
    accepted: dict[str, str] = {}

    for field in CONFIG_FIELDS:
        raw_value = values.get(field.key)
        if raw_value is None:
            continue
        cleaned, error = _validate_value(field, raw_value)
        if error:
            errors[field.key] = error
            logger.warning("[CONFIG] %s='%s' rejected: %s", field.key, raw_value, error)
            continue
        if cleaned:
            accepted[field.attribute] = cleaned

    return EngineConfig.model_validate(accepted), errors


def load_engine_config(*, configure_logging: bool = False) -> tuple[EngineConfig, dict[str, str]]:
    """Resolve ``.env`` and ``config.yaml`` into the environment and read the engine knobs.

    With ``configure_logging`` the host's logging is set up from the resolved
    ``LOG_LEVEL`` and ``LOG_DIR``.
    """
    keys = get_config_keys()
    settings.load_environment(keys)
    values = {key: os.environ[key] for key in keys if key in os.environ}
    config, errors = build_engine_config(values)
    settings.ensure_dirs(config.data_dir, config.log_dir)
    if configure_logging:
        setup_logging(config.log_level, config.log_dir)
    return config, errors
