"""Configuration loader for lostfound services using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "LOSTFOUND_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "LOSTFOUND_SETTINGS_FILE"


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name.

    Args:
        explicit_env: Environment value supplied directly by the caller.

    Returns:
        A stripped environment name, falling back to ``DEFAULT_ENV``.
    """

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution."""

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority() -> tuple[Path, ...]:
    """Return existing config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


def _read_env_value(*keys: str) -> str | None:
    """Return the first present environment variable from ``keys``."""

    for key in keys:
        value = os.getenv(key)
        if value is not None:
            return value
    return None


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class APISettings(BaseSettings):
    """API key shared by the query surface and job clients."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    key: str = Field(
        default="dev-helpdesk-token",
        validation_alias=AliasChoices("API_KEY", "API__KEY"),
    )


class StorageSettings(BaseSettings):
    """Record store + image store configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "STORAGE__DATABASE_URL"),
    )
    sqlite_path: Path = Field(
        default=PROJECT_ROOT / "data" / "lostfound.db",
        validation_alias=AliasChoices("SQLITE_PATH", "STORAGE__SQLITE_PATH"),
    )
    image_bucket: str | None = Field(
        default=None,
        validation_alias=AliasChoices("IMAGE_BUCKET", "STORAGE__IMAGE_BUCKET"),
    )
    image_local_dir: Path = Field(
        default=PROJECT_ROOT / "data" / "images",
        validation_alias=AliasChoices("IMAGE_LOCAL_DIR", "STORAGE__IMAGE_LOCAL_DIR"),
    )
    image_prefix: str = Field(
        default="lost_items/",
        validation_alias=AliasChoices("IMAGE_PREFIX", "STORAGE__IMAGE_PREFIX"),
    )
    gcp_project: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GCP_PROJECT", "STORAGE__GCP_PROJECT"),
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("STORAGE_REQUEST_TIMEOUT_SECONDS", "STORAGE__REQUEST_TIMEOUT_SECONDS"),
    )
    presigned_url_ttl_seconds: int = Field(
        default=3600,
        validation_alias=AliasChoices("PRESIGNED_URL_TTL_SECONDS", "STORAGE__PRESIGNED_URL_TTL_SECONDS"),
    )


class LLMSettings(BaseSettings):
    """Vision, generation and embedding model settings."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    provider: Literal["ollama", "mock"] = Field(
        default="ollama",
        validation_alias=AliasChoices("LLM_PROVIDER", "LLM__PROVIDER"),
    )
    vision_model: str = Field(
        default="llava",
        validation_alias=AliasChoices("LLM_VISION_MODEL", "LLM__VISION_MODEL"),
    )
    embedding_model: str = Field(
        default="nomic-embed-text",
        validation_alias=AliasChoices("LLM_EMBEDDING_MODEL", "LLM__EMBEDDING_MODEL"),
    )
    temperature: float = Field(
        default=0.0,
        validation_alias=AliasChoices("LLM_TEMPERATURE", "LLM__TEMPERATURE"),
    )
    ollama_base_url: str = Field(
        default="http://127.0.0.1:11434",
        validation_alias=AliasChoices("OLLAMA_BASE_URL", "LLM__OLLAMA_BASE_URL"),
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        validation_alias=AliasChoices("LLM_REQUEST_TIMEOUT_SECONDS", "LLM__REQUEST_TIMEOUT_SECONDS"),
    )


class EnrichmentSettings(BaseSettings):
    """Enrichment worker batching, retry and quarantine policy."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    consumer_name: str = Field(
        default="enrichment",
        validation_alias=AliasChoices("ENRICHMENT_CONSUMER_NAME", "ENRICHMENT__CONSUMER_NAME"),
    )
    batch_limit: int = Field(
        default=100,
        validation_alias=AliasChoices("ENRICHMENT_BATCH_LIMIT", "ENRICHMENT__BATCH_LIMIT"),
    )
    max_workers: int = Field(
        default=4,
        validation_alias=AliasChoices("ENRICHMENT_MAX_WORKERS", "ENRICHMENT__MAX_WORKERS"),
    )
    max_retries: int = Field(
        default=3,
        validation_alias=AliasChoices("ENRICHMENT_MAX_RETRIES", "ENRICHMENT__MAX_RETRIES"),
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        validation_alias=AliasChoices("ENRICHMENT_RETRY_BASE_DELAY_SECONDS", "ENRICHMENT__RETRY_BASE_DELAY_SECONDS"),
    )
    retry_max_delay_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("ENRICHMENT_RETRY_MAX_DELAY_SECONDS", "ENRICHMENT__RETRY_MAX_DELAY_SECONDS"),
    )
    quarantine_threshold: int = Field(
        default=3,
        validation_alias=AliasChoices("ENRICHMENT_QUARANTINE_THRESHOLD", "ENRICHMENT__QUARANTINE_THRESHOLD"),
    )
    poll_interval_seconds: int = Field(
        default=60,
        validation_alias=AliasChoices("ENRICHMENT_POLL_INTERVAL_SECONDS", "ENRICHMENT__POLL_INTERVAL_SECONDS"),
    )
    dry_run: bool = Field(
        default=False,
        validation_alias=AliasChoices("ENRICHMENT_DRY_RUN", "ENRICHMENT__DRY_RUN"),
    )


class MatchingSettings(BaseSettings):
    """Claim matching policy."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    top_k: int = Field(
        default=3,
        validation_alias=AliasChoices("MATCHING_TOP_K", "MATCHING__TOP_K"),
    )
    temporal_window_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("MATCHING_TEMPORAL_WINDOW_ENABLED", "MATCHING__TEMPORAL_WINDOW_ENABLED"),
    )
    temporal_window_days: int = Field(
        default=1,
        validation_alias=AliasChoices("MATCHING_TEMPORAL_WINDOW_DAYS", "MATCHING__TEMPORAL_WINDOW_DAYS"),
    )


class UsageSettings(BaseSettings):
    """Cost accounting for AI calls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    dollars_per_credit: float = Field(
        default=3.0,
        validation_alias=AliasChoices("USAGE_DOLLARS_PER_CREDIT", "USAGE__DOLLARS_PER_CREDIT"),
    )
    credits_per_million_tokens: dict[str, float] = Field(
        default_factory=lambda: {
            "classify": 1.39,
            "complete": 2.55,
            "similarity": 0.05,
        },
        validation_alias=AliasChoices("USAGE_CREDITS_PER_MILLION_TOKENS", "USAGE__CREDITS_PER_MILLION_TOKENS"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="lostfound",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )
    service_name: str = Field(
        default="lostfound-pipeline",
        validation_alias=AliasChoices("OBS_SERVICE_NAME", "OBSERVABILITY__SERVICE_NAME"),
    )


class IngestionSettings(BaseSettings):
    """Location of found-item JSON drops picked up by the ingest job."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    source_dir: Path = Field(
        default=PROJECT_ROOT / "data" / "drops",
        validation_alias=AliasChoices("INGESTION_SOURCE_DIR", "INGESTION__SOURCE_DIR"),
    )
    area: str = Field(
        default="lost_items",
        validation_alias=AliasChoices("INGESTION_AREA", "INGESTION__AREA"),
    )


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    api: APISettings = Field(default_factory=APISettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    usage: UsageSettings = Field(default_factory=UsageSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="LOSTFOUND_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths once the model is initialised."""

        storage_updates = {}
        if not self.storage.sqlite_path.is_absolute():
            storage_updates["sqlite_path"] = (self.project_root / self.storage.sqlite_path).resolve()
        if not self.storage.image_local_dir.is_absolute():
            storage_updates["image_local_dir"] = (self.project_root / self.storage.image_local_dir).resolve()
        if storage_updates:
            object.__setattr__(self, "storage", self.storage.model_copy(update=storage_updates))

        if not self.ingestion.source_dir.is_absolute():
            ingestion_update = {"source_dir": (self.project_root / self.ingestion.source_dir).resolve()}
            object.__setattr__(self, "ingestion", self.ingestion.model_copy(update=ingestion_update))
        return self

    @model_validator(mode="after")
    def _apply_environment_overrides(self) -> "Settings":
        """Force local-friendly backends unless explicitly overridden."""

        if self.env.lower() == "local":
            storage_update: dict[str, object] = {"gcp_project": None}
            if _read_env_value("LOSTFOUND_STORAGE__IMAGE_BUCKET", "LOSTFOUND_IMAGE_BUCKET", "IMAGE_BUCKET") is None:
                storage_update["image_bucket"] = None
            object.__setattr__(self, "storage", self.storage.model_copy(update=storage_update))

            observability_update = {"structured_logging": False}
            object.__setattr__(self, "observability", self.observability.model_copy(update=observability_update))

        provider_override = _read_env_value(
            "LOSTFOUND_LLM__PROVIDER",
            "LOSTFOUND_LLM_PROVIDER",
            "LLM__PROVIDER",
            "LLM_PROVIDER",
        )
        if provider_override:
            llm_updates = {"provider": provider_override.strip().lower()}
            object.__setattr__(self, "llm", self.llm.model_copy(update=llm_updates))
        elif self.env.lower() == "local":
            object.__setattr__(self, "llm", self.llm.model_copy(update={"provider": "mock"}))

        return self

    @property
    def log_level(self) -> str:
        """str: Effective logging level for the running process."""

        return self.runtime.log_level

    @property
    def is_local(self) -> bool:
        """bool: True when the active environment is ``local``."""

        return self.env.lower() == "local"


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
