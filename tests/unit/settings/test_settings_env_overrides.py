"""Unit tests covering environment variable overrides for settings."""

from __future__ import annotations

import textwrap

import pytest

from lostfound.settings.config import PROJECT_ROOT, get_settings, reload_settings

_PROVIDER_VARS = ("LOSTFOUND_LLM__PROVIDER", "LOSTFOUND_LLM_PROVIDER", "LLM__PROVIDER", "LLM_PROVIDER")


def _clear_env(monkeypatch: pytest.MonkeyPatch, *names: str) -> None:
    """Remove env vars for every alias and prefixed variant."""

    for name in names:
        monkeypatch.delenv(name, raising=False)
        if name.startswith("LOSTFOUND_"):
            monkeypatch.delenv(name.removeprefix("LOSTFOUND_"), raising=False)
        else:
            monkeypatch.delenv(f"LOSTFOUND_{name}", raising=False)


@pytest.fixture(autouse=True)
def _restore_settings_cache():
    yield
    get_settings.cache_clear()


def test_llm_provider_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure the llm.provider value follows environment overrides."""

    _clear_env(monkeypatch, *_PROVIDER_VARS)

    default_settings = reload_settings(env="dev")
    assert default_settings.llm.provider == "ollama"

    monkeypatch.setenv("LOSTFOUND_LLM__PROVIDER", "Mock")
    overridden_settings = reload_settings(env="dev")
    assert overridden_settings.llm.provider == "mock"


def test_local_env_forces_mock_backends(monkeypatch: pytest.MonkeyPatch) -> None:
    """Local runs never reach for GCS or a live model unless asked to."""

    _clear_env(monkeypatch, *_PROVIDER_VARS, "LOSTFOUND_STORAGE__IMAGE_BUCKET", "LOSTFOUND_IMAGE_BUCKET", "IMAGE_BUCKET")

    settings = reload_settings(env="local")
    assert settings.is_local
    assert settings.llm.provider == "mock"
    assert settings.storage.image_bucket is None
    assert settings.storage.gcp_project is None
    assert settings.observability.structured_logging is False


def test_enrichment_and_matching_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Verify worker and matching policy knobs respect env vars."""

    _clear_env(
        monkeypatch,
        "LOSTFOUND_ENRICHMENT__MAX_RETRIES",
        "LOSTFOUND_ENRICHMENT__QUARANTINE_THRESHOLD",
        "LOSTFOUND_ENRICHMENT__CONSUMER_NAME",
        "LOSTFOUND_MATCHING__TOP_K",
        "LOSTFOUND_MATCHING__TEMPORAL_WINDOW_ENABLED",
    )

    defaults = reload_settings(env="dev")
    assert defaults.enrichment.max_retries == 3
    assert defaults.enrichment.quarantine_threshold == 3
    assert defaults.enrichment.consumer_name == "enrichment"
    assert defaults.matching.top_k == 3
    assert defaults.matching.temporal_window_enabled is False

    monkeypatch.setenv("LOSTFOUND_ENRICHMENT__MAX_RETRIES", "5")
    monkeypatch.setenv("LOSTFOUND_ENRICHMENT__QUARANTINE_THRESHOLD", "1")
    monkeypatch.setenv("LOSTFOUND_ENRICHMENT__CONSUMER_NAME", "enrichment-b")
    monkeypatch.setenv("LOSTFOUND_MATCHING__TOP_K", "5")
    monkeypatch.setenv("LOSTFOUND_MATCHING__TEMPORAL_WINDOW_ENABLED", "true")

    overridden = reload_settings(env="dev")
    assert overridden.enrichment.max_retries == 5
    assert overridden.enrichment.quarantine_threshold == 1
    assert overridden.enrichment.consumer_name == "enrichment-b"
    assert overridden.matching.top_k == 5
    assert overridden.matching.temporal_window_enabled is True


def test_relative_paths_resolve_against_project_root(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch, "LOSTFOUND_STORAGE__SQLITE_PATH")

    settings = reload_settings(env="dev")
    assert settings.storage.sqlite_path == (PROJECT_ROOT / "data" / "lostfound.db").resolve()
    assert settings.storage.image_local_dir.is_absolute()


def test_settings_file_override(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure TOML config files populate settings without manual env vars."""

    _clear_env(monkeypatch, "LOSTFOUND_MATCHING__TOP_K", "LOSTFOUND_STORAGE__PRESIGNED_URL_TTL_SECONDS")

    settings_file = tmp_path / "settings.local.toml"
    settings_file.write_text(
        textwrap.dedent(
            """
            [storage]
            presigned_url_ttl_seconds = 600

            [matching]
            top_k = 7
            """
        ).strip()
    )
    monkeypatch.setenv("LOSTFOUND_SETTINGS_FILE", str(settings_file))

    settings = reload_settings(env="dev")
    assert settings.storage.presigned_url_ttl_seconds == 600
    assert settings.matching.top_k == 7
    assert settings_file in settings.config_files
