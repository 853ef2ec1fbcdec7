"""Tests for the repolens config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from repolens.config import (
    DEFAULT_IGNORE_PATTERNS,
    ConfigError,
    RepolensConfig,
    github_token,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "REPOLENS_GENERATION_MODEL",
        "REPOLENS_SUMMARY_MODEL",
        "REPOLENS_EMBEDDING_MODEL",
        "REPOLENS_LOG_LEVEL",
        "REPOLENS_GITHUB_API_URL",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")

    assert cfg.github.api_url == "https://api.github.com"
    assert cfg.summarizer.model == "gemini/gemini-2.0-flash"
    assert cfg.summarizer.max_diff_bytes == 50 * 1024
    assert cfg.summarizer.max_code_chars == 10_000
    assert cfg.chunker.chunk_size == 8192
    assert cfg.chunker.overlap == 1024
    assert cfg.ingestion.ai_commit_limit == 8
    assert cfg.ingestion.max_commits == 100
    assert cfg.retrieval.top_k == 15
    assert cfg.embedding.enabled is False
    assert cfg.loader.ignore == list(DEFAULT_IGNORE_PATTERNS)


def test_default_config_equals_dataclass_defaults(tmp_path: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert cfg == RepolensConfig()


def test_load_config_empty_files(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("", encoding="utf-8")
    (tmp_path / "repolens.yaml").write_text("", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg == RepolensConfig()


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"model": "openai/gpt-4o-mini"}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.generation.model == "openai/gpt-4o-mini"
    assert cfg.summarizer.model == "gemini/gemini-2.0-flash"


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"summarizer": {"model": "openai/gpt-4o", "max_attempts": 5}})
    _write_yaml(tmp_path / "repolens.yaml", {"summarizer": {"model": "anthropic/claude-3-haiku"}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.summarizer.model == "anthropic/claude-3-haiku"
    assert cfg.summarizer.max_attempts == 5


def test_project_sections(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "repolens.yaml",
        {
            "github": {"api_url": "https://ghe.example.com/api/v3/", "per_page": 50},
            "loader": {"ignore": ["*.min.js"], "max_concurrency": 2},
            "chunker": {"chunk_size": 2000, "overlap": 200},
            "ingestion": {"pause_every": 0, "ai_commit_limit": 3},
            "retrieval": {"top_k": 5},
            "embedding": {"enabled": True, "dimensions": 3},
            "logging": {"level": "DEBUG", "file": "repolens.log"},
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert cfg.github.api_url == "https://ghe.example.com/api/v3"
    assert cfg.github.per_page == 50
    assert cfg.loader.ignore == ["*.min.js"]
    assert cfg.loader.max_concurrency == 2
    assert (cfg.chunker.chunk_size, cfg.chunker.overlap) == (2000, 200)
    assert cfg.ingestion.pause_every == 0
    assert cfg.ingestion.ai_commit_limit == 3
    assert cfg.ingestion.max_commits == 100
    assert cfg.retrieval.top_k == 5
    assert cfg.embedding.enabled is True
    assert cfg.embedding.dimensions == 3
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.file == "repolens.log"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("bad_key", ["api_key", "openai_api_key", "github_token", "token", "password"])
def test_global_config_rejects_credentials(tmp_path: Path, bad_key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"github": {bad_key: "secret"}})
    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_max_tokens_is_not_a_credential(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"max_tokens": 100}})
    load_config(project_dir=tmp_path, global_config_path=global_cfg)


@pytest.mark.parametrize(
    "chunker",
    [{"chunk_size": 0}, {"chunk_size": 100, "overlap": 100}, {"overlap": -1}],
)
def test_invalid_chunker_raises(tmp_path: Path, chunker: dict) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"chunker": chunker})
    with pytest.raises(ConfigError, match="chunker"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")


def test_invalid_concurrency_raises(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"loader": {"max_concurrency": 0}})
    with pytest.raises(ConfigError, match="max_concurrency"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"mystery": {"x": 1}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert any("mystery" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def test_env_overrides_win_over_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"generation": {"model": "openai/gpt-4o"}})
    monkeypatch.setenv("REPOLENS_GENERATION_MODEL", "anthropic/claude-3-5-sonnet")
    monkeypatch.setenv("REPOLENS_SUMMARY_MODEL", "openai/gpt-4o-mini")
    monkeypatch.setenv("REPOLENS_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("REPOLENS_GITHUB_API_URL", "http://localhost:9000/")
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert cfg.generation.model == "anthropic/claude-3-5-sonnet"
    assert cfg.summarizer.model == "openai/gpt-4o-mini"
    assert cfg.logging.level == "WARNING"
    assert cfg.github.api_url == "http://localhost:9000"


def test_github_token_prefers_explicit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "from-env")
    assert github_token("explicit") == "explicit"
    assert github_token() == "from-env"


def test_github_token_absent() -> None:
    assert github_token() is None
