"""repolens configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (REPOLENS_GENERATION_MODEL, REPOLENS_SUMMARY_MODEL,
     REPOLENS_EMBEDDING_MODEL, REPOLENS_LOG_LEVEL, REPOLENS_GITHUB_API_URL)
  3. Per-project repolens.yaml  (working directory)
  4. Global ~/.repolens/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Tokens and API keys are read from the environment only (GITHUB_TOKEN,
OPENAI_API_KEY, ...). All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".repolens"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "repolens.yaml"

# Credential-like fields, forbidden in global config.
# Does NOT match legitimate keys like max_tokens or token_budget.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "github",
        "loader",
        "summarizer",
        "chunker",
        "ingestion",
        "retrieval",
        "generation",
        "embedding",
        "logging",
    ]
)

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    "*.lock",
    "*.log",
    "node_modules/**",
    ".git/**",
    ".next/**",
    "dist/**",
    "build/**",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class GitHubCfg:
    """Source host API access (repolens.yaml: github:)."""

    api_url: str = "https://api.github.com"
    per_page: int = 100
    max_attempts: int = 3
    timeout: float = 30.0


@dataclass
class LoaderCfg:
    """Repository tree walk (repolens.yaml: loader:)."""

    ignore: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    max_concurrency: int = 5


@dataclass
class SummarizerCfg:
    """Commit and file summarization (repolens.yaml: summarizer:)."""

    model: str = "gemini/gemini-2.0-flash"
    max_diff_bytes: int = 50 * 1024
    max_code_chars: int = 10_000
    diff_timeout: float = 30.0
    file_timeout: float = 60.0
    min_summary_length: int = 20
    max_attempts: int = 3
    min_request_interval: float = 0.2


@dataclass
class ChunkerCfg:
    """Fixed-window chunking in characters (repolens.yaml: chunker:)."""

    chunk_size: int = 8 * 1024
    overlap: int = 1024


@dataclass
class IngestionCfg:
    """Orchestrator pacing and commit limits (repolens.yaml: ingestion:)."""

    pause_every: int = 10
    pause_seconds: float = 1.0
    max_commits: int = 100
    ai_commit_limit: int = 8
    commit_concurrency: int = 10


@dataclass
class RetrievalCfg:
    """Keyword retrieval and prompt assembly (repolens.yaml: retrieval:)."""

    max_keywords: int = 10
    top_k: int = 15
    overview_top_k: int = 30  # cap on the README + key-file records of an overview answer
    max_references: int = 10
    excerpt_chars: int = 2_000
    overview_excerpt_chars: int = 1_000
    context_char_budget: int = 60_000


@dataclass
class GenerationCfg:
    """Answer generation (repolens.yaml: generation:)."""

    model: str = "gemini/gemini-2.5-flash-lite"


@dataclass
class EmbeddingCfg:
    """Optional summary embeddings (repolens.yaml: embedding:)."""

    enabled: bool = False
    model: str = "gemini/text-embedding-004"
    dimensions: int = 768


@dataclass
class LoggingCfg:
    """Loguru sinks (repolens.yaml: logging:)."""

    level: str = "INFO"
    file: str | None = None


@dataclass
class RepolensConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    github: GitHubCfg = field(default_factory=GitHubCfg)
    loader: LoaderCfg = field(default_factory=LoaderCfg)
    summarizer: SummarizerCfg = field(default_factory=SummarizerCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RepolensConfig) -> None:
    if cfg.chunker.chunk_size < 1:
        raise ConfigError("chunker.chunk_size must be >= 1")
    if not 0 <= cfg.chunker.overlap < cfg.chunker.chunk_size:
        raise ConfigError("chunker.overlap must be >= 0 and smaller than chunker.chunk_size")
    if cfg.loader.max_concurrency < 1:
        raise ConfigError("loader.max_concurrency must be >= 1")
    if cfg.ingestion.commit_concurrency < 1:
        raise ConfigError("ingestion.commit_concurrency must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RepolensConfig:
    """Build a *RepolensConfig* from a merged raw YAML dict."""
    cfg = RepolensConfig()

    if "github" in data:
        g = data["github"]
        cfg.github = GitHubCfg(
            api_url=str(g.get("api_url", cfg.github.api_url)).rstrip("/"),
            per_page=int(g.get("per_page", cfg.github.per_page)),
            max_attempts=int(g.get("max_attempts", cfg.github.max_attempts)),
            timeout=float(g.get("timeout", cfg.github.timeout)),
        )

    if "loader" in data:
        lo = data["loader"]
        cfg.loader = LoaderCfg(
            ignore=[str(p) for p in lo.get("ignore", cfg.loader.ignore)],
            max_concurrency=int(lo.get("max_concurrency", cfg.loader.max_concurrency)),
        )

    if "summarizer" in data:
        s = data["summarizer"]
        d = cfg.summarizer
        cfg.summarizer = SummarizerCfg(
            model=str(s.get("model", d.model)),
            max_diff_bytes=int(s.get("max_diff_bytes", d.max_diff_bytes)),
            max_code_chars=int(s.get("max_code_chars", d.max_code_chars)),
            diff_timeout=float(s.get("diff_timeout", d.diff_timeout)),
            file_timeout=float(s.get("file_timeout", d.file_timeout)),
            min_summary_length=int(s.get("min_summary_length", d.min_summary_length)),
            max_attempts=int(s.get("max_attempts", d.max_attempts)),
            min_request_interval=float(s.get("min_request_interval", d.min_request_interval)),
        )

    if "chunker" in data:
        c = data["chunker"]
        cfg.chunker = ChunkerCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunker.chunk_size)),
            overlap=int(c.get("overlap", cfg.chunker.overlap)),
        )

    if "ingestion" in data:
        i = data["ingestion"]
        d = cfg.ingestion
        cfg.ingestion = IngestionCfg(
            pause_every=int(i.get("pause_every", d.pause_every)),
            pause_seconds=float(i.get("pause_seconds", d.pause_seconds)),
            max_commits=int(i.get("max_commits", d.max_commits)),
            ai_commit_limit=int(i.get("ai_commit_limit", d.ai_commit_limit)),
            commit_concurrency=int(i.get("commit_concurrency", d.commit_concurrency)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            max_keywords=int(r.get("max_keywords", d.max_keywords)),
            top_k=int(r.get("top_k", d.top_k)),
            overview_top_k=int(r.get("overview_top_k", d.overview_top_k)),
            max_references=int(r.get("max_references", d.max_references)),
            excerpt_chars=int(r.get("excerpt_chars", d.excerpt_chars)),
            overview_excerpt_chars=int(r.get("overview_excerpt_chars", d.overview_excerpt_chars)),
            context_char_budget=int(r.get("context_char_budget", d.context_char_budget)),
        )

    if "generation" in data:
        cfg.generation = GenerationCfg(
            model=str(data["generation"].get("model", cfg.generation.model)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            enabled=bool(e.get("enabled", cfg.embedding.enabled)),
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)),
            file=lg.get("file") or cfg.logging.file,
        )

    return cfg


def _apply_env_overrides(cfg: RepolensConfig) -> RepolensConfig:
    """Apply REPOLENS_* environment variable overrides."""
    if model := os.environ.get("REPOLENS_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("REPOLENS_SUMMARY_MODEL"):
        cfg.summarizer.model = model
    if model := os.environ.get("REPOLENS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("REPOLENS_LOG_LEVEL"):
        cfg.logging.level = level
    if api_url := os.environ.get("REPOLENS_GITHUB_API_URL"):
        cfg.github.api_url = api_url.rstrip("/")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RepolensConfig:
    """Load and return a merged *RepolensConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *repolens.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains credential-like fields, or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def github_token(explicit: str | None = None) -> str | None:
    """Return *explicit* if given, else the GITHUB_TOKEN environment variable."""
    return explicit or os.environ.get("GITHUB_TOKEN") or None
