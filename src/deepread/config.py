"""deepread configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (DEEPREAD_MODEL, DEEPREAD_DEEP_ANALYSIS_TOKEN_THRESHOLD)
  3. Per-project deepread.yaml
  4. Global ~/.deepread/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import logging
import os
import re
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from deepread.errors import ConfigError
from deepread.rag.tokens import TOKEN_ESTIMATORS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".deepread"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME: str = "deepread.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or max_total_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["llm", "chunking", "budget", "query", "jobs", "storage"]
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class LLMCfg:
    """Completion model configuration (deepread.yaml: llm:)."""

    model: str = "openai/gpt-4o"
    max_tokens: int = 4_096          # query, analysis and map calls
    reduce_max_tokens: int = 8_192   # map-reduce synthesis call
    temperature: float = 0.0
    token_estimator: str = "word_ratio"  # word_ratio | litellm


@dataclass
class ChunkingCfg:
    """Chunker configuration (deepread.yaml: chunking:)."""

    max_chars: int = 3_000


@dataclass
class BudgetCfg:
    """Token budget for the synchronous query prompt (deepread.yaml: budget:)."""

    max_total_tokens: int = 8_192
    system_prompt_reserve: int = 0
    response_reserve: int = 0


@dataclass
class QueryCfg:
    """Synchronous research query limits (deepread.yaml: query:)."""

    max_query_length: int = 1_000
    max_chunks_per_query: int = 8
    max_snippets: int = 8


@dataclass
class JobsCfg:
    """Map-reduce deep analysis configuration (deepread.yaml: jobs:).

    Attributes:
        token_threshold: Estimated corpus size (tokens) at which the async
            map-reduce path replaces the inline query path.
        batch_token_budget: Token budget per map batch.
        max_concurrent_batches: Map batches run at once (provider rate limit).
        batch_max_retries: Attempts per map batch before the job fails.
        retry_base_delay: Seconds; attempt N waits ``retry_base_delay * N``.
        job_ttl_hours: Job records expire this long after creation.
        poll_interval_seconds: Client polling interval.
        max_poll_timeout_minutes: Ceiling on the client-side polling timeout.
    """

    token_threshold: int = 40_000
    batch_token_budget: int = 80_000
    max_concurrent_batches: int = 3
    batch_max_retries: int = 3
    retry_base_delay: float = 1.0
    job_ttl_hours: int = 24
    poll_interval_seconds: float = 3.0
    max_poll_timeout_minutes: int = 30


@dataclass
class StorageCfg:
    """Local storage locations (deepread.yaml: storage:)."""

    db_path: str = ".deepread.db"
    content_dir: str = ".deepread/content"


@dataclass
class DeepreadConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    llm: LLMCfg = field(default_factory=LLMCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    budget: BudgetCfg = field(default_factory=BudgetCfg)
    query: QueryCfg = field(default_factory=QueryCfg)
    jobs: JobsCfg = field(default_factory=JobsCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
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
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


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


def _parse_section(cls: type, raw: Any, section: str) -> Any:
    """Build section dataclass *cls* from *raw*, coercing values to the default's type."""
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{section}' must be a mapping.")
    defaults = cls()
    values: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        default = getattr(defaults, f.name)
        try:
            values[f.name] = type(default)(raw[f.name])
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"Invalid value for '{section}.{f.name}': {raw[f.name]!r} "
                f"(expected {type(default).__name__})"
            ) from exc
    return cls(**values)


def _cfg_from_dict(data: dict[str, Any]) -> DeepreadConfig:
    """Build a *DeepreadConfig* from a merged raw YAML dict."""
    cfg = DeepreadConfig()
    for f in fields(DeepreadConfig):
        if f.name in data:
            section_cls = type(getattr(cfg, f.name))
            setattr(cfg, f.name, _parse_section(section_cls, data[f.name], f.name))
    return cfg


def _validate(cfg: DeepreadConfig) -> None:
    if cfg.llm.token_estimator not in TOKEN_ESTIMATORS:
        raise ConfigError(
            f"llm.token_estimator must be one of {', '.join(TOKEN_ESTIMATORS)}, "
            f"got {cfg.llm.token_estimator!r}"
        )
    if cfg.chunking.max_chars < 1:
        raise ConfigError("chunking.max_chars must be >= 1")
    if cfg.query.max_chunks_per_query < 0:
        raise ConfigError("query.max_chunks_per_query must be >= 0")
    if cfg.jobs.token_threshold < 1:
        raise ConfigError("jobs.token_threshold must be >= 1")
    if cfg.jobs.batch_token_budget < 1:
        raise ConfigError("jobs.batch_token_budget must be >= 1")
    if cfg.jobs.max_concurrent_batches < 1:
        raise ConfigError("jobs.max_concurrent_batches must be >= 1")
    if cfg.jobs.batch_max_retries < 1:
        raise ConfigError("jobs.batch_max_retries must be >= 1")


def _apply_env_overrides(cfg: DeepreadConfig) -> DeepreadConfig:
    """Apply DEEPREAD_* environment variable overrides (layer 2)."""
    if model := os.environ.get("DEEPREAD_MODEL"):
        cfg.llm.model = model
    if raw := os.environ.get("DEEPREAD_DEEP_ANALYSIS_TOKEN_THRESHOLD"):
        # Non-numeric or non-positive values keep the configured threshold
        try:
            threshold = int(raw)
        except ValueError:
            threshold = 0
        if threshold > 0:
            cfg.jobs.token_threshold = threshold
        else:
            logger.warning("Ignoring invalid DEEPREAD_DEEP_ANALYSIS_TOKEN_THRESHOLD=%r", raw)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> DeepreadConfig:
    """Load and return a merged *DeepreadConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *deepread.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            value has the wrong type or is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.deepread/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# deepread global configuration: model defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export ANTHROPIC_API_KEY=sk-ant-...\n"
            "\n"
            "llm:\n"
            "  model: openai/gpt-4o\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
