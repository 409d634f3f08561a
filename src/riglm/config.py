"""Proxy configuration: YAML file + RIGLM_* environment overrides.

Precedence: environment > file > defaults. JSON config files load too,
being valid YAML.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from riglm.learning.types import PruneThresholds

_SERVER_NAME = re.compile(r"^[A-Za-z0-9_-]+$")

EMBEDDING_BACKENDS = ("sentence-transformers", "ollama")


class ConfigError(ValueError):
    """Configuration file or environment is invalid."""


def _int_env(var: str, default: int) -> int:
    """Parse an integer from an environment variable with a helpful error on bad input."""
    raw = os.environ.get(var)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as err:
        raise ConfigError(f"{var}={raw!r} is not a valid integer") from err


def _float_env(var: str, default: float) -> float:
    raw = os.environ.get(var)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as err:
        raise ConfigError(f"{var}={raw!r} is not a valid number") from err


@dataclass
class ServerConfig:
    """One upstream MCP server, spawned over stdio."""

    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    cwd: str | None = None


@dataclass
class ProxySettings:
    name: str = "riglm"
    namespace_separator: str = "__"
    top_k: int = 15


@dataclass
class StorageConfig:
    path: str = "riglm.db"
    prune_threshold: int = 5000
    prune_min_confidence: float = 0.1
    prune_unused_days: int = 30
    prune_interval_seconds: float = 0.0  # 0 disables periodic maintenance

    def thresholds(self) -> PruneThresholds:
        return PruneThresholds(
            size_threshold=self.prune_threshold,
            min_confidence=self.prune_min_confidence,
            unused_days=self.prune_unused_days,
        )


@dataclass
class EmbeddingConfig:
    backend: str = "sentence-transformers"
    model: str | None = None  # backend default when unset
    base_url: str | None = None  # ollama only
    cache_size: int = 1000
    timeout_seconds: float = 10.0  # bounds each tools/list ranking and each Ollama request


@dataclass
class SessionConfig:
    idle_ttl_seconds: float | None = None  # None = sessions never expire


@dataclass
class RiglmConfig:
    servers: list[ServerConfig]
    proxy: ProxySettings = field(default_factory=ProxySettings)
    storage: StorageConfig = field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    source_path: Path | None = None

    @property
    def db_path(self) -> Path:
        """Storage path, relative paths resolved against the config file's directory."""
        path = Path(self.storage.path).expanduser()
        if path.is_absolute() or self.source_path is None:
            return path
        return self.source_path.parent / path


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key}: expected a mapping, got {type(value).__name__}")
    return value


def _known(section: dict[str, Any], cls: type, where: str) -> dict[str, Any]:
    allowed = set(cls.__dataclass_fields__)
    unknown = sorted(set(section) - allowed)
    if unknown:
        raise ConfigError(f"{where}: unknown field(s) {', '.join(unknown)}")
    return section


def _parse_server(raw: Any, idx: int) -> ServerConfig:
    where = f"servers[{idx}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping")
    _known(raw, ServerConfig, where)

    name = raw.get("name")
    if not isinstance(name, str) or not _SERVER_NAME.match(name):
        raise ConfigError(
            f"{where}.name: must be alphanumeric, hyphens, or underscores, got {name!r}"
        )
    if "__" in name:
        raise ConfigError(f"{where}.name: must not contain '__', got {name!r}")

    command = raw.get("command")
    if not isinstance(command, str) or not command:
        raise ConfigError(f"{where}.command: required non-empty string")

    args = raw.get("args") or []
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ConfigError(f"{where}.args: expected a list of strings")

    env = raw.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(f"{where}.env: expected a mapping")

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"{where}.enabled: expected true or false")

    cwd = raw.get("cwd")
    return ServerConfig(
        name=name,
        command=command,
        args=list(args),
        env={str(k): str(v) for k, v in env.items()},
        enabled=enabled,
        cwd=str(cwd) if cwd is not None else None,
    )


def _validate(config: RiglmConfig) -> None:
    names = [s.name for s in config.servers]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"servers: duplicate name(s) {', '.join(dupes)}")
    if not config.proxy.namespace_separator:
        raise ConfigError("proxy.namespace_separator: must be non-empty")
    if config.proxy.top_k <= 0:
        raise ConfigError(f"proxy.top_k: must be positive, got {config.proxy.top_k}")

    storage = config.storage
    if storage.prune_threshold <= 0:
        raise ConfigError(
            f"storage.prune_threshold: must be positive, got {storage.prune_threshold}"
        )
    if not 0.0 <= storage.prune_min_confidence <= 1.0:
        raise ConfigError(
            f"storage.prune_min_confidence: must be in [0, 1], got {storage.prune_min_confidence}"
        )
    if storage.prune_unused_days <= 0:
        raise ConfigError(
            f"storage.prune_unused_days: must be positive, got {storage.prune_unused_days}"
        )
    if storage.prune_interval_seconds < 0:
        raise ConfigError("storage.prune_interval_seconds: must not be negative")

    if config.embedding.backend not in EMBEDDING_BACKENDS:
        raise ConfigError(
            f"embedding.backend: must be one of {', '.join(EMBEDDING_BACKENDS)}, "
            f"got {config.embedding.backend!r}"
        )
    if config.embedding.cache_size <= 0:
        raise ConfigError("embedding.cache_size: must be positive")
    if config.embedding.timeout_seconds <= 0:
        raise ConfigError(
            f"embedding.timeout_seconds: must be positive, got {config.embedding.timeout_seconds}"
        )

    ttl = config.session.idle_ttl_seconds
    if ttl is not None and ttl <= 0:
        raise ConfigError(f"session.idle_ttl_seconds: must be positive, got {ttl}")


def _apply_env(config: RiglmConfig) -> None:
    storage = config.storage
    storage.path = os.environ.get("RIGLM_DB_PATH", storage.path)
    storage.prune_threshold = _int_env("RIGLM_PRUNE_THRESHOLD", storage.prune_threshold)
    storage.prune_min_confidence = _float_env(
        "RIGLM_PRUNE_MIN_CONFIDENCE", storage.prune_min_confidence
    )
    storage.prune_unused_days = _int_env("RIGLM_PRUNE_UNUSED_DAYS", storage.prune_unused_days)
    config.embedding.backend = os.environ.get("RIGLM_EMBEDDING_BACKEND", config.embedding.backend)
    config.embedding.model = os.environ.get("RIGLM_EMBEDDING_MODEL", config.embedding.model)


def parse_config(raw: Any, source_path: Path | None = None) -> RiglmConfig:
    """Build and validate a RiglmConfig from already-decoded data."""
    if not isinstance(raw, dict):
        raise ConfigError("config: expected a mapping at the top level")

    servers_raw = raw.get("servers")
    if not isinstance(servers_raw, list) or not servers_raw:
        raise ConfigError("servers: at least one server required")

    try:
        config = RiglmConfig(
            servers=[_parse_server(s, i) for i, s in enumerate(servers_raw)],
            proxy=ProxySettings(**_known(_section(raw, "proxy"), ProxySettings, "proxy")),
            storage=StorageConfig(**_known(_section(raw, "storage"), StorageConfig, "storage")),
            embedding=EmbeddingConfig(
                **_known(_section(raw, "embedding"), EmbeddingConfig, "embedding")
            ),
            session=SessionConfig(**_known(_section(raw, "session"), SessionConfig, "session")),
            source_path=source_path,
        )
        _apply_env(config)
        _validate(config)
    except TypeError as err:
        # Wrong-typed values surface here from comparisons in _validate
        raise ConfigError(str(err)) from err
    return config


def load_config(path: str | Path) -> RiglmConfig:
    """Read and validate a config file.

    Raises:
        ConfigError: Missing file, unparsable YAML, or invalid values.
    """
    path = Path(path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as err:
        raise ConfigError(f"cannot read config {path}: {err}") from err
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise ConfigError(f"invalid YAML in {path}: {err}") from err
    return parse_config(raw, source_path=path.resolve())
