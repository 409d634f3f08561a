"""Tests for config loading, validation and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from riglm.config import ConfigError, load_config, parse_config

MINIMAL = """
servers:
  - name: files
    command: npx
    args: ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
"""

FULL = """
proxy:
  name: my-proxy
  top_k: 8
storage:
  path: data/learned.db
  prune_threshold: 100
  prune_min_confidence: 0.2
  prune_unused_days: 7
  prune_interval_seconds: 3600
embedding:
  backend: ollama
  model: nomic-embed-text
  base_url: http://localhost:11434
session:
  idle_ttl_seconds: 600
servers:
  - name: files
    command: npx
    env:
      DEBUG: 1
  - name: web-search
    command: uvx
    args: [mcp-web]
    enabled: false
    cwd: /srv
"""

ENV_VARS = [
    "RIGLM_DB_PATH",
    "RIGLM_PRUNE_THRESHOLD",
    "RIGLM_PRUNE_MIN_CONFIDENCE",
    "RIGLM_PRUNE_UNUSED_DAYS",
    "RIGLM_EMBEDDING_BACKEND",
    "RIGLM_EMBEDDING_MODEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "riglm.yaml"
    path.write_text(text)
    return path


class TestLoad:
    def test_minimal_uses_defaults(self, tmp_path):
        config = load_config(_write(tmp_path, MINIMAL))
        assert [s.name for s in config.servers] == ["files"]
        assert config.servers[0].args[0] == "-y"
        assert config.servers[0].enabled is True
        assert config.proxy.name == "riglm"
        assert config.proxy.top_k == 15
        assert config.storage.prune_threshold == 5000
        assert config.storage.prune_min_confidence == 0.1
        assert config.storage.prune_unused_days == 30
        assert config.embedding.backend == "sentence-transformers"
        assert config.session.idle_ttl_seconds is None
        assert config.embedding.timeout_seconds == 10.0

    def test_full(self, tmp_path):
        config = load_config(_write(tmp_path, FULL))
        assert config.proxy.name == "my-proxy"
        assert config.proxy.top_k == 8
        assert config.storage.thresholds().size_threshold == 100
        assert config.storage.thresholds().retain_count == 90
        assert config.storage.prune_interval_seconds == 3600
        assert config.embedding.base_url == "http://localhost:11434"
        assert config.session.idle_ttl_seconds == 600
        web = config.servers[1]
        assert web.enabled is False
        assert web.cwd == "/srv"
        assert config.servers[0].env == {"DEBUG": "1"}

    def test_relative_db_path_resolves_against_config_dir(self, tmp_path):
        config = load_config(_write(tmp_path, FULL))
        assert config.db_path == tmp_path.resolve() / "data" / "learned.db"

    def test_absolute_db_path_kept(self, tmp_path):
        db = tmp_path / "abs.db"
        config = load_config(_write(tmp_path, MINIMAL + f"storage:\n  path: {db}\n"))
        assert config.db_path == db

    def test_json_config(self, tmp_path):
        path = tmp_path / "riglm.json"
        path.write_text('{"servers": [{"name": "a", "command": "b"}]}')
        assert load_config(path).servers[0].command == "b"


class TestEnvOverrides:
    def test_env_beats_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RIGLM_DB_PATH", "/var/lib/riglm.db")
        monkeypatch.setenv("RIGLM_PRUNE_THRESHOLD", "42")
        monkeypatch.setenv("RIGLM_PRUNE_MIN_CONFIDENCE", "0.3")
        monkeypatch.setenv("RIGLM_PRUNE_UNUSED_DAYS", "3")
        monkeypatch.setenv("RIGLM_EMBEDDING_BACKEND", "ollama")
        monkeypatch.setenv("RIGLM_EMBEDDING_MODEL", "all-minilm")
        config = load_config(_write(tmp_path, FULL))
        assert config.db_path == Path("/var/lib/riglm.db")
        assert config.storage.prune_threshold == 42
        assert config.storage.prune_min_confidence == 0.3
        assert config.storage.prune_unused_days == 3
        assert config.embedding.model == "all-minilm"

    def test_bad_env_integer(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RIGLM_PRUNE_THRESHOLD", "lots")
        with pytest.raises(ConfigError, match="RIGLM_PRUNE_THRESHOLD"):
            load_config(_write(tmp_path, MINIMAL))

    def test_env_values_are_validated(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RIGLM_PRUNE_MIN_CONFIDENCE", "1.5")
        with pytest.raises(ConfigError, match="prune_min_confidence"):
            load_config(_write(tmp_path, MINIMAL))


class TestErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read config"):
            load_config(tmp_path / "missing.yaml")

    def test_bad_yaml(self, tmp_path):
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(_write(tmp_path, "servers: [unclosed"))

    @pytest.mark.parametrize(
        "raw, message",
        [
            ([], "top level"),
            ({}, "at least one server"),
            ({"servers": []}, "at least one server"),
            ({"servers": ["npx"]}, "expected a mapping"),
            ({"servers": [{"name": "a b", "command": "x"}]}, "alphanumeric"),
            ({"servers": [{"name": "a__b", "command": "x"}]}, "must not contain"),
            ({"servers": [{"name": "a"}]}, "command"),
            ({"servers": [{"name": "a", "command": "x", "args": "-y"}]}, "args"),
            ({"servers": [{"name": "a", "command": "x", "enabled": "yes"}]}, "enabled"),
            ({"servers": [{"name": "a", "command": "x", "port": 1}]}, "unknown field"),
            (
                {"servers": [{"name": "a", "command": "x"}, {"name": "a", "command": "y"}]},
                "duplicate",
            ),
            ({"servers": [{"name": "a", "command": "x"}], "proxy": {"top_k": 0}}, "top_k"),
            ({"servers": [{"name": "a", "command": "x"}], "proxy": "fast"}, "expected a mapping"),
            (
                {"servers": [{"name": "a", "command": "x"}], "storage": {"prune_threshold": -1}},
                "prune_threshold",
            ),
            (
                {"servers": [{"name": "a", "command": "x"}], "storage": {"prune_unused_days": 0}},
                "prune_unused_days",
            ),
            (
                {"servers": [{"name": "a", "command": "x"}], "embedding": {"backend": "gpt"}},
                "embedding.backend",
            ),
            (
                {"servers": [{"name": "a", "command": "x"}], "session": {"idle_ttl_seconds": 0}},
                "idle_ttl_seconds",
            ),
            (
                {"servers": [{"name": "a", "command": "x"}], "embedding": {"timeout_seconds": 0}},
                "timeout_seconds",
            ),
            (
                {"servers": [{"name": "a", "command": "x"}], "proxy": {"top_k": "many"}},
                "",
            ),
        ],
    )
    def test_invalid(self, raw, message):
        with pytest.raises(ConfigError, match=message):
            parse_config(raw)
