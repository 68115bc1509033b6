"""Tests for config loading, validation, env overrides and hot-reload."""

import os
import time
from pathlib import Path
from typing import Any

import pytest
import yaml

from mailpipe.config import (
    get_config,
    load_config,
    reload_config_if_changed,
    set_config,
    validate_config_file,
)
from mailpipe.config_schema import AppConfig
from mailpipe.core.errors import ConfigLoadError, ConfigValidationError


def _write(path: Path, data: dict[str, Any]) -> Path:
    path.write_text(yaml.dump(data, default_flow_style=False))
    return path


class TestDefaults:
    def test_empty_config_uses_defaults(self) -> None:
        config = AppConfig()

        assert config.server.port == 8000
        assert config.server.worker_concurrency == 3
        assert config.database.claim_mode == "lock"
        assert config.jobs.max_attempts == 3
        assert config.sync.fallback_interval_minutes == 15
        assert config.sync.full_sync_days == 10
        assert config.sync.full_sync_max_messages == 50
        assert config.sync.stale_after_days == 30
        assert config.sync.pubsub_topic is None
        assert config.labels.names["done"] == "AI/Done"
        assert config.routing.rules == []
        assert config.handlers == {}

    def test_load_empty_file(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("")
        assert load_config(path).server.host == "127.0.0.1"


class TestValidation:
    def test_missing_file_raises_load_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml_raises_load_error(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("server: [unterminated")
        with pytest.raises(ConfigLoadError, match="parse YAML"):
            load_config(path)

    def test_non_mapping_raises_load_error(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    @pytest.mark.parametrize(
        "data",
        [
            {"database": {"claim_mode": "pessimistic"}},
            {"database": {"path": "../outside.db"}},
            {"jobs": {"max_attempts": 0}},
            {"provider": {"retry_delays": []}},
            {"handlers": {"classify": "no_colon_here"}},
            {"handlers": {"reticulate": "pkg.mod:fn"}},
            {"routing": {"rules": [{"name": "x", "route": "elsewhere"}]}},
            {"schema_version": 99},
        ],
    )
    def test_invalid_values_raise(self, temp_config_dir: Path, data: dict[str, Any]) -> None:
        path = _write(temp_config_dir / "config.yaml", data)
        with pytest.raises(ConfigValidationError):
            load_config(path)

    def test_validate_config_file_reports(self, config_file: Path, temp_config_dir: Path) -> None:
        ok, message = validate_config_file(config_file)
        assert ok
        assert "claim mode: lock" in message

        bad = _write(temp_config_dir / "bad.yaml", {"server": {"port": "not-a-port"}})
        ok, message = validate_config_file(bad)
        assert not ok
        assert "server.port" in message


class TestEnvOverrides:
    def test_nested_values_override_init_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAILPIPE_SERVER__PORT", "9000")
        monkeypatch.setenv("MAILPIPE_DATABASE__CLAIM_MODE", "optimistic")
        monkeypatch.setenv("MAILPIPE_PROVIDER__RETRY_DELAYS", "[0.5, 1, 2]")
        monkeypatch.setenv("MAILPIPE_SYNC__PUBSUB_TOPIC", "projects/p/topics/t")
        monkeypatch.setenv("MAILPIPE_CONFIG_PATH", "/ignored.yaml")
        data = {"server": {"port": 8000, "worker_concurrency": 4}}

        config = AppConfig(**data)

        assert config.server.port == 9000
        assert config.server.worker_concurrency == 4
        assert config.database.claim_mode == "optimistic"
        assert config.provider.retry_delays == [0.5, 1.0, 2.0]
        assert config.sync.pubsub_topic == "projects/p/topics/t"
        assert data == {"server": {"port": 8000, "worker_concurrency": 4}}

    def test_invalid_env_value_fails_validation(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MAILPIPE_DATABASE__CLAIM_MODE", "exclusive")
        with pytest.raises(ConfigValidationError, match="database.claim_mode"):
            load_config(config_file)

    def test_load_config_applies_environment(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MAILPIPE_SERVER__WORKER_CONCURRENCY", "7")
        assert load_config(config_file).server.worker_concurrency == 7


class TestSingleton:
    def test_get_config_reads_env_path(self, set_config_env: None, config_file: Path) -> None:
        config = get_config()
        assert config.server.worker_concurrency == 2
        assert get_config() is config

    def test_set_config_installs_instance(self) -> None:
        config = AppConfig()
        set_config(config)
        assert get_config() is config
        assert not reload_config_if_changed()

    def test_reload_picks_up_changes(self, set_config_env: None, config_file: Path) -> None:
        get_config()
        assert not reload_config_if_changed()

        data = yaml.safe_load(config_file.read_text())
        data["server"]["worker_concurrency"] = 5
        _write(config_file, data)
        future = time.time() + 5
        os.utime(config_file, (future, future))

        assert reload_config_if_changed()
        assert get_config().server.worker_concurrency == 5

    def test_reload_keeps_previous_on_invalid(
        self, set_config_env: None, config_file: Path
    ) -> None:
        original = get_config()

        config_file.write_text("database:\n  claim_mode: nope\n")
        future = time.time() + 5
        os.utime(config_file, (future, future))

        assert not reload_config_if_changed()
        assert get_config() is original
