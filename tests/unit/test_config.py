"""Tests for PODKIT_* environment configuration loading."""

from __future__ import annotations

import pytest

from podkit.config import load_config
from podkit.errors import ConfigError
from podkit.models.config import DEFAULT_BACKOFF_INTERVAL, DEFAULT_BUFFER_SIZE, DEFAULT_FLUSH_INTERVAL


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "NAMESPACE",
        "LABEL_SELECTOR",
        "FOLLOW",
        "CONTAINER",
        "LOG_FILTER",
        "FLUSH_INTERVAL",
        "BUFFER_SIZE",
        "FORWARD_TIMEOUT",
        "BACKOFF_INTERVAL",
        "KUBECONFIG",
        "CONTEXT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(f"PODKIT_{key}", raising=False)


class TestDefaults:
    def test_defaults(self) -> None:
        config = load_config()
        assert config.stream.namespace == "default"
        assert config.stream.label_selector == ""
        assert config.stream.follow is False
        assert config.stream.container is None
        assert config.stream.flush_interval == DEFAULT_FLUSH_INTERVAL
        assert config.stream.buffer_size == DEFAULT_BUFFER_SIZE
        assert config.forward.backoff_interval == DEFAULT_BACKOFF_INTERVAL
        assert config.forward.reconnect is True
        assert config.kube.kubeconfig_path == ""
        assert config.log.level == "info"


class TestOverrides:
    def test_selector_and_namespace_are_shared(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_NAMESPACE", "shop")
        monkeypatch.setenv("PODKIT_LABEL_SELECTOR", "app=cart")
        config = load_config()
        assert (config.stream.namespace, config.stream.label_selector) == ("shop", "app=cart")
        assert (config.forward.namespace, config.forward.label_selector) == ("shop", "app=cart")

    @pytest.mark.parametrize(("raw", "expected"), [("true", True), ("1", True), ("YES", True), ("no", False)])
    def test_follow_flag(self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
        monkeypatch.setenv("PODKIT_FOLLOW", raw)
        assert load_config().stream.follow is expected

    def test_numbers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_FLUSH_INTERVAL", "0.25")
        monkeypatch.setenv("PODKIT_BUFFER_SIZE", "512")
        monkeypatch.setenv("PODKIT_FORWARD_TIMEOUT", "10")
        config = load_config()
        assert config.stream.flush_interval == 0.25
        assert config.stream.buffer_size == 512
        assert config.forward.timeout == 10.0

    def test_numbers_are_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_BUFFER_SIZE", "0")
        monkeypatch.setenv("PODKIT_FLUSH_INTERVAL", "0")
        config = load_config()
        assert config.stream.buffer_size == 1
        assert config.stream.flush_interval == 0.05

    def test_log_level_is_case_insensitive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_LOG_LEVEL", "DEBUG")
        assert load_config().log.level == "debug"

    def test_empty_container_means_default_container(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_CONTAINER", "")
        assert load_config().stream.container is None


class TestInvalidValues:
    def test_non_numeric_buffer_size(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_BUFFER_SIZE", "lots")
        with pytest.raises(ConfigError, match="PODKIT_BUFFER_SIZE"):
            load_config()

    def test_non_numeric_interval(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_FLUSH_INTERVAL", "soon")
        with pytest.raises(ConfigError, match="PODKIT_FLUSH_INTERVAL"):
            load_config()

    def test_unknown_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PODKIT_LOG_LEVEL", "verbose")
        with pytest.raises(ConfigError, match="Invalid log level"):
            load_config()
