"""Tests for MessagingSettings."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from demo_messaging import __main__ as cli
from demo_messaging.settings import MessagingSettings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("DEMO_MESSAGING_"):
            monkeypatch.delenv(key)


def test_defaults() -> None:
    s = MessagingSettings()
    assert s.transport == "memory"
    assert s.default_delay_ms == 5000
    assert s.redelivery_max_attempts == 5
    assert s.consumer_concurrency == 1
    assert s.amqp_url.get_secret_value().startswith("amqp://")


def test_reads_prefixed_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEMO_MESSAGING_TRANSPORT", "rabbitmq")
    monkeypatch.setenv("DEMO_MESSAGING_AMQP_URL", "amqp://u:p@rabbit:5672/")
    monkeypatch.setenv("DEMO_MESSAGING_CONSUMER_CONCURRENCY", "4")
    monkeypatch.setenv("DEMO_MESSAGING_LOG_LEVEL", "debug")
    s = MessagingSettings()
    assert s.transport == "rabbitmq"
    assert s.amqp_url.get_secret_value() == "amqp://u:p@rabbit:5672/"
    assert s.consumer_concurrency == 4
    assert s.log_level == "DEBUG"


def test_empty_max_attempts_means_unbounded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEMO_MESSAGING_REDELIVERY_MAX_ATTEMPTS", "none")
    assert MessagingSettings().redelivery_max_attempts is None


def test_reads_dotenv_file(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("DEMO_MESSAGING_DEFAULT_DELAY_MS=1500\n")
    assert MessagingSettings().default_delay_ms == 1500


@pytest.mark.parametrize(
    "kwargs",
    [
        {"transport": "kafka"},
        {"default_delay_ms": 0},
        {"consumer_concurrency": 11, "max_concurrency": 10},
        {"redelivery_base_delay": 5.0, "redelivery_max_delay": 1.0},
        {"log_level": "LOUD"},
    ],
)
def test_invalid_settings(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        MessagingSettings(**kwargs)


def test_get_settings_reads_environment_once(monkeypatch: pytest.MonkeyPatch) -> None:
    get_settings.cache_clear()
    monkeypatch.setenv("DEMO_MESSAGING_DEFAULT_DELAY_MS", "1500")
    first = get_settings()
    monkeypatch.setenv("DEMO_MESSAGING_DEFAULT_DELAY_MS", "2500")
    assert get_settings() is first
    assert first.default_delay_ms == 1500
    get_settings.cache_clear()


def test_main_runs_demo_with_cached_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    get_settings.cache_clear()
    monkeypatch.setenv("DEMO_MESSAGING_LOG_LEVEL", "warning")
    run = MagicMock(side_effect=lambda coro: coro.close())
    with patch.object(cli, "configure_logging") as configure, patch.object(
        cli.asyncio, "run", run
    ):
        cli.main()
    configure.assert_called_once_with("WARNING")
    run.assert_called_once()
    get_settings.cache_clear()
