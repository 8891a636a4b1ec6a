from __future__ import annotations

import asyncio
import io
import threading
import time

import pytest

from pypolyglot.config import InterfaceConfig, parse_startup_line, read_startup_params
from pypolyglot.exceptions import PolyglotConfigError


class _SlowStream:
    """A stdin stand-in whose readline blocks until released."""

    def __init__(self) -> None:
        self.release = threading.Event()

    def readline(self) -> str:
        self.release.wait(5)
        return ""


def test_defaults() -> None:
    config = InterfaceConfig()

    assert config.topic_namespace == "udi/polyglot"
    assert config.remote_service == "polyglot"
    assert config.tls_enabled is True
    assert config.tls_verify is False
    assert config.request_timeout == 15.0
    assert config.loop_threshold == 30
    assert config.loop_window == 10.0


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POLYGLOT_TOPIC_NAMESPACE", "test/polyglot")
    monkeypatch.setenv("POLYGLOT_MQTT_TLS", "off")
    monkeypatch.setenv("POLYGLOT_MQTT_KEEPALIVE", "30")
    monkeypatch.setenv("POLYGLOT_REQUEST_TIMEOUT", "2.5")

    config = InterfaceConfig.from_env(keepalive=90)

    assert config.topic_namespace == "test/polyglot"
    assert config.tls_enabled is False
    assert config.keepalive == 90
    assert config.request_timeout == 2.5


def test_parse_startup_line_accepts_numeric_strings() -> None:
    params = parse_startup_line('{"mqttHost": "localhost", "mqttPort": "1883", "profileNum": "3", "token": "x"}\n')

    assert params.mqtt_host == "localhost"
    assert params.mqtt_port == 1883
    assert params.profile_num == 3


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "[1, 2]",
        '{"mqttHost": "localhost", "mqttPort": 1883}',
        '{"mqttHost": "", "mqttPort": 1883, "profileNum": 3}',
        '{"mqttHost": "localhost", "mqttPort": 70000, "profileNum": 3}',
    ],
)
def test_parse_startup_line_rejects_invalid(line: str) -> None:
    with pytest.raises(PolyglotConfigError):
        parse_startup_line(line)


@pytest.mark.asyncio
async def test_read_startup_params_from_stream() -> None:
    stream = io.StringIO('{"mqttHost": "localhost", "mqttPort": 1883, "profileNum": 7}\n')

    params = await read_startup_params(stream, timeout=1.0)

    assert params.profile_num == 7


@pytest.mark.asyncio
async def test_read_startup_params_requires_newline() -> None:
    stream = io.StringIO('{"mqttHost": "localhost", "mqttPort": 1883, "profileNum": 7}')

    with pytest.raises(PolyglotConfigError, match="newline"):
        await read_startup_params(stream, timeout=1.0)


@pytest.mark.asyncio
async def test_read_startup_params_times_out() -> None:
    stream = _SlowStream()
    try:
        with pytest.raises(PolyglotConfigError, match="Timeout waiting for stdin"):
            await read_startup_params(stream, timeout=0.05)  # type: ignore[arg-type]
    finally:
        stream.release.set()


def test_read_timeout_does_not_hold_up_loop_shutdown() -> None:
    stream = _SlowStream()
    started = time.monotonic()
    try:
        with pytest.raises(PolyglotConfigError, match="Timeout waiting for stdin"):
            asyncio.run(read_startup_params(stream, timeout=0.05))  # type: ignore[arg-type]
        # The blocked reader thread must not keep asyncio.run from returning.
        assert time.monotonic() - started < 2.0
    finally:
        stream.release.set()


@pytest.mark.asyncio
async def test_read_error_is_a_config_error() -> None:
    stream = io.StringIO("")
    stream.close()

    with pytest.raises(PolyglotConfigError, match="Could not read stdin"):
        await read_startup_params(stream, timeout=1.0)
