"""Interface configuration for pypolyglot."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import functools
import json
import logging
import os
import sys
import threading
from typing import Any, TextIO

from pydantic import ValidationError

from pypolyglot._constants import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STDIN_TIMEOUT,
    LOOP_THRESHOLD,
    LOOP_WINDOW,
    MQTT_PASSWORD,
    MQTT_USERNAME,
    REMOTE_SERVICE,
    TOPIC_NAMESPACE,
)
from pypolyglot.exceptions import PolyglotConfigError
from pypolyglot.models.startup import StartupParams

_logger = logging.getLogger(__name__)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class InterfaceConfig:
    """Interface configuration.

    Parameters
    ----------
    topic_namespace : str
        Prefix of every Polyglot topic.
    remote_service : str
        Name Polyglot uses on its retained connection topic.
    username : str
        MQTT broker username.
    password : str
        MQTT broker password.
    tls_enabled : bool
        Connect with TLS (Polyglot brokers listen on mqtts).
    tls_verify : bool
        Verify the broker certificate. Polyglot ships a self-signed
        certificate, so this is off by default.
    keepalive : int
        MQTT keepalive in seconds.
    request_timeout : float
        Seconds to wait for a correlated result message.
    stdin_timeout : float
        Seconds to wait for the startup parameters on stdin.
    loop_threshold : int
        Number of config messages within ``loop_window`` that is
        considered a config loop.
    loop_window : float
        Sliding window, in seconds, of the config loop detector.
    """

    topic_namespace: str = TOPIC_NAMESPACE
    remote_service: str = REMOTE_SERVICE
    username: str = MQTT_USERNAME
    password: str = MQTT_PASSWORD
    tls_enabled: bool = True
    tls_verify: bool = False
    keepalive: int = 60
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    stdin_timeout: float = DEFAULT_STDIN_TIMEOUT
    loop_threshold: int = LOOP_THRESHOLD
    loop_window: float = LOOP_WINDOW

    @classmethod
    def from_env(cls, **overrides: Any) -> InterfaceConfig:
        """Create configuration from ``POLYGLOT_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "POLYGLOT_TOPIC_NAMESPACE": "topic_namespace",
            "POLYGLOT_REMOTE_SERVICE": "remote_service",
            "POLYGLOT_MQTT_USERNAME": "username",
            "POLYGLOT_MQTT_PASSWORD": "password",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        if "tls_enabled" not in overrides:
            config_kwargs["tls_enabled"] = _env_bool(env.get("POLYGLOT_MQTT_TLS"), True)
        if "tls_verify" not in overrides:
            config_kwargs["tls_verify"] = _env_bool(env.get("POLYGLOT_MQTT_TLS_VERIFY"), False)

        keepalive_env = env.get("POLYGLOT_MQTT_KEEPALIVE")
        if keepalive_env is not None and "keepalive" not in overrides:
            config_kwargs["keepalive"] = int(keepalive_env)

        timeout_env = env.get("POLYGLOT_REQUEST_TIMEOUT")
        if timeout_env is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = float(timeout_env)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)


def parse_startup_line(line: str) -> StartupParams:
    """Parse the single JSON line Polyglot writes to stdin."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise PolyglotConfigError(f"Startup parameters are not JSON: {line[:64]!r}") from exc
    if not isinstance(payload, dict):
        raise PolyglotConfigError("Startup parameters are not a JSON object")
    try:
        return StartupParams.model_validate(payload)
    except ValidationError as exc:
        raise PolyglotConfigError(f"Invalid startup parameters: {exc}") from exc


def _read_line(source: TextIO, loop: asyncio.AbstractEventLoop, future: asyncio.Future[str]) -> None:
    try:
        line = source.readline()
    except (OSError, ValueError) as exc:
        outcome = functools.partial(_settle, future, exc=exc)
    else:
        outcome = functools.partial(_settle, future, line)
    # The waiting loop may have timed out and closed already.
    with contextlib.suppress(RuntimeError):
        loop.call_soon_threadsafe(outcome)


def _settle(future: asyncio.Future[str], line: str = "", *, exc: BaseException | None = None) -> None:
    if future.done():
        return
    if exc is not None:
        future.set_exception(exc)
    else:
        future.set_result(line)


async def read_startup_params(
    stream: TextIO | None = None,
    *,
    timeout: float = DEFAULT_STDIN_TIMEOUT,
) -> StartupParams:
    """Wait for the startup parameters on *stream* (stdin by default).

    Raises
    ------
    PolyglotConfigError
        No newline-terminated line arrived within *timeout* seconds, or
        the line is not a valid parameter object.
    """
    source = stream if stream is not None else sys.stdin
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()
    # Daemon thread: a read that never returns must not hold up shutdown.
    threading.Thread(
        target=_read_line,
        args=(source, loop, future),
        name="pypolyglot-stdin",
        daemon=True,
    ).start()
    _logger.info("Waiting for stdin")
    try:
        line = await asyncio.wait_for(future, timeout)
    except TimeoutError as exc:
        raise PolyglotConfigError("Timeout waiting for stdin") from exc
    except (OSError, ValueError) as exc:
        raise PolyglotConfigError(f"Could not read stdin: {exc}") from exc
    if not line.endswith("\n"):
        raise PolyglotConfigError("Startup parameters were not newline terminated")
    return parse_startup_line(line)
