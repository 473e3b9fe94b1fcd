from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import os
import re
from typing import Mapping

from .errors import ConfigError
from .signals import lookup


DEFAULT_SIGNAL = "SIGTERM"
DEFAULT_BEFORE_TIMEOUT = "60s"
DEFAULT_API_ENDPOINT = "https://cloudbuild.googleapis.com"
DEFAULT_LOG_LEVEL = "INFO"

_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def _env(
    name: str, default: str | None = None, environ: Mapping[str, str] | None = None
) -> str | None:
    value = (os.environ if environ is None else environ).get(name)
    if value is None or value == "":
        return default
    return value


def parse_duration(raw: str) -> timedelta:
    """Parse a Go-style duration string such as ``30s``, ``5m`` or ``1h30m``.

    A bare ``0`` is accepted. Units are ``ns``, ``us``, ``ms``, ``s``, ``m``
    and ``h``; a leading sign is allowed.
    """
    text = raw.strip()
    if not text:
        raise ConfigError(f"invalid duration {raw!r}")

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)

    total = timedelta(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ConfigError(f"invalid duration {raw!r}")
        number, unit = match.groups()
        try:
            total += timedelta(microseconds=float(number) * _NANOSECONDS[unit] / 1_000)
        except OverflowError as e:
            raise ConfigError(f"invalid duration {raw!r}: out of range") from e
        pos = match.end()

    if pos == 0:
        raise ConfigError(f"invalid duration {raw!r}")
    return total * sign


def parse_exit_code(raw: str | int) -> int:
    try:
        code = int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid exit code {raw!r}") from e
    if not 0 <= code <= 255:
        raise ConfigError(f"exit code must be between 0 and 255, got {code}")
    return code


@dataclass(frozen=True, slots=True)
class Settings:
    project_id: str
    build_id: str
    command: str
    args: tuple[str, ...]

    timeout_signal: str
    before_timeout: timedelta
    timeout_exit_code: int | None

    api_endpoint: str
    log_level: str


def load_settings(
    *,
    project_id: str,
    build_id: str,
    command: str,
    args: list[str] | tuple[str, ...] = (),
    timeout_signal: str | None = None,
    before_timeout: str | None = None,
    timeout_exit_code: str | int | None = None,
    api_endpoint: str | None = None,
    log_level: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve settings; explicit arguments win over ``environ`` (default ``os.environ``)."""
    if not project_id or not build_id or not command:
        raise ConfigError("project ID, build ID and command must not be empty")

    def env(name: str) -> str | None:
        return _env(name, environ=environ)

    resolved_signal = timeout_signal or env("CLOUDBUILD_TIMEOUT_SIGNAL") or DEFAULT_SIGNAL
    lookup(resolved_signal)

    before_raw = before_timeout or env("CLOUDBUILD_TIMEOUT_BEFORE") or DEFAULT_BEFORE_TIMEOUT
    try:
        before = parse_duration(before_raw)
    except ConfigError as e:
        raise ConfigError(f"error with supplied value to --before-timeout: {e}") from e
    if before < timedelta(0):
        raise ConfigError(f"--before-timeout must not be negative, got {before_raw!r}")

    exit_code_raw = (
        timeout_exit_code
        if timeout_exit_code is not None
        else env("CLOUDBUILD_TIMEOUT_EXIT_CODE")
    )
    exit_code = parse_exit_code(exit_code_raw) if exit_code_raw is not None else None

    endpoint = api_endpoint or env("CLOUDBUILD_API_ENDPOINT") or DEFAULT_API_ENDPOINT

    level = (log_level or env("CLOUDBUILD_TIMEOUT_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()

    return Settings(
        project_id=project_id,
        build_id=build_id,
        command=command,
        args=tuple(args),
        timeout_signal=resolved_signal,
        before_timeout=before,
        timeout_exit_code=exit_code,
        api_endpoint=endpoint.rstrip("/"),
        log_level=level,
    )
