"""Catalog of signals that may be sent to, or forwarded to, the wrapped command.

Each name maps to exactly one platform signal. On POSIX these are the standard
signal names the interpreter exposes. Windows has no general signal delivery,
so its catalog is limited to process termination and the two console control
events.
"""

from __future__ import annotations

import os
import signal
from types import MappingProxyType
from typing import Mapping

from .errors import UnknownSignalError


_POSIX_NAMES = (
    "SIGABRT",
    "SIGALRM",
    "SIGBUS",
    "SIGCHLD",
    "SIGCONT",
    "SIGFPE",
    "SIGHUP",
    "SIGILL",
    "SIGINT",
    "SIGIO",
    "SIGKILL",
    "SIGPIPE",
    "SIGPROF",
    "SIGQUIT",
    "SIGSEGV",
    "SIGSTOP",
    "SIGSYS",
    "SIGTERM",
    "SIGTRAP",
    "SIGTSTP",
    "SIGTTIN",
    "SIGTTOU",
    "SIGURG",
    "SIGUSR1",
    "SIGUSR2",
    "SIGVTALRM",
    "SIGWINCH",
    "SIGXCPU",
    "SIGXFSZ",
)

# Signals that are sendable but never caught and relayed: the child-state
# change signal, the uncatchable ones, and synchronous faults owned by the
# interpreter.
_NOT_FORWARDED = frozenset(
    {"SIGCHLD", "SIGKILL", "SIGSTOP", "SIGSEGV", "SIGBUS", "SIGFPE", "SIGILL"}
)


def _build_posix_catalog() -> dict[str, signal.Signals]:
    catalog: dict[str, signal.Signals] = {}
    for name in _POSIX_NAMES:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        catalog[name] = signal.Signals(sig)
    return catalog


def _build_windows_catalog() -> dict[str, signal.Signals]:
    return {
        "SIGTERM": signal.SIGTERM,
        "SIGINT": signal.Signals(signal.CTRL_C_EVENT),
        "SIGBREAK": signal.Signals(signal.CTRL_BREAK_EVENT),
    }


CATALOG: Mapping[str, signal.Signals] = MappingProxyType(
    _build_windows_catalog() if os.name == "nt" else _build_posix_catalog()
)

# Keyed by the signal as the supervisor receives it, which on Windows differs
# from the console event it is relayed as.
_FORWARDABLE: frozenset[signal.Signals] = frozenset(
    signal.Signals(getattr(signal, name)) for name in CATALOG if name not in _NOT_FORWARDED
)


def lookup(name: str) -> signal.Signals:
    """Return the platform signal for ``name`` (case-sensitive)."""
    try:
        return CATALOG[name]
    except KeyError:
        raise UnknownSignalError(name) from None


def signal_name(sig: int) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)


def forwardable_signals() -> frozenset[signal.Signals]:
    """Signals the supervisor catches on itself and relays to the child."""
    return _FORWARDABLE


def is_forwardable(sig: int) -> bool:
    return sig in _FORWARDABLE
