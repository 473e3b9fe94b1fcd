"""Run one child process until it exits, relaying signals and a deadline signal.

The supervisor races three events on the running event loop:

- the child exiting on its own,
- a signal delivered to this process, which is relayed to the child,
- the deadline timer, which sends the configured signal to the child.

Only the first event is acted on. Whatever happens, the child is always
awaited before ``Supervisor.run`` returns, so its real exit status is reported.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
import enum
import logging
from pathlib import Path
import shlex
import signal
from typing import Any, Callable, Iterable, Union

from .errors import SignalDeliveryError, SpawnError
from .signals import forwardable_signals, lookup, signal_name


logger = logging.getLogger(__name__)


class State(str, enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETING = "completing"
    SIGNALING = "signaling"
    WAITING = "waiting"
    DONE = "done"


class Trigger(str, enum.Enum):
    COMPLETED = "completed"
    FORWARDED = "forwarded"
    DEADLINE = "deadline"


@dataclass(frozen=True, slots=True)
class NormalExit:
    code: int
    trigger: Trigger = Trigger.COMPLETED


@dataclass(frozen=True, slots=True)
class SignaledExit:
    signal: signal.Signals
    trigger: Trigger = Trigger.COMPLETED


@dataclass(frozen=True, slots=True)
class FailedExit:
    cause: BaseException
    trigger: Trigger = Trigger.COMPLETED


ExitOutcome = Union[NormalExit, SignaledExit, FailedExit]


def outcome_from_returncode(returncode: int, trigger: Trigger) -> ExitOutcome:
    if returncode < 0:
        try:
            return SignaledExit(signal=signal.Signals(-returncode), trigger=trigger)
        except ValueError:
            return NormalExit(code=128 - returncode, trigger=trigger)
    return NormalExit(code=returncode, trigger=trigger)


def exit_code_for(outcome: ExitOutcome, *, timeout_exit_code: int | None = None) -> int:
    """Map a supervision outcome to this process's exit code.

    A configured ``timeout_exit_code`` wins only when the deadline caused the
    signal. A child killed by signal N maps to 128 + N, as shells report it.
    """
    if timeout_exit_code is not None and outcome.trigger is Trigger.DEADLINE:
        return timeout_exit_code
    if isinstance(outcome, NormalExit):
        return outcome.code
    if isinstance(outcome, SignaledExit):
        return 128 + int(outcome.signal)
    return 1


class _SignalRelay:
    """Routes this process's signals into a callback on the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Callable[[signal.Signals], None]):
        self._loop = loop
        self._callback = callback
        self._installed: dict[signal.Signals, Any] = {}
        self._via_loop = True

    def install(self, signals: Iterable[signal.Signals]) -> None:
        for sig in sorted(signals):
            previous = signal.getsignal(sig)
            try:
                self._add(sig)
            except (OSError, RuntimeError, ValueError) as e:
                logger.debug("Cannot catch %s: %s", sig.name, e)
                continue
            self._installed[sig] = previous

    def _add(self, sig: signal.Signals) -> None:
        if self._via_loop:
            try:
                self._loop.add_signal_handler(sig, self._callback, sig)
                return
            except NotImplementedError:
                # Proactor loops have no add_signal_handler.
                self._via_loop = False
        signal.signal(sig, self._threadsafe_handler)

    def _threadsafe_handler(self, signum: int, _frame: Any) -> None:
        self._loop.call_soon_threadsafe(self._callback, signal.Signals(signum))

    def remove(self) -> None:
        for sig, previous in self._installed.items():
            if self._via_loop:
                self._loop.remove_signal_handler(sig)
            if previous is not None:
                signal.signal(sig, previous)
        self._installed.clear()


class Supervisor:
    def __init__(
        self,
        command: str,
        args: Iterable[str] = (),
        *,
        timeout_signal: signal.Signals,
        delay: timedelta,
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ):
        self._command = command
        self._args = list(args)
        self._timeout_signal = timeout_signal
        self._delay = delay
        self._env = env
        self._cwd = cwd
        self._process: asyncio.subprocess.Process | None = None

        self.state = State.STARTING
        self.sent_signals: list[signal.Signals] = []

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def run(self) -> ExitOutcome:
        loop = asyncio.get_running_loop()
        received: asyncio.Queue[signal.Signals] = asyncio.Queue()

        def _on_signal(sig: signal.Signals) -> None:
            if self.state in {State.STARTING, State.RUNNING}:
                received.put_nowait(sig)
            else:
                logger.warning(
                    "Ignoring signal %s received while waiting on process to exit",
                    signal_name(sig),
                )

        relay = _SignalRelay(loop, _on_signal)
        relay.install(forwardable_signals())
        try:
            return await self._supervise(received)
        finally:
            relay.remove()

    async def _spawn(self) -> asyncio.subprocess.Process:
        logger.info("Running command: %s", shlex.join([self._command, *self._args]))
        try:
            return await asyncio.create_subprocess_exec(
                self._command,
                *self._args,
                env=self._env,
                cwd=str(self._cwd) if self._cwd else None,
            )
        except OSError as e:
            raise SpawnError(f"failed to start command {self._command!r}: {e}") from e

    async def _supervise(self, received: asyncio.Queue[signal.Signals]) -> ExitOutcome:
        self.state = State.STARTING
        self._process = await self._spawn()
        self.state = State.RUNNING

        done = asyncio.ensure_future(self._process.wait())
        forwarded = asyncio.ensure_future(received.get())
        timer = asyncio.ensure_future(asyncio.sleep(max(0.0, self._delay.total_seconds())))

        try:
            finished, _ = await asyncio.wait(
                {done, forwarded, timer}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            done.cancel()
            raise
        finally:
            for task in (forwarded, timer):
                task.cancel()
            await asyncio.gather(forwarded, timer, return_exceptions=True)

        # An exited child wins any tie so it is never signalled after exit.
        if done in finished:
            trigger = Trigger.COMPLETED
            self.state = State.COMPLETING
        elif forwarded in finished:
            trigger = Trigger.FORWARDED
            self.state = State.SIGNALING
            name = signal_name(forwarded.result())
            logger.info(
                "Parent process received signal %s; forwarding to child command process", name
            )
            self._deliver(lookup(name))
        else:
            trigger = Trigger.DEADLINE
            self.state = State.SIGNALING
            logger.info(
                "Timeout has been reached; sending %s signal to process",
                signal_name(self._timeout_signal),
            )
            self._deliver(self._timeout_signal)

        self.state = State.WAITING
        if trigger is not Trigger.COMPLETED:
            logger.info("Waiting on process to exit...")

        try:
            returncode = await done
        except Exception as e:
            outcome: ExitOutcome = FailedExit(cause=e, trigger=trigger)
        else:
            outcome = outcome_from_returncode(returncode, trigger)

        self.state = State.DONE
        return outcome

    def _deliver(self, sig: signal.Signals) -> None:
        try:
            self._send(sig)
        except SignalDeliveryError as e:
            logger.warning("%s", e)
        else:
            self.sent_signals.append(sig)

    def _send(self, sig: signal.Signals) -> None:
        proc = self._process
        if proc is None:
            raise SignalDeliveryError(f"cannot send {signal_name(sig)}: no process")
        try:
            proc.send_signal(sig)
        except OSError as e:
            raise SignalDeliveryError(
                f"failed to send {signal_name(sig)} to process {proc.pid}: {e}"
            ) from e
