from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import logging
import os
import sys
from typing import Callable, Mapping, Sequence

from dotenv import dotenv_values

from . import __version__
from .cloudbuild import CloudBuildClient
from .config import DEFAULT_BEFORE_TIMEOUT, DEFAULT_SIGNAL, Settings, load_settings
from .deadline import DeadlineSpec, termination_instant
from .errors import ConfigError, DeadlineFetchError, PastDeadlineError, SpawnError
from .logging_config import setup_logging
from .signals import lookup
from .supervisor import (
    ExitOutcome,
    FailedExit,
    NormalExit,
    SignaledExit,
    Supervisor,
    Trigger,
    exit_code_for,
)


logger = logging.getLogger(__name__)

PREFLIGHT_EXIT_CODE = 125
CANNOT_EXECUTE_EXIT_CODE = 126
NOT_FOUND_EXIT_CODE = 127


# Wrapper options that consume the following argument as their value.
_VALUE_FLAGS = frozenset(
    {
        "--signal",
        "--before-timeout",
        "--timeout-exit-code",
        "--api-endpoint",
        "--log-level",
        "--env-file",
    }
)
_ENV_PREFIX = "CLOUDBUILD_"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        print(f"ERROR: {message}", file=sys.stderr)
        raise SystemExit(PREFLIGHT_EXIT_CODE)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="cloudbuild-timeout",
        usage="%(prog)s [flags ...] PROJECT_ID BUILD_ID -- COMMAND [command-flags ...]",
        description=(
            "Run COMMAND inside a Cloud Build step and send it a signal shortly "
            "before the build times out."
        ),
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--signal",
        dest="timeout_signal",
        default=None,
        help=f"signal to send to wrapped process (default: {DEFAULT_SIGNAL})",
    )
    parser.add_argument(
        "--before-timeout",
        default=None,
        help=(
            "time before build timeout to send designated signal ex: 30s, 5m "
            f"(default: {DEFAULT_BEFORE_TIMEOUT})"
        ),
    )
    parser.add_argument(
        "--timeout-exit-code",
        default=None,
        help="exit with this code when the command was signalled because of the timeout",
    )
    parser.add_argument("--api-endpoint", default=None, help="Cloud Build API base URL")
    parser.add_argument("--log-level", default=None, help="log level (default: INFO)")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="read CLOUDBUILD_* settings from this file (default: .env)",
    )
    parser.add_argument("ids", nargs="*", help=argparse.SUPPRESS)
    return parser


def split_argv(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split argv into the wrapper's own arguments and the wrapped command.

    Wrapper flags may appear before, between or after PROJECT_ID and
    BUILD_ID. The command starts at the first positional after those two, or
    right after a ``--`` once they have been given.
    """
    head: list[str] = []
    positionals = 0
    i = 0
    while i < len(argv):
        token = argv[i]
        if token == "--":
            rest = list(argv[i + 1 :])
            missing = max(0, 2 - positionals)
            return head + rest[:missing], rest[missing:]
        if token.startswith("-") and len(token) > 1:
            head.append(token)
            if token in _VALUE_FLAGS and i + 1 < len(argv):
                head.append(argv[i + 1])
                i += 1
        elif positionals < 2:
            head.append(token)
            positionals += 1
        else:
            return head, list(argv[i:])
        i += 1
    return head, []


def parse_args(
    argv: Sequence[str] | None = None, parser: argparse.ArgumentParser | None = None
) -> argparse.Namespace:
    parser = parser or build_parser()
    head, command = split_argv(sys.argv[1:] if argv is None else argv)
    args = parser.parse_intermixed_args(head)
    args.command = command
    return args


def settings_from_args(
    args: argparse.Namespace, environ: Mapping[str, str] | None = None
) -> Settings:
    positionals = [*args.ids, *args.command]
    if len(args.ids) < 2 or not args.command:
        raise ConfigError(
            f"cloudbuild-timeout requires at least 3 positional arguments, got {len(positionals)}"
        )
    project_id, build_id = args.ids
    command, *command_args = args.command
    return load_settings(
        project_id=project_id,
        build_id=build_id,
        command=command,
        args=command_args,
        timeout_signal=args.timeout_signal,
        before_timeout=args.before_timeout,
        timeout_exit_code=args.timeout_exit_code,
        api_endpoint=args.api_endpoint,
        log_level=args.log_level,
        environ=environ,
    )


def load_environ(env_file: str | None) -> dict[str, str]:
    """Return ``os.environ`` overlaid on the ``CLOUDBUILD_*`` keys of ``env_file``.

    Nothing is written to ``os.environ``, so the wrapped command inherits the
    environment unchanged.
    """
    file_values: dict[str, str] = {}
    if env_file:
        file_values = {
            key: value
            for key, value in dotenv_values(env_file).items()
            if key.startswith(_ENV_PREFIX) and value is not None
        }
    return {**file_values, **os.environ}


def _spawn_exit_code(error: SpawnError) -> int:
    if isinstance(error.__cause__, FileNotFoundError):
        return NOT_FOUND_EXIT_CODE
    if isinstance(error.__cause__, PermissionError):
        return CANNOT_EXECUTE_EXIT_CODE
    return 1


def _report(outcome: ExitOutcome, timeout_exit_code: int | None) -> int:
    if isinstance(outcome, NormalExit):
        if outcome.code == 0:
            logger.info("Process exited successfully")
        else:
            logger.error("Process exited with non-zero exit code: %d", outcome.code)
    elif isinstance(outcome, SignaledExit):
        logger.error("Process was terminated by signal %s", outcome.signal.name)
    elif isinstance(outcome, FailedExit):
        logger.error("Error waiting on process: %s", outcome.cause)

    code = exit_code_for(outcome, timeout_exit_code=timeout_exit_code)
    if timeout_exit_code is not None and outcome.trigger is Trigger.DEADLINE:
        logger.info("Process was signalled at the deadline; exiting with code %d", code)
    return code


async def run_wrapped(
    settings: Settings,
    *,
    client: CloudBuildClient,
    now: Callable[[], datetime] = _utc_now,
) -> int:
    try:
        start, allowed = await client.fetch_deadline(settings.project_id, settings.build_id)
        deadline = DeadlineSpec(
            termination=termination_instant(start, allowed),
            lead_time=settings.before_timeout,
        )
        delay = deadline.resolve(now())
    except DeadlineFetchError as e:
        logger.error("%s", e)
        return PREFLIGHT_EXIT_CODE
    except PastDeadlineError as e:
        logger.error("%s for build ID '%s'", e, settings.build_id[:8])
        return PREFLIGHT_EXIT_CODE

    logger.info("Cloud Build container will be terminated at %s", deadline.termination.isoformat())
    logger.info("Process will be signaled at %s", deadline.signal_at.isoformat())

    supervisor = Supervisor(
        settings.command,
        settings.args,
        timeout_signal=lookup(settings.timeout_signal),
        delay=delay,
    )
    try:
        outcome = await supervisor.run()
    except SpawnError as e:
        logger.error("%s", e)
        return _spawn_exit_code(e)

    return _report(outcome, settings.timeout_exit_code)


def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parse_args(argv, parser)

    try:
        settings = settings_from_args(args, load_environ(args.env_file))
    except ConfigError as e:
        parser.print_usage(sys.stderr)
        print(f"ERROR: {e}", file=sys.stderr)
        return PREFLIGHT_EXIT_CODE

    setup_logging(settings.log_level)
    client = CloudBuildClient(endpoint=settings.api_endpoint)
    return asyncio.run(run_wrapped(settings, client=client))


def main(argv: Sequence[str] | None = None) -> None:
    raise SystemExit(run(argv))
