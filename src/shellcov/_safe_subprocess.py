"""Safe wrappers for standard-library subprocess functions."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess  # noqa: S404  # nosec B404 - subprocess usage governed via validation helpers
from collections.abc import Mapping, Sequence
from typing import IO, Union

logger = logging.getLogger(__name__)

DEVNULL = subprocess.DEVNULL

_DEFAULT_TIMEOUT = float(os.getenv("SHELLCOV_SUBPROC_TIMEOUT", "30"))

StreamTarget = Union[int, IO[bytes], IO[str], None]


class SubprocessError(RuntimeError):
    """Raised when a helper command times out or exits with a failure status."""


def _merge_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if env is None:
        return None
    merged: dict[str, str] = dict(os.environ)
    merged.update(env)
    return merged


def _validate_args(args: Sequence[str]) -> list[str]:
    if not isinstance(args, list | tuple) or not args:
        raise ValueError("args must be a non-empty sequence of strings")
    if not all(isinstance(arg, str) for arg in args):
        raise ValueError("all subprocess arguments must be strings")
    return list(args)


def format_command(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in args)


def safe_run(
    args: Sequence[str],
    *,
    cwd: str | None = None,
    timeout: float | None = None,
    check: bool = True,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a short helper command, capturing text output."""

    command = _validate_args(args)
    effective_timeout = _DEFAULT_TIMEOUT if timeout is None else float(timeout)
    cmd_repr = format_command(command)
    logger.debug("Executing command: %s (timeout=%s)", cmd_repr, effective_timeout)
    try:
        completed = subprocess.run(  # noqa: S603  # nosec B603 - command validated via _validate_args
            command,
            cwd=cwd,
            env=_merge_env(env),
            capture_output=True,
            text=True,
            timeout=effective_timeout,
            check=check,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("Command timed out after %.1fs: %s", effective_timeout, cmd_repr)
        raise SubprocessError(
            f"Command timed out after {effective_timeout:.1f}s: {cmd_repr}"
        ) from exc
    except subprocess.CalledProcessError as exc:
        logger.warning(
            "Command failed (exit %s): %s\nstderr:\n%s",
            exc.returncode,
            cmd_repr,
            exc.stderr or "",
        )
        raise SubprocessError(
            f"Command failed (exit {exc.returncode}): {cmd_repr}\nstderr:\n{exc.stderr or ''}"
        ) from exc
    logger.debug("Command finished with code %s: %s", completed.returncode, cmd_repr)
    return completed


def safe_popen(
    args: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    pass_fds: Sequence[int] = (),
    stdin: StreamTarget = None,
    stdout: StreamTarget = None,
    stderr: StreamTarget = None,
    **kwargs: object,
) -> subprocess.Popen[bytes]:
    """Spawn a long-running command; stdio is inherited unless redirected.

    ``pass_fds`` keeps the listed descriptors open (same numbers) in the child.
    """

    if "shell" in kwargs:
        raise ValueError("shell-based invocation is not permitted in safe_popen")
    if "executable" in kwargs:
        raise ValueError("Overriding the executable is not permitted in safe_popen")
    command = _validate_args(args)
    cmd_repr = format_command(command)
    logger.debug("Spawning process: %s (pass_fds=%s)", cmd_repr, tuple(pass_fds))
    try:
        return subprocess.Popen(  # noqa: S603  # nosec B603 - command validated via _validate_args
            command,
            cwd=cwd,
            env=_merge_env(env),
            pass_fds=tuple(pass_fds),
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            **kwargs,  # type: ignore[call-overload]
        )
    except OSError as exc:
        logger.error("Failed to spawn process %s: %s", cmd_repr, exc)
        raise


__all__ = [
    "DEVNULL",
    "SubprocessError",
    "format_command",
    "safe_popen",
    "safe_run",
]
