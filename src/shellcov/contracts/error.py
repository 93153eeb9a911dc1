"""Error envelope helpers and exit codes for shellcov."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from functools import wraps
from typing import TYPE_CHECKING, Any, NoReturn, TypeVar

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from shellcov.coverage.accumulator import CoverageMap

logger = logging.getLogger(__name__)
T = TypeVar("T")


class Exit(IntEnum):
    """Stable exit codes shared across the CLI."""

    OK = 0
    BAD_INPUT = 2
    INVARIANT = 3
    POLICY = 4
    IO = 5


@dataclass(slots=True)
class ErrorEnvelope:
    """Machine-readable error contract for CLI failures."""

    error: str
    detail: str
    hint: str | None = None
    context: dict[str, Any] | None = None

    def to_json(self) -> str:
        payload: dict[str, Any] = {"error": self.error, "detail": self.detail}
        if self.hint:
            payload["hint"] = self.hint
        if self.context:
            payload["context"] = self.context
        return json.dumps(payload, ensure_ascii=False)


def die(
    code: Exit,
    kind: str,
    detail: str,
    hint: str | None = None,
    *,
    context: dict[str, Any] | None = None,
) -> NoReturn:
    """Write one JSON error line to stderr and exit with ``code``."""

    env = ErrorEnvelope(error=kind, detail=detail, hint=hint, context=context)
    sys.stderr.write(env.to_json() + "\n")
    try:
        sys.stderr.flush()
    finally:
        sys.exit(int(code))


class EnvelopeError(Exception):
    """Base exception rendered as an :class:`ErrorEnvelope` by :func:`guard_cli`."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint

    def context(self) -> dict[str, Any] | None:
        return None


class BadInputError(EnvelopeError):
    """Malformed user input: config values, flags, commands, resultsets."""


class InvariantError(EnvelopeError):
    """Internal consistency check failed."""


class PolicyError(EnvelopeError):
    """Unsupported operation or misuse of a single-use object."""


class IOErrorEnvelope(EnvelopeError):  # noqa: N818 - public API name
    """Filesystem failure that maps to Exit.IO."""


class SpawnError(BadInputError):
    """The traced command could not be started (not found, not executable)."""


class DirectoryStackUnderflow(InvariantError):
    """A directory pop was requested with no pushed frame left to pop."""


class TraceLogError(IOErrorEnvelope):
    """The shared trace log could not be read back after the command exited.

    Coverage gathered before the failure travels with the exception so callers
    never lose a partial result.
    """

    def __init__(
        self,
        message: str,
        *,
        coverage: CoverageMap | None = None,
        skipped: int = 0,
        returncode: int | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.coverage = coverage
        self.skipped = skipped
        self.returncode = returncode

    def context(self) -> dict[str, Any]:
        return {
            "returncode": self.returncode,
            "skipped": self.skipped,
            "partial_files": 0 if self.coverage is None else len(self.coverage),
        }


# Most specific first: SpawnError and TraceLogError subclass broader envelopes.
_EXCEPTION_ORDER: tuple[tuple[type[EnvelopeError], Exit, str], ...] = (
    (SpawnError, Exit.BAD_INPUT, "Spawn"),
    (TraceLogError, Exit.IO, "TraceLog"),
    (BadInputError, Exit.BAD_INPUT, "BadInput"),
    (InvariantError, Exit.INVARIANT, "Invariant"),
    (PolicyError, Exit.POLICY, "Policy"),
    (IOErrorEnvelope, Exit.IO, "IO"),
)


def classify(exc: EnvelopeError) -> tuple[Exit, str]:
    """Exit code and envelope label for ``exc``."""

    for exc_type, exit_code, label in _EXCEPTION_ORDER:
        if isinstance(exc, exc_type):
            return exit_code, label
    return Exit.POLICY, "UnhandledEnvelope"


def guard_cli(fn: Callable[..., T]) -> Callable[..., T]:
    """Turn envelope errors raised by a CLI handler into JSON + exit code."""

    @wraps(fn)
    def _wrapped(*args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except EnvelopeError as exc:
            code, label = classify(exc)
            die(code, label, str(exc), hint=exc.hint, context=exc.context())
        except FileNotFoundError as exc:
            die(Exit.IO, "FileNotFound", str(exc))
        except Exception as exc:  # pragma: no cover - last-resort envelope
            logger.exception("Unhandled CLI exception")
            die(Exit.POLICY, "Unhandled", f"{type(exc).__name__}: {exc}")

    return _wrapped


__all__ = [
    "Exit",
    "ErrorEnvelope",
    "EnvelopeError",
    "BadInputError",
    "InvariantError",
    "PolicyError",
    "IOErrorEnvelope",
    "SpawnError",
    "DirectoryStackUnderflow",
    "TraceLogError",
    "classify",
    "guard_cli",
    "die",
]
