"""Contract helpers for shellcov."""

from .error import (
    BadInputError,
    DirectoryStackUnderflow,
    EnvelopeError,
    ErrorEnvelope,
    Exit,
    InvariantError,
    IOErrorEnvelope,
    PolicyError,
    SpawnError,
    TraceLogError,
    classify,
    die,
    guard_cli,
)

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
