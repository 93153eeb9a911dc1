"""Bash xtrace collection: format, shared log, stream splitting, parsing."""

from .emitter import FIELD_SEPARATOR, FIELDS, TraceEmitterConfig
from .log import AppendFileTransport, TraceTransport
from .parser import (
    DirectoryContext,
    EventKind,
    Hit,
    HitParser,
    Malformed,
    ParseResult,
    Unattributed,
)
from .stream import RecordStream

__all__ = [
    "AppendFileTransport",
    "DirectoryContext",
    "EventKind",
    "FIELDS",
    "FIELD_SEPARATOR",
    "Hit",
    "HitParser",
    "Malformed",
    "ParseResult",
    "RecordStream",
    "TraceEmitterConfig",
    "TraceTransport",
    "Unattributed",
]
