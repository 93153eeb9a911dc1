"""Turn trace field groups into line hits, tolerating malformed records."""

from __future__ import annotations

import logging
import os
import re
from collections import Counter
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum

from shellcov.contracts.error import DirectoryStackUnderflow

from .emitter import TraceEmitterConfig

logger = logging.getLogger(__name__)

_LINENO_RE = re.compile(r"\A[0-9]+\Z")


class EventKind(str, Enum):
    HIT = "hit"
    PUSH_DIR = "push-dir"
    POP_DIR = "pop-dir"


@dataclass(frozen=True, slots=True)
class Hit:
    path: str
    line: int
    event: EventKind = EventKind.HIT


@dataclass(frozen=True, slots=True)
class Malformed:
    reason: str
    fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Unattributed:
    """Well-formed record with no source file (``bash -c`` text, prompts)."""

    line: int


ParseResult = Hit | Malformed | Unattributed


@dataclass(frozen=True, slots=True)
class DirectoryFrame:
    pwd: str
    oldpwd: str


@dataclass
class DirectoryContext:
    """Stack of working directories seen in the trace.

    The root frame comes from the first record and is never popped. Each
    directory appears at most once: returning to a directory already on the
    stack (``cd -``, ``popd``, a subshell exiting back into its parent's
    directory) unwinds to that frame instead of pushing it again, so
    interleaved writers in different directories keep the stack shallow.
    """

    frames: list[DirectoryFrame] = field(default_factory=list)
    _candidates: tuple[str, ...] | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def depth(self) -> int:
        return len(self.frames)

    @property
    def top(self) -> DirectoryFrame | None:
        return self.frames[-1] if self.frames else None

    def reseed(self, pwd: str, oldpwd: str) -> None:
        self.frames = [DirectoryFrame(pwd, oldpwd)]
        self._candidates = None

    def push(self, pwd: str, oldpwd: str) -> None:
        self.frames.append(DirectoryFrame(pwd, oldpwd))
        self._candidates = None

    def pop(self) -> DirectoryFrame:
        if len(self.frames) <= 1:
            raise DirectoryStackUnderflow("directory stack underflow")
        self._candidates = None
        return self.frames.pop()

    def pop_to(self, pwd: str) -> list[DirectoryFrame]:
        """Pop frames until ``pwd`` is on top; underflows if it is not stacked."""

        popped: list[DirectoryFrame] = []
        while self.frames and self.frames[-1].pwd != pwd:
            popped.append(self.pop())
        return popped

    def classify(self, pwd: str, oldpwd: str) -> EventKind:
        top = self.top
        if top is None:
            self.reseed(pwd, oldpwd)
            return EventKind.HIT
        if pwd == top.pwd:
            return EventKind.HIT
        if any(frame.pwd == pwd for frame in self.frames[:-1]):
            return EventKind.POP_DIR
        # includes cd "$OLDPWD" from the root frame: nothing below it to return to
        return EventKind.PUSH_DIR

    def candidates(self) -> tuple[str, ...]:
        if self._candidates is None:
            ordered: dict[str, None] = {}
            for frame in reversed(self.frames):
                if frame.pwd:
                    ordered.setdefault(frame.pwd)
            for frame in reversed(self.frames):
                if frame.oldpwd:
                    ordered.setdefault(frame.oldpwd)
            self._candidates = tuple(ordered)
        return self._candidates


class HitParser:
    """Validate ``(LINENO, BASH_SOURCE, PWD, OLDPWD)`` groups into hits.

    ``parse`` never raises for bad input; it returns :class:`Malformed` and the
    caller decides to skip. ``parse_all`` does exactly that and keeps counts.
    """

    def __init__(
        self,
        emitter: TraceEmitterConfig,
        context: DirectoryContext | None = None,
        *,
        is_file: Callable[[str], bool] = os.path.isfile,
    ) -> None:
        self._field_count = emitter.field_count
        self.context = context if context is not None else DirectoryContext()
        self._is_file = is_file
        self._resolved: dict[tuple[str, tuple[str, ...]], str] = {}
        self.skipped = 0
        self.unattributed = 0
        self.reasons: Counter[str] = Counter()

    def parse(self, fields: Sequence[str]) -> ParseResult:
        if len(fields) != self._field_count:
            return Malformed(f"expected {self._field_count} fields, got {len(fields)}", tuple(fields))
        raw_line, source, pwd, oldpwd = fields
        if not _LINENO_RE.match(raw_line):
            return Malformed(f"expected integer LINENO, got {raw_line!r}", tuple(fields))
        if not pwd:
            return Malformed("missing PWD", tuple(fields))
        line = int(raw_line)

        event = self.context.classify(pwd, oldpwd)
        if event is EventKind.PUSH_DIR:
            self.context.push(pwd, oldpwd)
        elif event is EventKind.POP_DIR:
            try:
                self.context.pop_to(pwd)
            except DirectoryStackUnderflow as exc:
                self.context.reseed(pwd, oldpwd)
                return Malformed(str(exc), tuple(fields))

        if not source:
            return Unattributed(line)
        return Hit(self._resolve(source), line, event)

    def parse_all(self, groups: Iterable[Sequence[str]]) -> Iterator[Hit]:
        for fields in groups:
            result = self.parse(fields)
            if isinstance(result, Hit):
                yield result
            elif isinstance(result, Malformed):
                self.skipped += 1
                self.reasons[result.reason.split(",")[0]] += 1
                logger.debug("Skipping malformed trace record (%s): %r", result.reason, result.fields)
            else:
                self.unattributed += 1

    def _resolve(self, source: str) -> str:
        if os.path.isabs(source):
            return os.path.normpath(source)
        dirs = self.context.candidates()
        key = (source, dirs)
        cached = self._resolved.get(key)
        if cached is not None:
            return cached
        resolved = None
        for directory in dirs:
            candidate = os.path.join(directory, source)
            if self._is_file(candidate):
                resolved = candidate
                break
        if resolved is None:
            resolved = os.path.join(dirs[0], source) if dirs else os.path.abspath(source)
        resolved = os.path.normpath(resolved)
        self._resolved[key] = resolved
        return resolved


__all__ = [
    "DirectoryContext",
    "DirectoryFrame",
    "EventKind",
    "Hit",
    "HitParser",
    "Malformed",
    "ParseResult",
    "Unattributed",
]
