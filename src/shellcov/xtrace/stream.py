"""Split a drained trace log into delimiter-bounded field groups."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from typing import BinaryIO

from .emitter import TraceEmitterConfig

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class RecordStream:
    """Lazy reader turning raw log bytes into tuples of decoded fields.

    The log alternates between record bodies and command text::

        +D body D cmd\\n++D body D cmd\\n ...

    A piece (text between two delimiters) ending in the ``+`` marker opens a
    record, and the piece right after it is the body. A body with the wrong
    field count that itself ends in ``+`` is a torn record; the marker at its
    end opens the next record. Text after the final
    delimiter is never yielded, so a truncated tail is dropped.
    """

    def __init__(self, emitter: TraceEmitterConfig, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self._emitter = emitter
        self._chunk_size = chunk_size
        self.groups = 0
        self.resyncs = 0

    def _pieces(self, fh: BinaryIO) -> Iterator[bytes]:
        delimiter = self._emitter.delimiter_bytes
        pending = b""
        while True:
            chunk = fh.read(self._chunk_size)
            if not chunk:
                break
            parts = (pending + chunk).split(delimiter)
            pending = parts.pop()
            yield from parts
        if pending:
            logger.debug("Dropping %d trailing bytes without a closing delimiter", len(pending))

    def iter_groups(self, fh: BinaryIO) -> Iterator[tuple[str, ...]]:
        marker = self._emitter.marker_bytes
        separator = self._emitter.separator_bytes
        expected = self._emitter.field_count
        in_record = False
        for piece in self._pieces(fh):
            if in_record:
                fields = tuple(os.fsdecode(field) for field in piece.split(separator))
                self.groups += 1
                yield fields
                # a torn record with no closing delimiter runs into the next
                # record's marker; that marker still opens a record
                in_record = len(fields) != expected and piece.endswith(marker)
                if in_record:
                    self.resyncs += 1
            elif piece.endswith(marker):
                in_record = True

    def __call__(self, fh: BinaryIO) -> Iterator[tuple[str, ...]]:
        return self.iter_groups(fh)


__all__ = ["DEFAULT_CHUNK_SIZE", "RecordStream"]
