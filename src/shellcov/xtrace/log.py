"""Shared trace log: one append-mode file written by the whole process tree."""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import suppress
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, Protocol

from shellcov.contracts.error import PolicyError, TraceLogError

logger = logging.getLogger(__name__)


class TraceTransport(Protocol):
    """Destination for trace records that descendants inherit by descriptor."""

    def open(self) -> int: ...

    def close(self) -> None: ...

    def read(self) -> BinaryIO: ...

    def delete(self) -> None: ...


class AppendFileTransport:
    """Trace log backed by a regular file opened with ``O_APPEND``.

    Every ``write(2)`` on an append-mode descriptor is positioned at end of
    file by the kernel, so records from concurrent writers never interleave
    inside a write, whatever its size. A pipe only guarantees that up to
    ``PIPE_BUF`` (512 bytes on macOS).
    """

    def __init__(self, directory: str | None = None, *, prefix: str = "shellcov_xtrace_") -> None:
        self._directory = directory
        self._prefix = prefix
        self._path: Path | None = None
        self._fd: int | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def fileno(self) -> int | None:
        return self._fd

    @property
    def closed(self) -> bool:
        return self._fd is None

    def open(self) -> int:
        if self._path is not None:
            raise PolicyError("trace log already opened; transports are single-use")
        fd, name = tempfile.mkstemp(prefix=self._prefix, suffix=".log", dir=self._directory)
        os.close(fd)
        self._path = Path(name)
        self._fd = os.open(name, os.O_WRONLY | os.O_APPEND)
        os.set_inheritable(self._fd, True)
        logger.debug("Opened trace log %s on fd %s", name, self._fd)
        return self._fd

    def close(self) -> None:
        fd, self._fd = self._fd, None
        if fd is not None:
            os.close(fd)

    def read(self) -> BinaryIO:
        if self._path is None:
            raise PolicyError("trace log was never opened")
        try:
            return open(self._path, "rb")
        except OSError as exc:
            raise TraceLogError(f"cannot read trace log {self._path}: {exc}") from exc

    def delete(self) -> None:
        if self._path is None:
            return
        with suppress(FileNotFoundError):
            self._path.unlink()

    def __enter__(self) -> AppendFileTransport:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
        self.delete()


__all__ = ["AppendFileTransport", "TraceTransport"]
