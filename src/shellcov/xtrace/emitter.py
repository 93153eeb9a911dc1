"""PS4 format string and BASH_ENV preamble for bash line tracing.

Every traced line is written by bash as::

    +<delim><LINENO>\\x1f<BASH_SOURCE>\\x1f<PWD>\\x1f<OLDPWD><delim> <command text>\\n

The leading ``+`` is the xtrace event marker (bash repeats it once per level
of indirection). ``PWD``/``OLDPWD`` are the directory context that lets the
parser follow ``cd``/``pushd``/``popd`` and subshell exits.
"""

from __future__ import annotations

import logging
import os
import secrets
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEPTH_MARKER = "+"
FIELD_SEPARATOR = "\x1f"
FIELDS: tuple[str, ...] = (
    "${LINENO-}",
    "${BASH_SOURCE[0]-}",
    "${PWD-}",
    "${OLDPWD-}",
)
DEFAULT_DELIMITER_BYTES = 4


@dataclass(frozen=True)
class TraceEmitterConfig:
    """Per-run trace format, threaded explicitly into the stream and parser."""

    delimiter: str
    separator: str = FIELD_SEPARATOR

    def __post_init__(self) -> None:
        if not self.delimiter:
            raise ValueError("delimiter must not be empty")
        forbidden = {"'", "\\", "$", DEPTH_MARKER, self.separator}
        if any(ch in forbidden for ch in self.delimiter):
            raise ValueError(f"delimiter contains a reserved character: {self.delimiter!r}")
        if len(self.separator) != 1:
            raise ValueError("separator must be a single character")

    @classmethod
    def generate(cls, nbytes: int = DEFAULT_DELIMITER_BYTES) -> TraceEmitterConfig:
        return cls(delimiter=secrets.token_hex(nbytes))

    @property
    def field_count(self) -> int:
        return len(FIELDS)

    @property
    def ps4(self) -> str:
        return f"{DEPTH_MARKER}{self.delimiter}{self.separator.join(FIELDS)}{self.delimiter}"

    @property
    def delimiter_bytes(self) -> bytes:
        return self.delimiter.encode("ascii")

    @property
    def separator_bytes(self) -> bytes:
        return self.separator.encode("ascii")

    @property
    def marker_bytes(self) -> bytes:
        return DEPTH_MARKER.encode("ascii")

    def preamble(self, chain: str | None = None) -> str:
        """Shell text for ``BASH_ENV``; ``chain`` is a startup file to source first."""

        lines = []
        if chain:
            quoted = shlex.quote(chain)
            lines.append(f"if [ -r {quoted} ]; then . {quoted}; fi")
        # PS4 goes before set -x so enabling xtrace never traces the assignment itself.
        escaped = f"\\x{ord(self.separator):02x}".join(FIELDS)
        ps4 = f"{DEPTH_MARKER}{self.delimiter}{escaped}{self.delimiter}"
        lines.append(f"PS4=$'{ps4}'")
        lines.append("set -x")
        return "\n".join(lines) + "\n"

    def write_env_file(self, directory: str | None = None, chain: str | None = None) -> Path:
        """Write the preamble to a fresh file suitable for ``BASH_ENV``."""

        fd, name = tempfile.mkstemp(prefix="shellcov_env_", suffix=".sh", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as fh:
            fh.write(self.preamble(chain))
        logger.debug("Wrote bash env preamble to %s", name)
        return Path(name)


__all__ = [
    "DEFAULT_DELIMITER_BYTES",
    "DEPTH_MARKER",
    "FIELDS",
    "FIELD_SEPARATOR",
    "TraceEmitterConfig",
]
