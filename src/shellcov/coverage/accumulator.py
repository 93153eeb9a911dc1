"""Fold line hits into a per-file coverage map."""

from __future__ import annotations

import os
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping

from shellcov.xtrace.parser import Hit


class CoverageMap(Mapping[str, set[int] | Counter[int]]):
    """Absolute file path -> executed lines.

    In set mode each file maps to a ``set`` of distinct lines; in count mode to
    a ``Counter`` of line -> hits. Both grow monotonically.
    """

    def __init__(self, *, count_hits: bool = False) -> None:
        self.count_hits = count_hits
        self._files: dict[str, set[int] | Counter[int]] = {}

    def __getitem__(self, path: str) -> set[int] | Counter[int]:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CoverageMap):
            return self.count_hits == other.count_hits and self._files == other._files
        return NotImplemented

    def __repr__(self) -> str:
        mode = "counts" if self.count_hits else "lines"
        return f"CoverageMap({mode}, files={len(self._files)})"

    def record(self, path: str, line: int, hits: int = 1) -> None:
        if self.count_hits:
            bucket = self._files.setdefault(path, Counter())
            bucket[line] += hits  # type: ignore[index]
        else:
            self._files.setdefault(path, set()).add(line)  # type: ignore[union-attr]

    def files(self) -> list[str]:
        return sorted(self._files)

    def lines(self, path: str) -> list[int]:
        return sorted(self._files.get(path, ()))

    def hits(self, path: str, line: int) -> int:
        bucket = self._files.get(path)
        if bucket is None:
            return 0
        if isinstance(bucket, Counter):
            return bucket[line]
        return 1 if line in bucket else 0

    def total_lines(self) -> int:
        return sum(len(bucket) for bucket in self._files.values())

    def merge(self, other: CoverageMap) -> None:
        for path in other:
            for line in other.lines(path):
                self.record(path, line, other.hits(path, line))

    def restrict_to(self, root: str) -> CoverageMap:
        """Return a copy keeping only files under ``root``."""

        prefix = os.path.join(os.path.normpath(root), "")
        subset = CoverageMap(count_hits=self.count_hits)
        for path, bucket in self._files.items():
            if path.startswith(prefix):
                subset._files[path] = bucket.copy()
        return subset

    def as_dict(self) -> dict[str, dict[int, int]]:
        return {path: {line: self.hits(path, line) for line in self.lines(path)} for path in self.files()}


class CoverageAccumulator:
    """Merge hits into a :class:`CoverageMap`; input order does not matter."""

    def __init__(self, *, count_hits: bool = False) -> None:
        self._coverage = CoverageMap(count_hits=count_hits)
        self.hits = 0

    @property
    def coverage(self) -> CoverageMap:
        return self._coverage

    def add(self, hit: Hit) -> None:
        self._coverage.record(hit.path, hit.line)
        self.hits += 1

    def accumulate(self, events: Iterable[Hit]) -> CoverageMap:
        for hit in events:
            self.add(hit)
        return self._coverage


__all__ = ["CoverageAccumulator", "CoverageMap"]
