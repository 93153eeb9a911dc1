"""Typed configuration loader for shellcov."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .contracts.error import BadInputError

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _coerce_bool(raw: object, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in _TRUTHY:
            return True
        if normalized in _FALSY:
            return False
    raise BadInputError(f"{name} must be boolean")


def _coerce_optional_path(raw: object, name: str) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise BadInputError(f"{name} must be a path string")
    stripped = raw.strip()
    if stripped.lower() in {"", "none", "null"}:
        return None
    return stripped


def _require_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadInputError(f"{name} must be an integer, got {type(value).__name__}")
    return value


def _require_bool(value: object, name: str) -> bool:
    if not isinstance(value, bool):
        raise BadInputError(f"{name} must be boolean, got {type(value).__name__}")
    return value


@dataclass
class TracePolicy:
    bash_path: str = "bash"
    delimiter_bytes: int = 4
    chunk_size: int = 64 * 1024
    mute: bool = False
    keep_log: bool = False
    tmp_dir: str | None = None

    def validate(self) -> None:
        if not isinstance(self.bash_path, str) or not self.bash_path:
            raise BadInputError("trace.bash_path must be a non-empty string")
        if not 2 <= _require_int(self.delimiter_bytes, "trace.delimiter_bytes") <= 16:
            raise BadInputError("trace.delimiter_bytes must be within [2, 16]")
        if _require_int(self.chunk_size, "trace.chunk_size") <= 0:
            raise BadInputError("trace.chunk_size must be > 0")
        _require_bool(self.mute, "trace.mute")
        _require_bool(self.keep_log, "trace.keep_log")
        if self.tmp_dir is not None and not Path(self.tmp_dir).is_dir():
            raise BadInputError(f"trace.tmp_dir is not a directory: {self.tmp_dir}")


@dataclass
class CoveragePolicy:
    count_hits: bool = False
    root_directory: str | None = None

    def validate(self) -> None:
        _require_bool(self.count_hits, "coverage.count_hits")
        if self.root_directory is not None and not os.path.isabs(self.root_directory):
            raise BadInputError("coverage.root_directory must be an absolute path")


@dataclass
class AppConfig:
    trace: TracePolicy = field(default_factory=TracePolicy)
    coverage: CoveragePolicy = field(default_factory=CoveragePolicy)

    @classmethod
    def load(cls, path: Path | None) -> AppConfig:
        if path is None:
            cfg = cls()
        else:
            try:
                data = tomllib.loads(path.read_text(encoding="utf-8"))
            except FileNotFoundError as exc:
                raise BadInputError(f"Config file not found: {path}") from exc
            except tomllib.TOMLDecodeError as exc:
                raise BadInputError(f"Invalid TOML: {exc}") from exc
            cfg = cls.from_dict(data)
        cfg.apply_env_overrides(os.environ)
        cfg.validate()
        return cfg

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        trace_data = data.get("trace", {})
        if not isinstance(trace_data, dict):
            raise BadInputError("[trace] section must be a table")
        coverage_data = data.get("coverage", {})
        if not isinstance(coverage_data, dict):
            raise BadInputError("[coverage] section must be a table")

        trace_kwargs = dict(trace_data)
        for key in ("mute", "keep_log"):
            if key in trace_kwargs:
                trace_kwargs[key] = _coerce_bool(trace_kwargs[key], f"trace.{key}")
        if "tmp_dir" in trace_kwargs:
            trace_kwargs["tmp_dir"] = _coerce_optional_path(trace_kwargs["tmp_dir"], "trace.tmp_dir")

        coverage_kwargs = dict(coverage_data)
        if "count_hits" in coverage_kwargs:
            coverage_kwargs["count_hits"] = _coerce_bool(
                coverage_kwargs["count_hits"], "coverage.count_hits"
            )
        if "root_directory" in coverage_kwargs:
            coverage_kwargs["root_directory"] = _coerce_optional_path(
                coverage_kwargs["root_directory"], "coverage.root_directory"
            )

        try:
            trace = TracePolicy(**trace_kwargs)
            coverage = CoveragePolicy(**coverage_kwargs)
        except TypeError as exc:
            raise BadInputError(f"Unknown config key: {exc}") from exc
        return cls(trace=trace, coverage=coverage)

    def apply_env_overrides(self, env: Mapping[str, str]) -> None:
        trace_mapping: dict[str, tuple[str, Callable[[str], Any]]] = {
            "SHELLCOV_BASH": ("bash_path", str),
            "SHELLCOV_DELIMITER_BYTES": ("delimiter_bytes", int),
            "SHELLCOV_CHUNK_SIZE": ("chunk_size", int),
            "SHELLCOV_MUTE": ("mute", lambda raw: _coerce_bool(raw, "SHELLCOV_MUTE")),
            "SHELLCOV_KEEP_LOG": ("keep_log", lambda raw: _coerce_bool(raw, "SHELLCOV_KEEP_LOG")),
            "SHELLCOV_TMP_DIR": (
                "tmp_dir",
                lambda raw: _coerce_optional_path(raw, "SHELLCOV_TMP_DIR"),
            ),
        }
        coverage_mapping: dict[str, tuple[str, Callable[[str], Any]]] = {
            "SHELLCOV_COUNT_HITS": (
                "count_hits",
                lambda raw: _coerce_bool(raw, "SHELLCOV_COUNT_HITS"),
            ),
            "SHELLCOV_ROOT": (
                "root_directory",
                lambda raw: _coerce_optional_path(raw, "SHELLCOV_ROOT"),
            ),
        }
        for target, mapping in ((self.trace, trace_mapping), (self.coverage, coverage_mapping)):
            for key, (attr, caster) in mapping.items():
                raw_value = env.get(key)
                if raw_value is None:
                    continue
                try:
                    value = caster(raw_value)
                except (ValueError, BadInputError) as exc:
                    raise BadInputError(f"Invalid env override {key}={raw_value!r}") from exc
                setattr(target, attr, value)

    def validate(self) -> None:
        self.trace.validate()
        self.coverage.validate()


def load_app_config(path: str | None) -> AppConfig:
    config_path = Path(path) if path else None
    return AppConfig.load(config_path)
