"""JSON export of one traced run, validated against the bundled schema."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Sequence
from contextlib import suppress
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jsonschema import Draft202012Validator

from shellcov.contracts.error import BadInputError, IOErrorEnvelope

from .accumulator import CoverageMap

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from shellcov.runner import RunResult

logger = logging.getLogger(__name__)

RESULTSET_SCHEMA = "shellcov.resultset.v1"


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema_resource = resources.files("shellcov.contracts") / "resultset_schema.json"
    with schema_resource.open(encoding="utf-8") as stream:
        schema = json.load(stream)
    return Draft202012Validator(schema)


def resultset_errors(payload: Any) -> list[str]:
    errors = sorted(_validator().iter_errors(payload), key=lambda err: list(err.path))
    return [f"{err.message} @ {list(err.path)}" for err in errors]


def validate_resultset(payload: Any) -> None:
    problems = resultset_errors(payload)
    if problems:
        raise BadInputError("invalid resultset: " + "; ".join(problems))


def build_resultset(
    command: Sequence[str],
    returncode: int,
    coverage: CoverageMap,
    *,
    skipped: int = 0,
    unattributed: int = 0,
) -> dict[str, Any]:
    return {
        "schema": RESULTSET_SCHEMA,
        "command": list(command),
        "returncode": returncode,
        "skipped": skipped,
        "unattributed": unattributed,
        "count_hits": coverage.count_hits,
        "coverage": {
            path: {str(line): hits for line, hits in lines.items()}
            for path, lines in coverage.as_dict().items()
        },
    }


def resultset_from_run(result: RunResult) -> dict[str, Any]:
    return build_resultset(
        result.command,
        result.returncode,
        result.coverage,
        skipped=result.skipped,
        unattributed=result.unattributed,
    )


def coverage_from_resultset(payload: dict[str, Any]) -> CoverageMap:
    validate_resultset(payload)
    coverage = CoverageMap(count_hits=bool(payload.get("count_hits", False)))
    for path, lines in payload["coverage"].items():
        for line, hits in lines.items():
            coverage.record(path, int(line), hits)
    return coverage


def write_resultset(payload: dict[str, Any], path: str | Path) -> Path:
    """Validate then write atomically via a temp file in the target directory."""

    validate_resultset(payload)
    target = Path(path)
    tmp = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        delete=False,
        dir=target.parent,
        prefix=f".{target.name}.",
        suffix=".tmp",
    )
    tmp_path = Path(tmp.name)
    try:
        with tmp:
            json.dump(payload, tmp, ensure_ascii=False, indent=2, sort_keys=True)
            tmp.write("\n")
        os.replace(tmp_path, target)
    except OSError as exc:
        with suppress(FileNotFoundError):
            tmp_path.unlink()
        raise IOErrorEnvelope(f"cannot write resultset {target}: {exc}") from exc
    logger.info("Wrote resultset to %s", target)
    return target


def read_resultset(path: str | Path) -> dict[str, Any]:
    source = Path(path)
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BadInputError(f"resultset is not valid JSON: {exc}") from exc
    validate_resultset(payload)
    return payload


__all__ = [
    "RESULTSET_SCHEMA",
    "build_resultset",
    "coverage_from_resultset",
    "read_resultset",
    "resultset_errors",
    "resultset_from_run",
    "validate_resultset",
    "write_resultset",
]
