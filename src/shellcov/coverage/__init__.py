"""Coverage accumulation and resultset export."""

from .accumulator import CoverageAccumulator, CoverageMap
from .resultset import (
    RESULTSET_SCHEMA,
    build_resultset,
    coverage_from_resultset,
    read_resultset,
    resultset_from_run,
    validate_resultset,
    write_resultset,
)

__all__ = [
    "CoverageAccumulator",
    "CoverageMap",
    "RESULTSET_SCHEMA",
    "build_resultset",
    "coverage_from_resultset",
    "read_resultset",
    "resultset_from_run",
    "validate_resultset",
    "write_resultset",
]
