"""Bash line coverage collected from xtrace output."""

from . import contracts, coverage, xtrace
from .config import AppConfig, load_app_config
from .runner import ProcessOrchestrator, RunResult, RunState, run_traced

__all__ = [
    "AppConfig",
    "ProcessOrchestrator",
    "RunResult",
    "RunState",
    "contracts",
    "coverage",
    "load_app_config",
    "run_traced",
    "xtrace",
]
