import shutil
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
if SRC.exists():
    sys.path.insert(0, str(SRC))

# Register shared Hypothesis profiles for deterministic CI runs and fast local loops.
from tests.util import hypothesis_profiles  # noqa: E402,F401  pylint: disable=unused-import

from shellcov.runner import bash_supports_xtracefd  # noqa: E402
from shellcov.xtrace.emitter import TraceEmitterConfig  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Ensure custom marks remain registered even when pyproject isn't picked up."""
    config.addinivalue_line("markers", "bash: needs a bash >= 4.1 on PATH")


@pytest.fixture(name="emitter")
def emitter_fixture() -> TraceEmitterConfig:
    """Fixed delimiter so hand-built logs are readable in assertion output."""

    return TraceEmitterConfig(delimiter="c0ffee42")


@pytest.fixture(scope="session", name="bash_path")
def bash_path_fixture() -> str:
    bash = shutil.which("bash")
    if bash is None or not bash_supports_xtracefd(bash):
        pytest.skip("bash >= 4.1 with BASH_XTRACEFD support is required")
    return bash
