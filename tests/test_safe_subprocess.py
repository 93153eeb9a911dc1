from __future__ import annotations

import os
import sys
from typing import cast

import pytest

from shellcov._safe_subprocess import SubprocessError, format_command, safe_popen, safe_run


def test_safe_run_timeout() -> None:
    with pytest.raises(SubprocessError):
        safe_run([sys.executable, "-c", "import time; time.sleep(2)"], timeout=0.1)


def test_safe_run_success() -> None:
    result = safe_run([sys.executable, "-c", "print('ok')"])
    assert result.returncode == 0
    assert "ok" in result.stdout


def test_safe_run_merges_env() -> None:
    result = safe_run(
        [sys.executable, "-c", "import os; print(os.getenv('SAFE_SUBPROC_FLAG'))"],
        env={"SAFE_SUBPROC_FLAG": "demo"},
    )
    assert result.stdout.strip() == "demo"


def test_safe_run_raises_on_failure() -> None:
    with pytest.raises(SubprocessError) as excinfo:
        safe_run([sys.executable, "-c", "import sys; sys.exit(3)"])
    assert "exit 3" in str(excinfo.value)


def test_safe_run_validates_args_sequence() -> None:
    with pytest.raises(ValueError):
        safe_run(())
    with pytest.raises(ValueError):
        safe_run(["echo", cast(str, 123)])


def test_safe_popen_rejects_shell() -> None:
    with pytest.raises(ValueError):
        safe_popen([sys.executable, "--version"], shell=True)  # noqa: S604


def test_safe_popen_rejects_executable_override() -> None:
    with pytest.raises(ValueError):
        safe_popen([sys.executable, "--version"], executable=sys.executable)


def test_safe_popen_logs_oserror() -> None:
    with pytest.raises(OSError):
        safe_popen(["__nonexistent_executable__"])


@pytest.mark.skipif(sys.platform == "win32", reason="pass_fds is POSIX-only")
def test_safe_popen_passes_descriptor() -> None:
    read_fd, write_fd = os.pipe()
    try:
        proc = safe_popen(
            [sys.executable, "-c", f"import os; os.write({write_fd}, b'hello')"],
            pass_fds=(write_fd,),
        )
        assert proc.wait(timeout=30) == 0
        os.close(write_fd)
        write_fd = -1
        assert os.read(read_fd, 16) == b"hello"
    finally:
        os.close(read_fd)
        if write_fd != -1:
            os.close(write_fd)


def test_format_command_quotes() -> None:
    assert format_command(["echo", "a b"]) == "echo 'a b'"
