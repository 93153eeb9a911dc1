"""Run a command under bash xtrace and drain its trace log into coverage."""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from shellcov._safe_subprocess import DEVNULL, SubprocessError, format_command, safe_popen, safe_run
from shellcov.config import AppConfig
from shellcov.contracts.error import BadInputError, SpawnError, TraceLogError
from shellcov.coverage.accumulator import CoverageAccumulator, CoverageMap
from shellcov.xtrace.emitter import TraceEmitterConfig
from shellcov.xtrace.log import AppendFileTransport, TraceTransport
from shellcov.xtrace.parser import HitParser
from shellcov.xtrace.stream import RecordStream

logger = logging.getLogger(__name__)

XTRACEFD_ENV = "BASH_XTRACEFD"
BASH_ENV = "BASH_ENV"
MIN_XTRACEFD_VERSION = (4, 1)


class RunState(Enum):
    INIT = "init"
    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RunResult:
    command: tuple[str, ...]
    returncode: int
    coverage: CoverageMap
    skipped: int = 0
    unattributed: int = 0


class ProcessHandle(Protocol):
    def wait(self) -> int: ...


class SpawnStrategy(Protocol):
    def spawn(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str],
        pass_fds: Sequence[int],
        mute: bool,
    ) -> ProcessHandle: ...


TransportFactory = Callable[[str | None], TraceTransport]


def _is_executable(path: Path) -> bool:
    if not path.exists() or not path.is_file():
        return False
    return os.access(path, os.X_OK)


def resolve_executable(name: str, search_path: str | None = None) -> str:
    """Locate ``name`` the way ``execvp`` would, raising :class:`SpawnError`."""

    if os.sep in name or (os.altsep and os.altsep in name):
        candidate = Path(name)
        if not candidate.exists():
            raise SpawnError(f"command not found: {name}")
        if not _is_executable(candidate):
            raise SpawnError(f"permission denied: {name}", hint="check the file's execute bit")
        return str(candidate)
    resolved = shutil.which(name, path=search_path)
    if resolved is None:
        raise SpawnError(f"command not found: {name}", hint="is it on PATH?")
    return resolved


class PopenSpawner:
    """Default spawn strategy: a child process sharing the trace descriptor."""

    def __init__(self, cwd: str | None = None) -> None:
        self._cwd = cwd

    def spawn(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str],
        pass_fds: Sequence[int],
        mute: bool,
    ) -> ProcessHandle:
        search_path = env.get("PATH", os.environ.get("PATH"))
        argv = [resolve_executable(command[0], search_path), *command[1:]]
        sink = DEVNULL if mute else None
        try:
            return safe_popen(
                argv,
                cwd=self._cwd,
                env=env,
                pass_fds=pass_fds,
                stdout=sink,
                stderr=sink,
            )
        except OSError as exc:
            raise SpawnError(f"failed to start {format_command(command)}: {exc}") from exc


_VERSION_RE = re.compile(r"^(\d+)\.(\d+)")


def bash_version(bash_path: str = "bash") -> tuple[int, int] | None:
    try:
        completed = safe_run(
            [bash_path, "--norc", "--noprofile", "-c", 'echo "${BASH_VERSINFO[0]}.${BASH_VERSINFO[1]}"'],
            env={BASH_ENV: ""},
            timeout=10,
        )
    except (SubprocessError, OSError) as exc:
        logger.warning("Cannot determine version of %s: %s", bash_path, exc)
        return None
    match = _VERSION_RE.match(completed.stdout.strip())
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def bash_supports_xtracefd(bash_path: str = "bash") -> bool:
    version = bash_version(bash_path)
    return version is not None and version >= MIN_XTRACEFD_VERSION


class ProcessOrchestrator:
    """Own the trace log lifecycle: create, share, wait, drain, delete.

    The drain runs only after the command exits. The append-mode log cannot
    fill up and block writers the way a pipe can, so no reader thread is
    needed while the command runs.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        transport_factory: TransportFactory = AppendFileTransport,
        spawner: SpawnStrategy | None = None,
        verify_bash: bool = True,
    ) -> None:
        self._config = config if config is not None else AppConfig()
        self._transport_factory = transport_factory
        self._spawner: SpawnStrategy = spawner if spawner is not None else PopenSpawner()
        self._verify_bash = verify_bash
        self._bash_checked = False
        self.state = RunState.INIT

    def _check_bash(self) -> None:
        if not self._verify_bash or self._bash_checked:
            return
        self._bash_checked = True
        bash_path = self._config.trace.bash_path
        if not bash_supports_xtracefd(bash_path):
            logger.warning(
                "%s does not support %s (needs bash >= %d.%d); trace output may be lost",
                bash_path,
                XTRACEFD_ENV,
                *MIN_XTRACEFD_VERSION,
            )

    def run(self, command: Sequence[str], env: Mapping[str, str] | None = None) -> RunResult:
        if isinstance(command, str) or not command:
            raise BadInputError("command must be a non-empty argument list")
        argv = tuple(command)
        trace_cfg = self._config.trace
        self.state = RunState.INIT
        self._check_bash()

        emitter = TraceEmitterConfig.generate(trace_cfg.delimiter_bytes)
        transport = self._transport_factory(trace_cfg.tmp_dir)
        fd = transport.open()
        env_file: Path | None = None
        try:
            child_env = dict(env or {})
            previous = child_env.get(BASH_ENV, os.environ.get(BASH_ENV)) or None
            if previous is not None:
                logger.debug("Chaining existing %s=%s into the trace preamble", BASH_ENV, previous)
            env_file = emitter.write_env_file(trace_cfg.tmp_dir, chain=previous)
            child_env[BASH_ENV] = str(env_file)
            child_env[XTRACEFD_ENV] = str(fd)

            try:
                proc = self._spawner.spawn(argv, env=child_env, pass_fds=(fd,), mute=trace_cfg.mute)
            except SpawnError:
                self.state = RunState.FAILED
                raise
            self.state = RunState.SPAWNED
            logger.info("Tracing %s", format_command(argv))

            self.state = RunState.RUNNING
            returncode = proc.wait()
            self.state = RunState.EXITED
            if returncode < 0:
                logger.warning("Traced command killed by signal %d", -returncode)
            else:
                logger.debug("Traced command exited with %d", returncode)

            transport.close()
            return self._drain(argv, returncode, emitter, transport)
        finally:
            transport.close()
            if env_file is not None:
                with suppress(FileNotFoundError):
                    env_file.unlink()
            if trace_cfg.keep_log and self.state is not RunState.FAILED:
                logger.info("Keeping trace log at %s", getattr(transport, "path", "?"))
            else:
                transport.delete()

    def _drain(
        self,
        argv: tuple[str, ...],
        returncode: int,
        emitter: TraceEmitterConfig,
        transport: TraceTransport,
    ) -> RunResult:
        self.state = RunState.DRAINING
        stream = RecordStream(emitter, self._config.trace.chunk_size)
        parser = HitParser(emitter)
        accumulator = CoverageAccumulator(count_hits=self._config.coverage.count_hits)
        try:
            with transport.read() as fh:
                accumulator.accumulate(parser.parse_all(stream.iter_groups(fh)))
        except (OSError, TraceLogError) as exc:
            self.state = RunState.FAILED
            partial = self._scope(accumulator.coverage)
            logger.error(
                "Trace log unreadable after %d records; returning partial coverage for %d files",
                stream.groups,
                len(partial),
            )
            raise TraceLogError(
                f"trace log drain failed: {exc}",
                coverage=partial,
                skipped=parser.skipped,
                returncode=returncode,
            ) from exc

        coverage = self._scope(accumulator.coverage)
        logger.info(
            "Drained %d trace records: %d files, %d lines, %d skipped",
            stream.groups,
            len(coverage),
            coverage.total_lines(),
            parser.skipped,
        )
        if stream.resyncs:
            logger.warning("Resynchronized after %d torn trace records", stream.resyncs)
        if parser.skipped:
            logger.warning(
                "Skipped %d malformed trace records (%s)",
                parser.skipped,
                ", ".join(f"{reason}: {count}" for reason, count in parser.reasons.most_common()),
            )
        self.state = RunState.DONE
        return RunResult(
            command=argv,
            returncode=returncode,
            coverage=coverage,
            skipped=parser.skipped,
            unattributed=parser.unattributed,
        )

    def _scope(self, coverage: CoverageMap) -> CoverageMap:
        root = self._config.coverage.root_directory
        if root is None:
            return coverage
        return coverage.restrict_to(root)


def run_traced(
    command: Sequence[str],
    env: Mapping[str, str] | None = None,
    config: AppConfig | None = None,
) -> RunResult:
    return ProcessOrchestrator(config).run(command, env)


__all__ = [
    "BASH_ENV",
    "MIN_XTRACEFD_VERSION",
    "PopenSpawner",
    "ProcessHandle",
    "ProcessOrchestrator",
    "RunResult",
    "RunState",
    "SpawnStrategy",
    "TransportFactory",
    "XTRACEFD_ENV",
    "bash_supports_xtracefd",
    "bash_version",
    "resolve_executable",
    "run_traced",
]
