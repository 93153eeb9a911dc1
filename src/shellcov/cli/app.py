"""Command-line entry point: trace a command and report what it covered."""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from typing import Any

from shellcov.config import AppConfig, load_app_config
from shellcov.contracts.error import BadInputError, PolicyError, TraceLogError, guard_cli
from shellcov.coverage.resultset import (
    build_resultset,
    read_resultset,
    resultset_from_run,
    write_resultset,
)
from shellcov.runner import ProcessOrchestrator

# --------------------------------------------------------------------
# Logging
# --------------------------------------------------------------------
logger = logging.getLogger("shellcov")
logger.setLevel(logging.INFO)
logger.propagate = False

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_LOG_MAX_BYTES = 5_000_000
DEFAULT_LOG_BACKUP_COUNT = 5


class JsonFormatter(logging.Formatter):
    """Render log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, DEFAULT_LOG_DATEFMT),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(
    use_json: bool = False,
    log_file: str | None = None,
    *,
    level: int = logging.INFO,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
) -> None:
    """Configure stderr (and optional rotating file) logging for ``shellcov.*``."""

    formatter: logging.Formatter
    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_LOG_DATEFMT)

    for handler in list(logger.handlers):
        with contextlib.suppress(Exception):
            handler.close()
        logger.removeHandler(handler)

    logger.setLevel(level)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_file:
        handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        handler.setFormatter(formatter)
        logger.addHandler(handler)


configure_logging()

APP_CONFIG: AppConfig = AppConfig()
OUTPUT_JSON: bool = False


def set_app_config(cfg: AppConfig) -> None:
    global APP_CONFIG
    APP_CONFIG = cfg


def emit_success(
    command: str, *, text: str | None = None, data: dict[str, Any] | None = None
) -> None:
    if OUTPUT_JSON:
        payload: dict[str, Any] = {"ok": True, "command": command}
        if data:
            payload.update(data)
        if text is not None and "result" not in payload:
            payload["result"] = text
        print(json.dumps(payload, ensure_ascii=False))
    else:
        if text is not None:
            print(text)


def _exit_status(returncode: int) -> int:
    # shells report death-by-signal as 128 + signal number
    return 128 - returncode if returncode < 0 else returncode


def _effective_config(args: argparse.Namespace) -> AppConfig:
    trace = APP_CONFIG.trace
    coverage = APP_CONFIG.coverage
    if args.mute:
        trace = replace(trace, mute=True)
    if args.keep_log:
        trace = replace(trace, keep_log=True)
    if args.count_hits:
        coverage = replace(coverage, count_hits=True)
    if args.root:
        coverage = replace(coverage, root_directory=os.path.abspath(args.root))
    cfg = AppConfig(trace=trace, coverage=coverage)
    cfg.validate()
    return cfg


@guard_cli
def cmd_run(args: argparse.Namespace) -> int:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise BadInputError("no command given", hint="usage: shellcov run [options] -- COMMAND...")
    orchestrator = ProcessOrchestrator(_effective_config(args))
    try:
        result = orchestrator.run(command)
    except TraceLogError as exc:
        if args.out and exc.coverage is not None:
            partial = build_resultset(
                command,
                exc.returncode if exc.returncode is not None else -1,
                exc.coverage,
                skipped=exc.skipped,
            )
            write_resultset(partial, args.out)
            logger.warning("Wrote partial coverage to %s", args.out)
        raise

    if args.out:
        write_resultset(resultset_from_run(result), args.out)
    coverage = result.coverage
    emit_success(
        "run",
        text=(
            f"exit {result.returncode}: {len(coverage)} files, "
            f"{coverage.total_lines()} lines covered, {result.skipped} records skipped"
        ),
        data={
            "returncode": result.returncode,
            "files": len(coverage),
            "lines": coverage.total_lines(),
            "skipped": result.skipped,
            "unattributed": result.unattributed,
        },
    )
    return _exit_status(result.returncode)


@guard_cli
def cmd_validate(args: argparse.Namespace) -> int:
    payload = read_resultset(args.resultset)
    emit_success(
        "validate",
        text=f"{args.resultset}: valid ({len(payload['coverage'])} files)",
        data={"files": len(payload["coverage"])},
    )
    return 0


# --------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------
def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser(
        description="Run a shell command under bash xtrace and collect line coverage."
    )
    p.add_argument("--log-json", action="store_true", help="Emit logs in JSON format")
    p.add_argument("--log-file", default=None, help="Optional log file path (rotating)")
    p.add_argument(
        "--log-max-bytes",
        type=int,
        default=DEFAULT_LOG_MAX_BYTES,
        help="Max bytes per log file before rotation (default: %(default)s)",
    )
    p.add_argument(
        "--log-backup-count",
        type=int,
        default=DEFAULT_LOG_BACKUP_COUNT,
        help="Number of rotated log files to keep (default: %(default)s)",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument(
        "--json", action="store_true", help="Emit machine-readable success output to stdout"
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to TOML config file (env overrides still apply)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    run_p = sub.add_parser("run", help="Trace a command and collect coverage")
    run_p.add_argument("--mute", action="store_true", help="Discard the command's stdout/stderr")
    run_p.add_argument("--count-hits", action="store_true", help="Count hits per line")
    run_p.add_argument("--root", default=None, help="Only keep files under this directory")
    run_p.add_argument("--keep-log", action="store_true", help="Do not delete the trace log")
    run_p.add_argument("--out", default=None, help="Write the resultset JSON to this path")
    run_p.add_argument("command", nargs=argparse.REMAINDER, help="Command to trace (after --)")

    validate_p = sub.add_parser("validate", help="Validate a resultset JSON file")
    validate_p.add_argument("resultset", help="Path to resultset JSON")

    handlers = {"run": cmd_run, "validate": cmd_validate}

    args = p.parse_args(argv)

    global OUTPUT_JSON
    OUTPUT_JSON = bool(args.json)

    configure_logging(
        args.log_json,
        args.log_file,
        level=logging.DEBUG if args.verbose else logging.INFO,
        max_bytes=args.log_max_bytes,
        backup_count=args.log_backup_count,
    )

    cfg_path = args.config or os.getenv("SHELLCOV_CONFIG")
    cfg = guard_cli(load_app_config)(cfg_path)
    set_app_config(cfg)
    if cfg_path:
        logger.info("Loaded config from %s", cfg_path)

    handler = handlers.get(args.cmd)
    if handler is None:
        raise PolicyError(f"Unknown command {args.cmd}")
    return handler(args)


def console_main() -> None:
    """Entry point for console_scripts."""

    try:
        raise SystemExit(main(sys.argv[1:]))
    except SystemExit:
        raise
    except Exception as e:  # noqa: BLE001
        logger.exception("Fatal error: %s", e)
        raise SystemExit(2) from e


if __name__ == "__main__":
    console_main()
