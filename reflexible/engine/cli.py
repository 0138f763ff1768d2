"""CLI entry point for the session orchestrator.

Usage:
    reflexible run "Blink the onboard LED every 500ms"
    reflexible run --tier pro --message-file tasks/firmware.md
    reflexible stop
    reflexible new-session
    reflexible cleanup
    reflexible artifacts [SESSION_ID]
    reflexible compile src/blink.rfx
    reflexible verify src/blink.rfx
    reflexible login API_KEY
    reflexible stats --range 7d
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from .config import ClientConfig
from .errors import AuthExpiredError, ReflexibleError
from .events import Progress, StepComplete, StreamEvent, TodoUpdate
from .models import ComputeTier, Session, TodoStatus
from .orchestrator import SessionOrchestrator
from .rfx import DEFAULT_CHECK_LEVEL, CompileResult, VerifyResult
from .sink import SessionSink
from .telemetry import TelemetryCollector
from .yaml_config import find_workspace_config, load_yaml_config

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_AUTH = 2
EXIT_STOPPED = 130

_TODO_MARKS = {
    TodoStatus.PENDING: "[ ]",
    TodoStatus.IN_PROGRESS: "[~]",
    TodoStatus.COMPLETED: "[x]",
    TodoStatus.CANCELLED: "[-]",
}


class PrintSink(SessionSink):
    """Writes progress to stderr and the final response to stdout."""

    async def on_event(self, session: Session, event: StreamEvent) -> None:
        if isinstance(event, Progress):
            print(f"... {event.message}", file=sys.stderr)
        elif isinstance(event, TodoUpdate):
            print("Todos:", file=sys.stderr)
            for item in event.items:
                print(f"  {_TODO_MARKS[item.status]} {item.content}", file=sys.stderr)
        elif isinstance(event, StepComplete):
            print(f"Step complete: {event.step}", file=sys.stderr)

    async def on_message(self, session: Session, text: str) -> None:
        print(text)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reflexible",
        description="Dispatch and follow remote Reflexible sessions",
    )
    parser.add_argument(
        "--workspace", "-w",
        default=None,
        help="Workspace root (default: current dir)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: <workspace>/.reflexible/config.yaml if present)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Dispatch a message and follow the session")
    run.add_argument("message", nargs="?", default=None, help="Message (inline string)")
    run.add_argument(
        "--message-file", "-f",
        default=None,
        help="Read the message from a file (.md, .txt, etc.)",
    )
    run.add_argument(
        "--tier", "-t",
        default=ComputeTier.CHAT.value,
        help="Compute tier: chat, basic or pro (default: chat)",
    )
    run.add_argument(
        "--no-upload",
        action="store_true",
        help="Do not upload workspace files before dispatching",
    )

    stop = sub.add_parser("stop", help="Stop a running session")
    stop.add_argument(
        "session_id", nargs="?", default=None,
        help="Session to stop (default: the workspace's last session)",
    )

    sub.add_parser("new-session", help="Forget the workspace's project and session")
    sub.add_parser("cleanup", help="Delete the workspace's remote project")

    artifacts = sub.add_parser("artifacts", help="Download a session's artifacts again")
    artifacts.add_argument(
        "session_id", nargs="?", default=None,
        help="Session to fetch (default: the workspace's last session)",
    )

    compile_ = sub.add_parser("compile", help="Compile one .rfx file remotely")
    compile_.add_argument("file", help="Path to the .rfx file")

    verify = sub.add_parser("verify", help="Verify one .rfx file remotely")
    verify.add_argument("file", help="Path to the .rfx file")
    verify.add_argument(
        "--check-level",
        default=DEFAULT_CHECK_LEVEL,
        help=f"Verification depth (default: {DEFAULT_CHECK_LEVEL})",
    )

    login = sub.add_parser("login", help="Store an API key")
    login.add_argument("api_key", nargs="?", default=None, help="API key (prompted if omitted)")
    sub.add_parser("logout", help="Forget the stored API key")

    stats = sub.add_parser("stats", help="Show telemetry summary")
    stats.add_argument("--range", dest="time_range", default="24h", help="e.g. 30m, 24h, 7d")
    return parser


def _load_config(config_path: str | None, workspace: Path) -> ClientConfig:
    if config_path:
        return load_yaml_config(config_path)
    found = find_workspace_config(workspace)
    if found is not None:
        return load_yaml_config(found)
    return ClientConfig.from_env()


def _configure_logging(config: ClientConfig, verbose: bool) -> Path:
    level_name = "DEBUG" if verbose else config.log_level.upper()
    log_dir = config.state_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "reflexible.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%H:%M:%S",
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    # Console stays quiet unless asked; the file gets everything.
    if not verbose:
        stream_handler.setLevel(logging.WARNING)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def _resolve_message(inline: str | None, file_path: str | None) -> str:
    """Get the message from an inline arg or a file. Exactly one must be provided."""
    if inline and file_path:
        print("Error: Provide either a message or --message-file, not both.")
        sys.exit(EXIT_FAILED)

    if file_path:
        p = Path(file_path)
        if not p.is_file():
            print(f"Error: Message file not found: {file_path}")
            sys.exit(EXIT_FAILED)
        return p.read_text(encoding="utf-8").strip()

    if inline:
        return inline

    print("Error: Provide a message or --message-file.")
    sys.exit(EXIT_FAILED)


async def _run(
    orchestrator: SessionOrchestrator,
    workspace: Path,
    message: str,
    tier: ComputeTier,
    upload: bool,
) -> int:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler unavailable; Ctrl+C will abort without a stop request")

    try:
        report = await orchestrator.run(
            workspace, message, tier,
            cancel_event=cancel, sink=PrintSink(), upload=upload,
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if report.artifacts is not None:
        for path in report.artifacts.written:
            print(f"Downloaded: {path}", file=sys.stderr)
        for name, reason in report.artifacts.failures:
            print(f"Failed: {name}: {reason}", file=sys.stderr)
    if report.outcome.is_stopped:
        print("Session stopped.", file=sys.stderr)
        return EXIT_STOPPED
    if report.outcome.is_failed:
        print(f"Session failed: {report.outcome.reason}", file=sys.stderr)
        return EXIT_FAILED
    return 0


def _print_compile(result: CompileResult) -> int:
    print(result.output or "Compilation completed")
    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning}")
    if result.errors:
        print("\nErrors:")
        for error in result.errors:
            print(f"  ! {error}")
    if result.success:
        print(f"\nCompiled {result.file_path}.", file=sys.stderr)
        return 0
    print(f"\nCompilation of {result.file_path} failed.", file=sys.stderr)
    return EXIT_FAILED


def _print_verify(result: VerifyResult) -> int:
    print(f"Status: {result.status}")
    if result.issues:
        print("\nIssues:")
        for issue in result.issues:
            where = f"Line {issue.line}" if issue.line is not None else "File"
            print(f"  [{issue.severity}] {where}: {issue.message}")
    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning}")
    return 0 if result.passed else EXIT_FAILED


async def _dispatch_command(
    args: argparse.Namespace,
    config: ClientConfig,
    workspace: Path,
    message: str | None,
) -> int:
    async with SessionOrchestrator(config) as orchestrator:
        if args.command == "run":
            return await _run(
                orchestrator, workspace, message,
                ComputeTier.parse(args.tier), not args.no_upload,
            )

        if args.command == "stop":
            session_id = args.session_id or orchestrator.current_session_id(workspace)
            if not session_id:
                print("No session to stop.")
                return EXIT_FAILED
            return 0 if await orchestrator.stop(session_id) else EXIT_FAILED

        if args.command == "new-session":
            await orchestrator.new_session(workspace)
            print("Started a new session. The next run creates a fresh project.")
            return 0

        if args.command == "cleanup":
            if await orchestrator.cleanup(workspace):
                print("Project cleaned up.")
                return 0
            print("Nothing cleaned up.")
            return EXIT_FAILED

        if args.command == "artifacts":
            result = await orchestrator.materialize(workspace, args.session_id)
            for path in result.written:
                print(f"Downloaded: {path}")
            for name, reason in result.failures:
                print(f"Failed: {name}: {reason}")
            return 0 if result.ok else EXIT_FAILED

        if args.command == "compile":
            compiled = await orchestrator.compile_rfx(workspace, Path(args.file).resolve())
            return _print_compile(compiled)

        if args.command == "verify":
            verified = await orchestrator.verify_rfx(
                workspace, Path(args.file).resolve(), args.check_level,
            )
            return _print_verify(verified)

    raise ValueError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    workspace = Path(args.workspace or Path.cwd()).resolve()
    try:
        config = _load_config(args.config, workspace)
    except (yaml.YAMLError, ValueError, OSError) as exc:
        print(f"Error: invalid configuration: {exc}")
        sys.exit(EXIT_FAILED)
    log_file = _configure_logging(config, args.verbose)
    logger.info(
        "reflexible %s workspace=%s base_url=%s log=%s",
        args.command, workspace, config.base_url, log_file,
    )

    if args.command in ("login", "logout"):
        from reflexible.shared.services.credentials import CredentialStore

        store = CredentialStore(config.state_dir)
        if args.command == "logout":
            store.delete()
            print("API key removed.")
            return
        api_key = args.api_key or getpass.getpass("API key: ")
        try:
            store.set(api_key)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(EXIT_FAILED)
        print(f"API key stored in {store.path}")
        return

    if args.command == "stats":
        if config.telemetry_db_path is None:
            print("Telemetry is disabled (set RFX_TELEMETRY_DB_PATH or telemetry.db_path).")
            sys.exit(EXIT_FAILED)
        summary = TelemetryCollector(config.telemetry_db_path).get_summary(args.time_range)
        print(json.dumps(summary, indent=2, sort_keys=True))
        return

    message = None
    if args.command == "run":
        message = _resolve_message(args.message, args.message_file)

    try:
        code = asyncio.run(_dispatch_command(args, config, workspace, message))
    except AuthExpiredError as exc:
        print(f"Error: {exc}. Run `reflexible login` to set a new API key.")
        sys.exit(EXIT_AUTH)
    except (ReflexibleError, ValueError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}")
        sys.exit(EXIT_FAILED)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(EXIT_STOPPED)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
