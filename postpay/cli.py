"""Command line interface for postpay package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import (
    ResumeProgressDisplay,
    render_configuration_summary,
    render_staged_files,
)
from .errors import CheckoutError
from .models import CheckoutConfig, PendingFile, PollConfig, StagingConfig
from .services.kv_store import DEFAULT_STAGING_DIR, JSONFileKeyValueStore
from .services.staging import StagingStore
from .services.upload_sink import DirectoryUploadSink
from .use_cases.stage_checkout import StageCheckoutUseCase
from .utils.events import OUTCOME, POLL_WAIT, UPLOAD_PROGRESS


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level and not os.getenv("LOG_LEVEL")):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _env_number(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise CLIError(f"{name} must be a number, got {raw!r}") from exc


def _build_config(namespace: str) -> CheckoutConfig:
    try:
        return CheckoutConfig(
            staging=StagingConfig(
                namespace=namespace,
                max_staged_bytes=_env_number(
                    "POSTPAY_MAX_STAGED_BYTES", int, StagingConfig.max_staged_bytes
                ),
            ),
            poll=PollConfig(
                max_attempts=_env_number("POSTPAY_MAX_ATTEMPTS", int, PollConfig.max_attempts),
                base_delay=_env_number("POSTPAY_BASE_DELAY", float, PollConfig.base_delay),
            ),
        )
    except ValueError as exc:
        raise CLIError(str(exc)) from exc


def _guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or "application/octet-stream"


def _read_pending_files(paths: Sequence[Path]) -> List[PendingFile]:
    files = []
    for path in paths:
        if not path.is_file():
            raise CLIError(f"not a file: {path}")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise CLIError(f"could not read {path}: {exc}") from exc
        files.append(PendingFile(data=data, content_type=_guess_content_type(path), name=path.name))
    return files


async def _run_stage(store: JSONFileKeyValueStore, config: CheckoutConfig, paths: Sequence[Path]) -> int:
    staging = StagingStore(store, config.staging)
    files = _read_pending_files(paths)
    ids = await StageCheckoutUseCase().execute(staging, files)
    print(f"Staged {len(ids)} file(s). Continue to payment.")
    return 0


async def _run_status(store: JSONFileKeyValueStore, config: CheckoutConfig) -> int:
    staging = StagingStore(store, config.staging)
    result = await staging.read_all()
    render_staged_files(result.files, result.missing_ids)
    owner = await staging.lock_owner()
    if owner:
        print(f"Locked by: {owner}")
    return 1 if result.mismatch else 0


async def _run_clear(store: JSONFileKeyValueStore, config: CheckoutConfig) -> int:
    staging = StagingStore(store, config.staging)
    await staging.clear()
    swept = await staging.sweep_orphans()
    print(f"Staging cleared ({swept} orphaned payload(s) removed).")
    return 0


async def _run_resume(
    store: JSONFileKeyValueStore,
    config: CheckoutConfig,
    session_id: Optional[str],
    return_url: Optional[str],
    dest: Optional[Path],
    force: bool = False,
) -> int:
    from .orchestrator import CheckoutOrchestrator

    orders_api_url = os.getenv("POSTPAY_ORDERS_API_URL")
    if not orders_api_url:
        raise CLIError("POSTPAY_ORDERS_API_URL environment variable is not set")

    upload_api_url = os.getenv("POSTPAY_UPLOAD_API_URL")
    sink = DirectoryUploadSink(dest) if dest else None
    if sink is None and not upload_api_url:
        raise CLIError("set POSTPAY_UPLOAD_API_URL or pass --dest")

    async with CheckoutOrchestrator(
        store,
        sink=sink,
        config=config,
        orders_api_url=orders_api_url,
        upload_api_url=upload_api_url,
    ) as flow:
        try:
            display = ResumeProgressDisplay(session_id or return_url or "")
            flow.on(POLL_WAIT, display.on_poll_wait)
            flow.on(UPLOAD_PROGRESS, display.on_upload_progress)
            flow.on(OUTCOME, display.on_outcome)
            display.start()
            outcome = await flow.resume_after_payment(
                session_id=session_id, return_url=return_url, force=force
            )
        except ValueError as exc:
            raise CLIError(str(exc)) from exc

    return 0 if outcome.success else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="postpay",
        description="Stage files before payment and upload them once the order exists.",
    )
    parser.add_argument(
        "--staging-dir",
        type=Path,
        default=None,
        help=f"Staging directory (default from POSTPAY_STAGING_DIR or {DEFAULT_STAGING_DIR})",
    )
    parser.add_argument(
        "--namespace",
        default="postpay",
        help="Key namespace inside the staging store",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument("--version", action="version", version="postpay 0.1.0")

    sub = parser.add_subparsers(dest="command")

    stage = sub.add_parser("stage", help="Stage files before the payment redirect")
    stage.add_argument("files", nargs="+", type=Path, help="Files to stage")

    sub.add_parser("status", help="Show staged files")
    sub.add_parser("clear", help="Clear staged files and orphaned payloads")

    resume = sub.add_parser("resume", help="Find the order and upload staged files")
    target = resume.add_mutually_exclusive_group(required=True)
    target.add_argument("--session-id", default=None, help="Payment session id")
    target.add_argument("--return-url", default=None, help="Return URL carrying session_id")
    resume.add_argument(
        "--dest",
        type=Path,
        default=None,
        help="Store files in this directory instead of POSTPAY_UPLOAD_API_URL",
    )
    resume.add_argument(
        "--force",
        action="store_true",
        help="Take over a staging lock left by another run",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.command is None:
        parser.print_help()
        return 0

    staging_dir = args.staging_dir
    if staging_dir is None:
        env_staging_dir = os.getenv("POSTPAY_STAGING_DIR")
        staging_dir = Path(env_staging_dir) if env_staging_dir else DEFAULT_STAGING_DIR
    store = JSONFileKeyValueStore(staging_dir)

    if args.command == "resume":
        render_configuration_summary(
            {
                "Session": args.session_id or args.return_url,
                "Staging": str(store.path),
                "Orders API": os.getenv("POSTPAY_ORDERS_API_URL") or "(missing)",
                "Upload": str(args.dest) if args.dest else os.getenv("POSTPAY_UPLOAD_API_URL") or "(missing)",
                "Env File": str(used_env_file) if used_env_file else "-",
                "Logging": effective_log_mode,
            }
        )

    try:
        config = _build_config(args.namespace)
        if args.command == "stage":
            return asyncio.run(_run_stage(store, config, args.files))
        if args.command == "status":
            return asyncio.run(_run_status(store, config))
        if args.command == "clear":
            return asyncio.run(_run_clear(store, config))
        return asyncio.run(
            _run_resume(store, config, args.session_id, args.return_url, args.dest, args.force)
        )
    except (CLIError, CheckoutError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled. Staged files are kept for the next run.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
