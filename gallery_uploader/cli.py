"""Command line interface for gallery uploader package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__
from .cli_progress import BatchProgressDisplay, render_configuration_summary
from .errors import NoFilesFound
from .models import DEFAULT_ENDPOINT, MB, UploadConfig, ValidationPolicy
from .orchestrator import GalleryUploader


DEFAULT_GALLERY_URL = "http://127.0.0.1:5000"


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
        env_level = os.getenv("LOG_LEVEL")
        level = getattr(logging, (env_level or "INFO").upper(), logging.INFO)

    from rich.logging import RichHandler

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


def _normalize_endpoint(endpoint: Optional[str]) -> str:
    if endpoint is None:
        return DEFAULT_ENDPOINT
    value = endpoint.strip().rstrip("/")
    if not value:
        return DEFAULT_ENDPOINT
    return value if value.startswith("/") else f"/{value}"


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


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise CLIError(f"{name} must be an integer, got {raw!r}") from exc


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _build_config(args: argparse.Namespace) -> UploadConfig:
    """Merge CLI flags, environment variables and defaults."""
    base_url = args.url or os.getenv("GALLERY_UPLOAD_URL") or DEFAULT_GALLERY_URL
    max_concurrent = _first_set(args.max_concurrent, _env_int("UPLOADER_MAX_PARALLEL"))
    max_size_mb = _first_set(args.max_size_mb, _env_int("UPLOADER_MAX_FILE_SIZE_MB"), 10)

    if max_concurrent is not None and max_concurrent < 1:
        raise CLIError("--max-concurrent must be >= 1")
    if max_size_mb < 1:
        raise CLIError("--max-size-mb must be >= 1")

    return UploadConfig(policy=ValidationPolicy(max_bytes=max_size_mb * MB)).with_overrides(
        base_url=base_url.rstrip("/"),
        endpoint=_normalize_endpoint(args.endpoint),
        max_concurrent=max_concurrent,
        category=args.category or os.getenv("GALLERY_UPLOAD_CATEGORY"),
        timeout=args.timeout,
    )


def _add_sources(uploader: GalleryUploader, sources: Sequence[Path]) -> int:
    """Feed folders and loose files into the batch. Returns items added."""
    added = 0
    loose_files: List[Path] = []
    for source in sources:
        if source.is_dir():
            try:
                added += len(uploader.add_folder(source))
            except NoFilesFound as exc:
                print(f"WARNING: {exc}", file=sys.stderr)
        elif source.is_file():
            loose_files.append(source)
        else:
            raise CLIError(f"source is neither file nor directory: {source}")

    if loose_files:
        added += len(uploader.add_files(loose_files))
    return added


async def _run_upload(
    sources: Sequence[Path],
    config: UploadConfig,
    retry_rounds: int,
) -> int:
    display = BatchProgressDisplay()

    async with GalleryUploader(config) as uploader:
        uploader.on_change(display.render)
        uploader.on_item_start(display.on_item_start)
        uploader.on_item_progress(display.on_item_progress)
        uploader.on_item_complete(display.on_item_complete)
        uploader.on_item_fail(display.on_item_fail)
        uploader.on_empty(display.on_empty)

        if _add_sources(uploader, sources) == 0:
            raise CLIError("no files to upload")
        display.on_prepared(uploader.snapshot().items)

        snapshot = await uploader.run()
        for attempt in range(1, retry_rounds + 1):
            retried = uploader.retry_failed()
            if not retried:
                break
            print(f"Retrying {retried} failed file(s) (round {attempt}/{retry_rounds})...")
            snapshot = await uploader.run()

        display.finish(snapshot)
        return 0 if snapshot.summary.failed_count == 0 else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gallery-upload",
        description="Upload image files or folders to the gallery upload endpoint.",
    )
    parser.add_argument("sources", nargs="*", type=Path, help="Source files or folders")
    parser.add_argument(
        "-u",
        "--url",
        default=None,
        help=f"Server base URL (default from GALLERY_UPLOAD_URL or {DEFAULT_GALLERY_URL})",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help=f"Upload endpoint path (default {DEFAULT_ENDPOINT})",
    )
    parser.add_argument(
        "-c",
        "--category",
        default=None,
        help="Gallery category (default from GALLERY_UPLOAD_CATEGORY or 'general')",
    )
    parser.add_argument(
        "-j",
        "--max-concurrent",
        type=int,
        default=None,
        help="Simultaneous uploads (default from UPLOADER_MAX_PARALLEL or 3)",
    )
    parser.add_argument(
        "--max-size-mb",
        type=int,
        default=None,
        help="Reject files larger than this (default from UPLOADER_MAX_FILE_SIZE_MB or 10)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Per-request timeout in seconds",
    )
    parser.add_argument(
        "--retry-failed",
        type=int,
        default=0,
        metavar="N",
        help="Retry failed uploads up to N extra rounds",
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
    parser.add_argument(
        "--version",
        action="version",
        version=f"gallery-upload {__version__}",
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

    if not args.sources:
        parser.print_help()
        return 0

    sources = [Path(source).expanduser() for source in args.sources]
    missing = [source for source in sources if not source.exists()]
    if missing:
        print(f"ERROR: source does not exist: {missing[0]}", file=sys.stderr)
        return 1

    try:
        config = _build_config(args)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    render_configuration_summary(
        {
            "Sources": ", ".join(str(source) for source in sources),
            "Endpoint": f"{config.base_url}{config.endpoint}",
            "Category": config.category,
            "Parallel": config.max_concurrent,
            "Max Size": f"{config.policy.max_bytes // MB} MB",
            "Retry Rounds": args.retry_failed,
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(_run_upload(sources, config, max(args.retry_failed, 0)))
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
