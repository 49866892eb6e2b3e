"""Command line entry point: back up a folder of photos to a PhotoSync server."""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from photosync.client.api.client import PhotoSyncAPI
from photosync.client.auth.credentials import ApiKeyStore
from photosync.client.config import get_base_url, get_log_path, get_sync_options, set_base_url
from photosync.client.sync.engine import SyncEngine
from photosync.client.sync.models import PhotoDescriptor, SyncOptions, SyncProgress
from photosync.client.sync.state import SyncStateStore

log = logging.getLogger("photosync.client.main")

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif"})


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging to a file in the config dir and to stderr (INFO level)."""
    log_file = get_log_path()
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("photosync")
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    root.addHandler(fh)
    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(fmt)
    root.addHandler(ch)
    root.debug("Logging to %s", log_file)


def scan_folder(folder: Path, recursive: bool = True) -> List[PhotoDescriptor]:
    """Image files under folder (hidden files skipped), sorted by relative path."""
    pattern = folder.rglob("*") if recursive else folder.glob("*")
    out: List[PhotoDescriptor] = []
    for f in sorted(pattern):
        if not f.is_file() or f.name.startswith("."):
            continue
        if f.suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        try:
            out.append(PhotoDescriptor.from_path(f))
        except OSError as e:
            log.warning("Skipping %s: %s", f, e)
    return out


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photosync-sync",
        description="Back up photos from a local folder to a PhotoSync server, skipping content it already has.",
    )
    parser.add_argument("folder", type=Path, help="Folder to scan for photos")
    parser.add_argument("--base-url", help="Server URL (default: config or PHOTOSYNC_BASE_URL)")
    parser.add_argument("--save-base-url", action="store_true", help="Remember --base-url in the config file")
    parser.add_argument("--api-key", help="API key (default: PHOTOSYNC_API_KEY or keyring)")
    parser.add_argument("--save-api-key", action="store_true", help="Store --api-key in the OS keyring")
    parser.add_argument("--no-recursive", action="store_true", help="Only scan the top level of folder")
    parser.add_argument("--force", action="store_true", help="Ignore local sync state and check every photo")
    parser.add_argument("--uploads", type=int, help="Concurrent uploads (overrides config)")
    parser.add_argument("--retries", type=int, help="Retries per upload (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose (DEBUG) logging")
    return parser


def _print_progress(progress: SyncProgress) -> None:
    done = progress.completed + progress.failed
    name = progress.current_filename or ""
    print(f"\r[{done}/{progress.total}] {progress.fraction:6.1%} {name[:50]:<50}", end="", flush=True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run one backup. Returns 0 when every photo is on the server, 1 otherwise, 2 on bad usage."""
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    folder: Path = args.folder.expanduser()
    if not folder.is_dir():
        print(f"Not a folder: {folder}", file=sys.stderr)
        return 2

    if args.base_url and args.save_base_url:
        set_base_url(args.base_url)
    keys = ApiKeyStore()
    if args.api_key and args.save_api_key:
        keys.set(args.api_key)
    api_key = args.api_key or keys.get()
    if not api_key:
        print("No API key: pass --api-key, set PHOTOSYNC_API_KEY or store one with --save-api-key", file=sys.stderr)
        return 2

    options = get_sync_options()
    overrides = {}
    if args.uploads is not None:
        overrides["max_concurrent_uploads"] = args.uploads
    if args.retries is not None:
        overrides["max_retries"] = args.retries
    if overrides:
        try:
            options = SyncOptions.from_dict({**options.to_dict(), **overrides})
        except ValueError as e:
            print(f"Invalid option: {e}", file=sys.stderr)
            return 2

    api = PhotoSyncAPI(base_url=args.base_url or get_base_url(), api_key=api_key)
    state = SyncStateStore()
    photos = scan_folder(folder, recursive=not args.no_recursive)
    batch = photos if args.force else state.pending(photos)
    log.info(
        "Found %d photos in %s, %d not yet synced (server %s)",
        len(photos), folder, len(batch), api.base_url,
    )
    if not batch:
        print("Nothing to sync.")
        return 0

    engine = SyncEngine(api, batch, options=options, on_progress=_print_progress, state_store=state)
    previous = signal.signal(signal.SIGINT, lambda signum, frame: engine.cancel())
    try:
        report = engine.run()
    finally:
        signal.signal(signal.SIGINT, previous)
    print()

    p = report.progress
    print(
        f"{report.state.value}: {p.completed}/{p.total} synced "
        f"({len(report.uploaded)} uploaded, {len(report.skipped)} already on server), {p.failed} failed"
    )
    if report.error:
        print(report.error, file=sys.stderr)
    for local_id, message in sorted(report.failed.items()):
        print(f"  failed: {local_id}: {message}", file=sys.stderr)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
