#!/usr/bin/env python3
"""
Export runner - drives Notes extraction from the command line.

Handles progress reporting, status file updates, cancellation on Ctrl-C and
cleanup of osascript processes on exit.

Usage:
    python runner.py --status                   # Show last export status
    python runner.py --list                     # List folders and note titles
    python runner.py --export --format md       # Export every note
    python runner.py --ids ID [ID ...]          # Export selected notes only
    python runner.py --detail ID                # Print one note
    python runner.py --import bundle.json       # Re-create notes from a bundle
"""
import argparse
import atexit
import json
import os
import signal
import sys
import tempfile
import threading
import time
from datetime import datetime
from pathlib import Path

from config import load_config, validate_config
from exporter import BundleError, BundleWriter, load_bundle, make_writer, write_error_log
from extractor import NotesExtractor
from importer import ImportFailed, import_bundle
from osascript import NotesError, OsascriptInvoker, PermissionDeniedError, ProcessRegistry, kill_stray_processes

STATUS_FILE = Path("data/export_status.json")


def update_status(message: str, progress_pct: float,
                  current: int, total: int,
                  elapsed_sec: float, eta_sec: float | None,
                  complete: bool = False, error: bool = False):
    """Atomically update export status file."""
    status = {
        "message": message,
        "progress": progress_pct,
        "current": current,
        "total": total,
        "elapsed_seconds": elapsed_sec,
        "eta_seconds": eta_sec,
        "complete": complete,
        "error": error,
        "timestamp": datetime.now().isoformat(),
        "pid": os.getpid()
    }
    STATUS_FILE.parent.mkdir(parents=True, exist_ok=True)

    # Atomic write: write to temp, then rename
    fd, tmp_path = tempfile.mkstemp(dir=STATUS_FILE.parent, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(status, f)
        os.replace(tmp_path, STATUS_FILE)  # Atomic on POSIX
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def get_status() -> dict:
    """Get last written export status."""
    if STATUS_FILE.exists():
        with open(STATUS_FILE, 'r') as f:
            return json.load(f)
    return {"message": "No export has run yet", "complete": False}


def print_errors(errors: list[str], limit: int = 20):
    """Print the first `limit` error lines."""
    print(f"\nErrors ({len(errors)}):")
    for line in errors[:limit]:
        print(f"  - {line}")
    if len(errors) > limit:
        print(f"  ... and {len(errors) - limit} more")


def build_extractor(config: dict) -> NotesExtractor:
    """
    Extractor wired to a real osascript invoker.

    Ctrl-C sets the cancel event (the current query finishes or hits its own
    deadline); exiting terminates every osascript process still running.
    """
    registry = ProcessRegistry()
    invoker = OsascriptInvoker(config["osascript_path"], registry)
    cancel_event = threading.Event()

    def handle_interrupt(signum, frame):
        if cancel_event.is_set():
            registry.terminate_all()
            raise KeyboardInterrupt
        print("\nCancelling after the current query... (Ctrl-C again to abort)")
        cancel_event.set()

    def cleanup():
        registry.terminate_all()
        kill_stray_processes()

    signal.signal(signal.SIGINT, handle_interrupt)
    atexit.register(cleanup)
    return NotesExtractor(invoker, config, cancel_event)


def run_list(extractor: NotesExtractor) -> int:
    """Print folders and note titles as each folder arrives."""
    total_notes = 0

    def on_folders(names):
        print(f"Found {len(names)} folders")

    def on_folder_loaded(notes, completed, total):
        nonlocal total_notes
        total_notes += len(notes)
        folder = notes[0].folder if notes else "(empty or unreadable)"
        print(f"[{completed}/{total}] {folder}: {len(notes)} notes")
        for note in notes:
            print(f"    {note.id}  {note.title[:60]}")

    extractor.fetch_metadata_incremental(on_folders, on_folder_loaded)
    print(f"\nTotal notes listed: {total_notes}")
    return total_notes


def run_export(extractor: NotesExtractor, config: dict, export_format: str, output_dir: Path) -> dict:
    """
    Export every note to output_dir.

    Returns:
        Dict with written, total, skipped, errors
    """
    writer = make_writer(export_format, output_dir, config.get("preserve_folders", True))
    start_time = time.time()
    last_status = {"message": "Starting export..."}

    def on_status(message):
        last_status["message"] = message
        print(f"  {message}")

    def on_progress(current, total):
        elapsed = time.time() - start_time
        eta = (elapsed / current) * (total - current) if current else None
        pct = (current / total) * 100 if total else 100
        update_status(last_status["message"], pct, current, total, elapsed, eta)

    print(f"Exporting all notes as {export_format} to {output_dir}/ ...")
    update_status("Starting export...", 0, 0, 0, 0, None)

    result = extractor.export_all(writer, on_progress=on_progress, on_status=on_status)

    if isinstance(writer, BundleWriter) and writer.notes:
        bundle_path = writer.save()
        print(f"Bundle: {bundle_path}")

    final_elapsed = time.time() - start_time

    print("\n" + "=" * 50)
    print("EXPORT CANCELLED" if result.cancelled else "EXPORT COMPLETE")
    print("=" * 50)
    print(f"Total notes:   {result.total}")
    print(f"Written:       {result.written}")
    print(f"Skipped:       {result.skipped}")
    print(f"Time:          {final_elapsed:.1f}s")

    if result.errors:
        print_errors(result.errors)
        log_path = write_error_log(output_dir, result.total, result.written, result.skipped, result.errors)
        print(f"Error log:     {log_path}")

    update_status(
        f"{'Cancelled' if result.cancelled else 'Complete'}: {result.written} written, "
        f"{result.skipped} skipped, {len(result.errors)} errors",
        100, result.written, result.total, final_elapsed, 0, complete=True
    )

    return {
        "written": result.written,
        "total": result.total,
        "skipped": result.skipped,
        "errors": result.errors
    }


def run_selected_export(extractor: NotesExtractor, config: dict, note_ids: list[str],
                        export_format: str, output_dir: Path) -> int:
    """Export only the given note ids."""
    folder_names = extractor.fetch_folder_names()

    def on_progress(current, total):
        print(f"  Fetched {current}/{total}")

    notes = extractor.fetch_bodies_for_export(note_ids, folder_names, on_progress)
    writer = make_writer(export_format, output_dir, config.get("preserve_folders", True))
    outcome = writer(notes)

    errors = []
    if isinstance(writer, BundleWriter):
        written = outcome
        print(f"Bundle: {writer.save()}")
    else:
        written = outcome.count
        errors = outcome.errors

    missing = len(set(note_ids)) - len(notes)
    print(f"Exported {written} of {len(set(note_ids))} selected notes")
    if missing:
        print(f"{missing} notes could not be found")
    if errors:
        print_errors(errors)
    return written


def run_import(extractor: NotesExtractor, config: dict, bundle_path: str, target_folder: str) -> int:
    bundle = load_bundle(bundle_path)
    print(f"Importing {len(bundle.notes)} notes from {bundle_path}...")

    def on_progress(current, total):
        print(f"  [{current}/{total}]")

    imported = import_bundle(
        bundle,
        extractor,
        target_folder=target_folder,
        default_folder=config.get("import_folder_name", "Imported"),
        on_progress=on_progress
    )
    print(f"Imported {imported} notes")
    return imported


def main():
    parser = argparse.ArgumentParser(
        description="Export notes from the Notes app",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python runner.py --status                  Show last export status
  python runner.py --list                    List folders and note titles
  python runner.py --export --format md      Export every note as Markdown
  python runner.py --ids ID1 ID2             Export selected notes
  python runner.py --detail ID               Print one note
  python runner.py --import bundle.json      Re-create notes from a bundle
        """
    )

    parser.add_argument('--status', action='store_true',
                        help='Show last export status')
    parser.add_argument('--list', action='store_true',
                        help='List folders and note titles')
    parser.add_argument('--export', action='store_true',
                        help='Export every note')
    parser.add_argument('--ids', nargs='+', metavar='ID',
                        help='Export only these note ids')
    parser.add_argument('--detail', type=str, metavar='ID',
                        help='Print a single note')
    parser.add_argument('--import', dest='bundle', type=str, metavar='BUNDLE',
                        help='Create notes from a JSON bundle')
    parser.add_argument('--format', choices=['txt', 'md', 'json'],
                        help='Export format (default from config)')
    parser.add_argument('--output', type=str, metavar='DIR',
                        help='Output directory (default from config)')
    parser.add_argument('--target-folder', type=str, default='',
                        help='Import every note into this folder')

    args = parser.parse_args()

    # Default to status if no args
    if not any([args.status, args.list, args.export, args.ids, args.detail, args.bundle]):
        args.status = True

    if args.status:
        status = get_status()
        print("Export Status")
        print("-" * 30)
        print(f"Message:  {status.get('message')}")
        if status.get('total'):
            print(f"Progress: {status.get('current', 0)}/{status['total']} ({status.get('progress', 0):.1f}%)")
        if status.get('timestamp'):
            print(f"Updated:  {status['timestamp']}")
        return

    config = load_config()
    if args.format:
        config["export_format"] = args.format

    is_valid, error = validate_config(config)
    if not is_valid:
        print(f"Configuration error: {error}")
        update_status(f"Configuration error: {error}", 0, 0, 0, 0, None, error=True)
        sys.exit(1)

    output_dir = Path(args.output or config["output_dir"])
    extractor = build_extractor(config)

    try:
        if args.list:
            run_list(extractor)
        elif args.export:
            run_export(extractor, config, config["export_format"], output_dir)
        elif args.ids:
            run_selected_export(extractor, config, args.ids, config["export_format"], output_dir)
        elif args.detail:
            note = extractor.fetch_note_detail(args.detail)
            print(f"Title:    {note.title}")
            print(f"Folder:   {note.folder}")
            print(f"Created:  {note.created_at.isoformat()}")
            print(f"Modified: {note.modified_at.isoformat()}")
            print()
            print(note.plain_text)
        elif args.bundle:
            run_import(extractor, config, args.bundle, args.target_folder)
    except PermissionDeniedError as e:
        print(f"Error: {e}")
        update_status(str(e), 0, 0, 0, 0, None, error=True)
        sys.exit(2)
    except (NotesError, BundleError, ImportFailed) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
