#!/usr/bin/env python3
"""
Writers for extracted notes.

- NoteFileWriter: one .txt or .md file per note, optionally under a folder
  directory, streamed batch by batch
- BundleWriter: collects every note and saves a single JSON bundle that
  importer.py can read back
"""
import json
import os
import platform
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from converter import html_to_markdown, plain_text_for
from parser import dedupe_records
from schemas import UNSAFE_FILENAME_CHARS, NoteRecord, NotesBundle, WriteResult

BUNDLE_PREFIX = "NotesExport"
ERROR_LOG_NAME = f"{BUNDLE_PREFIX}_errors.log"
APP_VERSION = "1.0.0"


class BundleError(Exception):
    """Raised when a bundle file is missing or malformed."""
    pass


# =============================================================================
# FILE HELPERS
# =============================================================================

def safe_replace(src, dst, retries=3, delay=0.1):
    """Cross-platform atomic file replace with Windows retry logic."""
    for attempt in range(retries):
        try:
            os.replace(src, dst)
            return
        except PermissionError:
            if platform.system() == 'Windows' and attempt < retries - 1:
                time.sleep(delay)
            else:
                raise


def atomic_write_text(path: Path, content: str) -> None:
    """Write via a temp file in the same directory, then rename."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
        safe_replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def unique_file_name(base: str, ext: str, directory: Path) -> str:
    """base.ext, or base_1.ext, base_2.ext ... if taken."""
    name = f"{base}.{ext}"
    counter = 1
    while (directory / name).exists():
        name = f"{base}_{counter}.{ext}"
        counter += 1
    return name


def folder_dir_name(folder: str) -> str:
    """Single safe path component for a folder name; never "." or ".."."""
    name = UNSAFE_FILENAME_CHARS.sub("_", folder).strip()
    if name in ("", ".", ".."):
        return "_"
    return name


def timestamp_slug(moment: datetime = None) -> str:
    return (moment or datetime.now()).strftime("%Y%m%d_%H%M%S")


# =============================================================================
# TEXT / MARKDOWN
# =============================================================================

class NoteFileWriter:
    """Writes one file per note; callable as an extractor writer."""

    def __init__(self, output_dir, export_format: str = "txt", preserve_folders: bool = True):
        if export_format not in ("txt", "md"):
            raise ValueError(f"NoteFileWriter cannot write {export_format!r}")
        self.output_dir = Path(output_dir)
        self.export_format = export_format
        self.preserve_folders = preserve_folders

    def __call__(self, notes: list[NoteRecord]) -> WriteResult:
        return self.write(notes)

    def render(self, note: NoteRecord) -> str:
        if self.export_format == "md":
            return html_to_markdown(note.html_body)
        return plain_text_for(note)

    def write(self, notes: list[NoteRecord]) -> WriteResult:
        """Write each note, skipping individual failures."""
        result = WriteResult()

        for note in notes:
            directory = self.output_dir
            if self.preserve_folders and note.folder:
                directory = directory / folder_dir_name(note.folder)

            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                result.errors.append(f'"{note.title}": could not create folder - {e}')
                continue

            file_name = unique_file_name(note.safe_file_name, self.export_format, directory)
            try:
                atomic_write_text(directory / file_name, self.render(note))
                result.count += 1
            except OSError as e:
                result.errors.append(f'"{note.title}": write failed - {e}')

        return result


# =============================================================================
# JSON BUNDLE
# =============================================================================

def build_bundle(notes: list[NoteRecord], export_date: datetime = None) -> NotesBundle:
    return NotesBundle(
        export_date=export_date or datetime.now(timezone.utc),
        app_version=APP_VERSION,
        notes=dedupe_records(notes)
    )


def save_bundle(notes: list[NoteRecord], directory, export_date: datetime = None) -> Path:
    """
    Save notes as a JSON bundle named NotesExport_<timestamp>.json.

    Returns:
        Path of the written bundle
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    bundle = build_bundle(notes, export_date)
    path = directory / f"{BUNDLE_PREFIX}_{timestamp_slug(export_date)}.json"
    atomic_write_text(path, bundle.model_dump_json(indent=2, by_alias=True))
    return path


def load_bundle(path) -> NotesBundle:
    """
    Read a JSON bundle written by save_bundle.

    Raises:
        BundleError: File missing, not JSON, or not a bundle
    """
    path = Path(path)
    if not path.exists():
        raise BundleError(f"File not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise BundleError(f"Invalid bundle file: {e}") from e

    try:
        return NotesBundle.model_validate(data)
    except ValidationError as e:
        raise BundleError(f"Invalid bundle format: {e.error_count()} invalid field(s)") from e


class BundleWriter:
    """Collects streamed batches; save() writes them as one bundle."""

    def __init__(self, output_dir):
        self.output_dir = Path(output_dir)
        self.notes: list[NoteRecord] = []

    def __call__(self, notes: list[NoteRecord]) -> int:
        self.notes.extend(notes)
        return len(notes)

    def save(self) -> Path:
        return save_bundle(self.notes, self.output_dir)


def write_error_log(directory, total: int, written: int, skipped: int, errors: list[str]) -> Path:
    """
    Write every error line of a run to <directory>/NotesExport_errors.log.

    Returns:
        Path of the log
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    lines = [
        f"Notes export error log ({datetime.now().isoformat(timespec='seconds')})",
        f"Total: {total}  Exported: {written}  Skipped: {skipped}",
        "-" * 60,
        *errors,
    ]
    path = directory / ERROR_LOG_NAME
    atomic_write_text(path, "\n".join(lines) + "\n")
    return path


def make_writer(export_format: str, output_dir, preserve_folders: bool = True):
    """Writer for an export format: NoteFileWriter for txt/md, BundleWriter for json."""
    if export_format == "json":
        return BundleWriter(output_dir)
    return NoteFileWriter(output_dir, export_format, preserve_folders)
