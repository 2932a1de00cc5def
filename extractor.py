#!/usr/bin/env python3
"""
Core extraction logic for pulling notes out of the Notes app.

Drives osascript queries through an injected invoker and decides, folder by
folder, whether to advance, degrade to a cheaper query or record a skip:

- Incremental metadata listing (folder names, then ids/titles per folder)
- Full export by folder index with body_truncated / meta_only degradation
- Reconciliation of notes no folder traversal reached, by global note index
- Targeted body fetch for a selected set of note ids
"""
import threading
from dataclasses import dataclass, field
from typing import Callable

from config import DEFAULT_CONFIG, get_timeout
from osascript import (
    Dialect,
    Invoker,
    ParseError,
    ScriptFailedError,
    ScriptTimeoutError,
)
from parser import (
    decode_body_batch,
    decode_export_init,
    decode_folder_export,
    decode_folder_listing,
    decode_folder_names,
    decode_index_batch,
    decode_note_detail,
    decode_rows,
    dedupe_records,
    export_row_to_record,
)
from schemas import ExportResult, NoteRecord, WriteResult
from scripts import JXABuilder, get_builder

# PermissionDeniedError is deliberately absent: it stops the whole run
RECOVERABLE_ERRORS = (ScriptFailedError, ScriptTimeoutError, ParseError)

BODY_TRUNCATED = "body_truncated"
META_ONLY = "meta_only"

Writer = Callable[[list[NoteRecord]], "int | WriteResult"]
ProgressCallback = Callable[[int, int], None]
StatusCallback = Callable[[str], None]


class ExtractionCancelled(Exception):
    """Raised at a suspension point once cancellation has been requested."""
    pass


@dataclass
class ExtractionRun:
    """Mutable accumulators for one full export."""
    all_ids: list[str]
    folder_count: int
    exported_ids: set = field(default_factory=set)
    delivered_ids: set = field(default_factory=set)
    explained_ids: set = field(default_factory=set)
    errors: list = field(default_factory=list)
    written: int = 0
    processed: int = 0

    def __post_init__(self):
        self.id_set = set(self.all_ids)

    @property
    def total(self) -> int:
        return len(self.id_set)

    def mark_exported(self, records: list[NoteRecord]) -> None:
        for record in records:
            self.delivered_ids.add(record.id)
            if record.id in self.id_set:
                self.exported_ids.add(record.id)

    def missing_ids(self) -> list[str]:
        """Ids not yet exported, in global order."""
        seen = set()
        missing = []
        for note_id in self.all_ids:
            if note_id not in self.exported_ids and note_id not in seen:
                seen.add(note_id)
                missing.append(note_id)
        return missing

    def index_map(self) -> dict[str, int]:
        """note id -> position in the global note list (first occurrence)."""
        mapping = {}
        for index, note_id in enumerate(self.all_ids):
            mapping.setdefault(note_id, index)
        return mapping

    def to_result(self, cancelled: bool = False) -> ExportResult:
        return ExportResult(
            written=self.written,
            total=self.total,
            exported=len(self.exported_ids),
            errors=list(self.errors),
            cancelled=cancelled
        )


class NotesExtractor:
    """
    Extracts notes through an osascript invoker.

    The invoker is any callable (dialect, script, timeout) -> stdout, so tests
    can substitute canned output for real osascript runs.
    """

    def __init__(self, invoker: Invoker, config: dict = None,
                 cancel_event: threading.Event = None):
        self.invoker = invoker
        self.config = config if config is not None else dict(DEFAULT_CONFIG)
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.dialect = Dialect(self.config.get("query_dialect", "applescript"))
        self.builder = get_builder(self.dialect)
        self.jxa = JXABuilder()

    # -------------------------------------------------------------------------
    # plumbing
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        self.cancel_event.set()

    def check_cancelled(self) -> None:
        """Check if cancellation was requested."""
        if self.cancel_event.is_set():
            raise ExtractionCancelled("Extraction cancelled")

    def _run(self, dialect: Dialect, script: str, query: str) -> str:
        return self.invoker(dialect, script, get_timeout(self.config, query))

    # -------------------------------------------------------------------------
    # incremental metadata listing
    # -------------------------------------------------------------------------

    def fetch_folder_names(self) -> list[str]:
        raw = self._run(self.dialect, self.builder.folder_names(), "folder_names")
        return decode_folder_names(self.dialect, raw)

    def fetch_metadata_incremental(
        self,
        on_folders: Callable[[list[str]], None] = None,
        on_folder_loaded: Callable[[list[NoteRecord], int, int], None] = None
    ) -> int:
        """
        List ids and titles folder by folder, delivering each folder at once.

        A folder whose listing fails is reported with no notes; iteration
        continues with the next folder.

        Args:
            on_folders: Called once with every folder name
            on_folder_loaded: Called per folder with (notes, completed, total)

        Returns:
            Number of folders completed (less than the total if cancelled)

        Raises:
            PermissionDeniedError: Automation access to Notes refused
        """
        folder_names = self.fetch_folder_names()
        if on_folders:
            on_folders(folder_names)

        total = len(folder_names)
        completed = 0

        try:
            for folder_name in folder_names:
                self.check_cancelled()
                completed += 1

                try:
                    raw = self._run(self.dialect, self.builder.folder_listing(folder_name), "folder_listing")
                    notes = decode_folder_listing(self.dialect, raw, folder_name)
                except RECOVERABLE_ERRORS:
                    notes = []

                if on_folder_loaded:
                    on_folder_loaded(notes, completed, total)
        except ExtractionCancelled:
            pass

        return completed

    # -------------------------------------------------------------------------
    # full export
    # -------------------------------------------------------------------------

    def export_all(
        self,
        writer: Writer,
        on_progress: ProgressCallback = None,
        on_status: StatusCallback = None
    ) -> ExportResult:
        """
        Export every note, streaming each folder's notes to writer.

        Folders are walked by index so same-named folders in different
        accounts are each processed once. Notes no folder reached are then
        recovered by their global index.

        Args:
            writer: Receives each finished batch; returns a written count or
                a WriteResult with per-note errors
            on_progress: Called with (processed, total) after every folder,
                body sub-batch and reconciliation batch
            on_status: Called with human-readable status lines

        Returns:
            ExportResult with counts and one line per skipped folder/note

        Raises:
            PermissionDeniedError: Automation access to Notes refused
        """
        progress = on_progress or (lambda done, total: None)
        status = on_status or (lambda message: None)

        try:
            raw = self._run(Dialect.JXA, self.jxa.export_init(), "export_init")
            init = decode_export_init(raw)
        except RECOVERABLE_ERRORS as e:
            return ExportResult(errors=[f"Could not enumerate notes: {e}"])

        run = ExtractionRun(all_ids=init.ids, folder_count=init.fc)
        progress(0, run.total)

        try:
            for folder_index in range(run.folder_count):
                self.check_cancelled()
                self._export_folder(run, folder_index, writer, progress, status)

            self._reconcile(run, writer, progress, status)
        except ExtractionCancelled:
            return run.to_result(cancelled=True)

        return run.to_result()

    def _export_folder(self, run: ExtractionRun, folder_index: int, writer: Writer,
                       progress: ProgressCallback, status: StatusCallback) -> None:
        status(f"Folder ({folder_index + 1}/{run.folder_count})")

        try:
            raw = self._run(Dialect.JXA, self.jxa.folder_export(folder_index), "folder_export")
            payload = decode_folder_export(raw)
        except RECOVERABLE_ERRORS:
            try:
                raw = self._run(Dialect.JXA, self.jxa.folder_metadata(folder_index), "folder_metadata")
                payload = decode_folder_export(raw)
            except RECOVERABLE_ERRORS as e:
                run.errors.append(f"Folder [{folder_index}]: skipped - {e}")
                return

        folder_name = payload.f
        if payload.e and payload.e not in (BODY_TRUNCATED, META_ONLY):
            run.errors.append(f"Folder [{folder_index}] {folder_name}: {payload.e}")

        status(f"Folder ({folder_index + 1}/{run.folder_count}) {folder_name}")

        if payload.e in (BODY_TRUNCATED, META_ONLY) and payload.n:
            self._export_deferred_bodies(run, folder_index, folder_name, payload.n,
                                         writer, progress, status)
            return

        records = [r for r in (export_row_to_record(row, folder_name) for row in payload.n) if r]
        self._deliver(run, records, f"Folder {folder_name}", writer)
        run.processed += len(records)
        progress(run.processed, run.total)

    def _export_deferred_bodies(self, run: ExtractionRun, folder_index: int, folder_name: str,
                                rows: list, writer: Writer,
                                progress: ProgressCallback, status: StatusCallback) -> None:
        """Fetch bodies for a metadata-only folder in fixed-size sub-batches."""
        batch_size = self.config.get("body_batch_size", DEFAULT_CONFIG["body_batch_size"])

        for start in range(0, len(rows), batch_size):
            self.check_cancelled()
            end = min(start + batch_size, len(rows))

            try:
                raw = self._run(Dialect.JXA, self.jxa.body_batch(folder_index, start, end), "body_batch")
                bodies = decode_body_batch(raw)
            except RECOVERABLE_ERRORS as e:
                run.errors.append(
                    f"Folder {folder_name}: bodies unavailable for notes {start + 1}-{end} - {e}"
                )
                bodies = []

            records = []
            for offset, row in enumerate(rows[start:end]):
                body, plain = bodies[offset] if offset < len(bodies) else ("", "")
                record = export_row_to_record(row, folder_name, body=body, plain=plain)
                if record:
                    records.append(record)

            self._deliver(run, records, f"Folder {folder_name} [{start + 1}-{end}]", writer)
            run.processed += end - start
            progress(run.processed, run.total)
            status(f"Folder {folder_name}: fetching bodies ({end}/{len(rows)})")

    def _deliver(self, run: ExtractionRun, records: list[NoteRecord], label: str,
                 writer: Writer) -> None:
        records = [r for r in dedupe_records(records) if r.id not in run.delivered_ids]
        if not records:
            return

        run.mark_exported(records)
        try:
            outcome = writer(records)
        except Exception as e:
            run.errors.append(f"{label}: write error - {e}")
            return

        if isinstance(outcome, WriteResult):
            run.written += outcome.count
            run.errors.extend(outcome.errors)
        else:
            run.written += int(outcome)

    # -------------------------------------------------------------------------
    # reconciliation
    # -------------------------------------------------------------------------

    def _reconcile(self, run: ExtractionRun, writer: Writer,
                   progress: ProgressCallback, status: StatusCallback) -> None:
        """Recover notes outside every folder (e.g. Recently Deleted) by global index."""
        missing = run.missing_ids()
        if not missing:
            return

        status(f"Fetching notes outside folders... ({len(missing)})")

        # missing ids come from the init list, so each one has a position
        index_map = run.index_map()
        indices = sorted(index_map[note_id] for note_id in missing)

        removed_folder = self.config.get("removed_folder_name", DEFAULT_CONFIG["removed_folder_name"])
        batch_size = self.config.get("reconcile_batch_size", DEFAULT_CONFIG["reconcile_batch_size"])

        for start in range(0, len(indices), batch_size):
            self.check_cancelled()
            batch = indices[start:start + batch_size]
            end = start + len(batch)
            status(f"Notes outside folders ({start + 1}-{end}/{len(indices)})")

            try:
                raw = self._run(Dialect.JXA, self.jxa.notes_by_index(batch), "index_batch")
                records, failed = decode_index_batch(Dialect.JXA, raw, removed_folder)
            except RECOVERABLE_ERRORS:
                records, failed = [], list(batch)

            batch_set = set(batch)
            for index in dict.fromkeys(i for i in failed if i in batch_set):
                record, error = self._fetch_by_index(index, run.all_ids[index], removed_folder)
                if record is not None:
                    records.append(record)
                if error:
                    run.errors.append(error)
                    run.explained_ids.add(run.all_ids[index])

            self._deliver(run, records, f"Notes outside folders [{start + 1}-{end}]", writer)
            run.processed += len(batch)
            progress(run.processed, run.total)

        for note_id in run.missing_ids():
            if note_id not in run.explained_ids:
                run.errors.append(f"Note {note_id}: not found after reconciliation")
                run.explained_ids.add(note_id)

    def _fetch_by_index(self, index: int, note_id: str, removed_folder: str) -> tuple[NoteRecord | None, str | None]:
        """Retry a single note by global index. Returns (note, error line)."""
        try:
            raw = self._run(Dialect.JXA, self.jxa.notes_by_index([index]), "single_index")
            records, _ = decode_index_batch(Dialect.JXA, raw, removed_folder)
        except RECOVERABLE_ERRORS as e:
            return None, f"Note {note_id} [index={index}]: {e}"

        if not records:
            return None, f"Note {note_id} [index={index}]: could not be read"
        return records[0], None

    # -------------------------------------------------------------------------
    # targeted fetch
    # -------------------------------------------------------------------------

    def fetch_bodies_for_export(
        self,
        selected_ids,
        folder_names: list[str],
        on_progress: ProgressCallback = None
    ) -> list[NoteRecord]:
        """
        Fetch full notes for a selected set of ids.

        Folders are read by name (duplicate names are harmless, rows are
        filtered by id); ids still missing afterwards are fetched one by one.

        Returns:
            Full records for every id that could be found
        """
        wanted = list(dict.fromkeys(selected_ids))
        selected = set(wanted)
        total = len(wanted)
        progress = on_progress or (lambda done, total: None)
        found: dict[str, NoteRecord] = {}

        try:
            for folder_name in folder_names:
                self.check_cancelled()
                try:
                    raw = self._run(self.dialect, self.builder.folder_content(folder_name), "folder_content")
                    rows = decode_rows(self.dialect, raw, folder_name)
                except RECOVERABLE_ERRORS:
                    continue

                for record in rows:
                    if record.id in selected:
                        found[record.id] = record
                progress(len(found), total)

            fetched = len(found)
            for note_id in [i for i in wanted if i not in found]:
                self.check_cancelled()
                try:
                    raw = self._run(self.dialect, self.builder.note_detail(note_id, tolerant=True), "note_detail")
                    record = decode_note_detail(self.dialect, raw, note_id)
                except RECOVERABLE_ERRORS:
                    record = None
                if record is not None:
                    found[note_id] = record
                fetched += 1
                progress(fetched, total)
        except ExtractionCancelled:
            pass

        return list(found.values())

    def fetch_note_detail(self, note_id: str) -> NoteRecord:
        """
        Fetch one note in full (used for previews).

        Raises:
            ParseError: Note output could not be decoded
            ScriptFailedError, ScriptTimeoutError, PermissionDeniedError
        """
        raw = self._run(self.dialect, self.builder.note_detail(note_id), "note_detail")
        record = decode_note_detail(self.dialect, raw, note_id)
        if record is None:
            raise ParseError(f"note {note_id}: no output")
        return record

    def create_note(self, title: str, body: str, folder_name: str) -> str:
        """Create a note in folder_name (created if missing). Returns script output."""
        return self._run(self.dialect, self.builder.create_note(title, body, folder_name), "create_note")
