#!/usr/bin/env python3
"""
Decoders for osascript output - turns raw script stdout into NoteRecords.

Supports both wire shapes produced by scripts.py:
- AppleScript: <<SEC>> / <<R>> / <<F>> delimited text
- JXA: JSON documents

Rows with fewer fields than expected are skipped rather than failing the
batch. Structured payloads that are not valid JSON raise ParseError.
"""
import json
from datetime import datetime, timezone

from pydantic import BaseModel, ValidationError

from osascript import Dialect, ParseError
from schemas import (
    EPOCH,
    ExportInitPayload,
    FolderExportPayload,
    IndexBatchPayload,
    NoteRecord,
)
from scripts import ERROR_MARK, FIELD_SEP, RECORD_SEP, SECTION_SEP

# Field counts per row shape
CONTENT_FIELDS = 6      # id, title, body, plain, created, modified
DETAIL_FIELDS = 6       # title, body, plain, created, modified, folder
INDEX_FIELDS = 5        # id, title, body, plain, folder (+ created, modified)
EXPORT_FIELDS = 4       # id, title, body, plain (+ created, modified)

FALLBACK_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def parse_timestamp(value: str | None) -> datetime:
    """
    Parse a timestamp from script output.

    Tries a zoned ISO-8601 value first (what JXA's toISOString() prints),
    then the zone-less form AppleScript's «class isot» gives, read in the
    local fixed offset. Anything else falls back to the current time.
    """
    text = (value or "").strip()
    if text:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                return parsed
        except ValueError:
            pass
        try:
            return datetime.strptime(text, FALLBACK_DATE_FORMAT).astimezone()
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def split_lines(text: str) -> list[str]:
    """Split on newlines, trimming and dropping blank entries."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def load_json(raw: str, what: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"{what}: {e}") from e


def load_payload(raw: str, model: type[BaseModel], what: str):
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise ParseError(f"{what}: {e.error_count()} invalid field(s)") from e


def as_strings(row) -> list[str] | None:
    if not isinstance(row, list):
        return None
    return ["" if v is None else str(v) for v in row]


# =============================================================================
# NAME-KEYED QUERIES (both dialects)
# =============================================================================

def decode_folder_names(dialect: Dialect, raw: str) -> list[str]:
    if dialect == Dialect.JXA:
        names = load_json(raw, "folder names") if raw.strip() else []
        if not isinstance(names, list):
            raise ParseError("folder names: expected a list")
        return [str(n).strip() for n in names if n is not None and str(n).strip()]
    return split_lines(raw)


def decode_folder_listing(dialect: Dialect, raw: str, folder: str) -> list[NoteRecord]:
    """
    Decode an id/title listing into metadata-only records.

    Returns:
        Records with empty bodies and epoch timestamps
    """
    if dialect == Dialect.JXA:
        data = load_json(raw, "folder listing")
        if not isinstance(data, dict):
            raise ParseError("folder listing: expected an object")
        ids = [str(i).strip() for i in data.get("ids") or [] if i is not None and str(i).strip()]
        names = [str(n or "").strip() for n in data.get("names") or []]
    else:
        sections = raw.split(SECTION_SEP)
        if len(sections) < 2:
            raise ParseError("folder listing: missing name section")
        ids = split_lines(sections[0])
        names = [line.strip() for line in sections[1].split("\n")]

    records = []
    for i, note_id in enumerate(ids):
        records.append(NoteRecord(
            id=note_id,
            title=names[i] if i < len(names) else "",
            folder=folder,
            created_at=EPOCH,
            modified_at=EPOCH
        ))
    return records


def decode_rows(dialect: Dialect, raw: str, folder: str) -> list[NoteRecord]:
    """
    Decode a folder content query into full records.

    Args:
        dialect: Dialect the script was written in
        raw: Script stdout
        folder: Folder name assigned to every record

    Returns:
        One record per well-formed row
    """
    if not raw.strip():
        return []

    if dialect == Dialect.JXA:
        data = load_json(raw, "folder content")
        rows = [as_strings(r) for r in data] if isinstance(data, list) else []
    else:
        rows = [line.split(FIELD_SEP) for line in raw.split(RECORD_SEP)]

    records = []
    for fields in rows:
        if not fields or len(fields) < CONTENT_FIELDS:
            continue
        note_id = fields[0].strip()
        if not note_id:
            continue
        records.append(NoteRecord(
            id=note_id,
            title=fields[1].strip(),
            html_body=fields[2],
            plain_text=fields[3],
            folder=folder,
            created_at=parse_timestamp(fields[4]),
            modified_at=parse_timestamp(fields[5])
        ))
    return records


def decode_note_detail(dialect: Dialect, raw: str, note_id: str) -> NoteRecord | None:
    """
    Decode a single-note detail query.

    Returns:
        The record, or None when the script produced no output (a tolerant
        query that could not find the note)

    Raises:
        ParseError: Output present but with too few fields
    """
    if not raw.strip():
        return None

    if dialect == Dialect.JXA:
        fields = as_strings(load_json(raw, "note detail"))
    else:
        fields = raw.split(FIELD_SEP)

    if not fields or len(fields) < DETAIL_FIELDS:
        raise ParseError(f"note {note_id}: expected {DETAIL_FIELDS} fields")

    return NoteRecord(
        id=note_id,
        title=fields[0].strip(),
        html_body=fields[1],
        plain_text=fields[2],
        folder=fields[5].strip(),
        created_at=parse_timestamp(fields[3]),
        modified_at=parse_timestamp(fields[4])
    )


def decode_index_batch(dialect: Dialect, raw: str,
                       removed_folder: str) -> tuple[list[NoteRecord], list[int]]:
    """
    Decode notes fetched by global index.

    Notes whose folder cannot be determined get removed_folder.

    Returns:
        (records, indices the script reported as unreadable)
    """
    if dialect == Dialect.JXA:
        payload = load_payload(raw, IndexBatchPayload, "index batch")
        rows, failed = [as_strings(r) for r in payload.n], list(payload.e)
    else:
        rows, failed = [], []
        for chunk in raw.split(RECORD_SEP) if raw.strip() else []:
            chunk = chunk.strip("\r\n")
            if chunk.startswith(ERROR_MARK):
                index = chunk[len(ERROR_MARK):].strip()
                if index.lstrip("-").isdigit():
                    failed.append(int(index))
                continue
            rows.append(chunk.split(FIELD_SEP))

    records = []
    for fields in rows:
        if len(fields) < INDEX_FIELDS or not fields[0].strip():
            continue
        folder = fields[4].strip() or removed_folder
        records.append(NoteRecord(
            id=fields[0].strip(),
            title=fields[1].strip(),
            html_body=fields[2],
            plain_text=fields[3],
            folder=folder,
            created_at=parse_timestamp(fields[5] if len(fields) > 5 else ""),
            modified_at=parse_timestamp(fields[6] if len(fields) > 6 else "")
        ))
    return records, failed


# =============================================================================
# INDEX-KEYED EXPORT QUERIES (JXA only)
# =============================================================================

def decode_export_init(raw: str) -> ExportInitPayload:
    return load_payload(raw, ExportInitPayload, "export init")


def decode_folder_export(raw: str) -> FolderExportPayload:
    if not raw.strip():
        raise ParseError("folder export: empty output")
    return load_payload(raw, FolderExportPayload, "folder export")


def decode_body_batch(raw: str) -> list[tuple[str, str]]:
    """Decode [[body, plain], ...] into (body, plain) pairs."""
    data = load_json(raw, "body batch")
    if not isinstance(data, list):
        raise ParseError("body batch: expected a list")
    pairs = []
    for entry in data:
        fields = as_strings(entry) or []
        body = fields[0] if len(fields) > 0 else ""
        plain = fields[1] if len(fields) > 1 else ""
        pairs.append((body, plain))
    return pairs


def export_row_to_record(fields: list[str], folder: str,
                         body: str | None = None, plain: str | None = None) -> NoteRecord | None:
    """
    Build a record from a folder export row.

    body/plain override the row's own (empty) values when they were fetched
    separately.
    """
    fields = as_strings(fields) or []
    if len(fields) < EXPORT_FIELDS or not fields[0].strip():
        return None
    return NoteRecord(
        id=fields[0].strip(),
        title=fields[1].strip(),
        html_body=fields[2] if body is None else body,
        plain_text=fields[3] if plain is None else plain,
        folder=folder,
        created_at=parse_timestamp(fields[4] if len(fields) > 4 else ""),
        modified_at=parse_timestamp(fields[5] if len(fields) > 5 else "")
    )


def dedupe_records(records) -> list[NoteRecord]:
    """De-duplicate by id; later records overwrite earlier ones in place."""
    by_id: dict[str, NoteRecord] = {}
    for record in records:
        by_id[record.id] = record
    return list(by_id.values())
