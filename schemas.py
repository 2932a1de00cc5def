"""
Pydantic schemas for note records, export bundles and osascript payloads.

These schemas are used both for:
1. Validating the JSON that JXA scripts print on stdout
2. Carrying extracted notes between the extractor, writers and bundle codec
"""
import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')


# =============================================================================
# NOTE RECORDS
# =============================================================================

class NoteRecord(BaseModel):
    """One note as extracted from the Notes app."""
    # Bundle files use camelCase keys (htmlBody, createdAt, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(description="Stable id assigned by Notes (x-coredata://...)")
    title: str = ""
    html_body: str = Field(default="", description="Opaque HTML body")
    plain_text: str = ""
    folder: str = Field(default="", description="Folder display name, not unique")
    created_at: datetime = EPOCH
    modified_at: datetime = EPOCH

    @property
    def safe_file_name(self) -> str:
        """Title usable as a file name (without extension)."""
        name = self.title or "Untitled"
        safe = UNSAFE_FILENAME_CHARS.sub("_", name)[:100]
        return safe or "Untitled"


class NotesBundle(BaseModel):
    """Self-describing JSON export of a full note set."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str = "1.0"
    export_date: datetime
    app_version: str = "1.0.0"
    notes: list[NoteRecord] = Field(default_factory=list)


# =============================================================================
# JXA WIRE PAYLOADS
# =============================================================================

class ExportInitPayload(BaseModel):
    """Every note id (global order) plus the folder count."""
    ids: list[str]
    fc: int = Field(ge=0, description="Number of folders")


class FolderExportPayload(BaseModel):
    """One folder's rows: [id, name, body, plaintext, created?, modified?]."""
    f: str = Field(description="Folder name")
    n: list[list[str | None]] = Field(default_factory=list)
    e: str = Field(default="", description="body_truncated, meta_only or an error")


class IndexBatchPayload(BaseModel):
    """Notes fetched by global index, plus the indices the script could not read."""
    n: list[list[str | None]] = Field(default_factory=list)
    e: list[int] = Field(default_factory=list)


# =============================================================================
# RESULTS
# =============================================================================

class WriteResult(BaseModel):
    """What a persistence writer reports for one batch."""
    count: int = 0
    errors: list[str] = Field(default_factory=list)


class ExportResult(BaseModel):
    """Outcome of a full export run."""
    written: int = 0
    total: int = 0
    exported: int = Field(default=0, description="Distinct ids materialized")
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def skipped(self) -> int:
        return max(self.total - self.exported, 0)
