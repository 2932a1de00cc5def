"""
Shared pytest fixtures for the Notes extraction tests.
"""
import copy
import json
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import pytest

from config import DEFAULT_CONFIG
from osascript import ScriptFailedError
from schemas import NoteRecord


class FakeInvoker:
    """
    Stands in for osascript: answers each script with the first rule whose
    markers all appear in the script text.

    A response may be a string, an exception instance (raised), or a
    callable taking the script and returning a string.
    """

    def __init__(self, rules=None):
        self.rules = []
        self.calls = []
        for marker, response in rules or []:
            self.add(marker, response)

    def add(self, marker, response):
        markers = (marker,) if isinstance(marker, str) else tuple(marker)
        self.rules.append((markers, response))
        return self

    def __call__(self, dialect, script, timeout):
        self.calls.append((dialect, script, timeout))
        for markers, response in self.rules:
            if all(m in script for m in markers):
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    return response(script)
                return response
        raise ScriptFailedError("no canned response for script")

    def count(self, *markers) -> int:
        """How many scripts issued so far contain every marker."""
        return sum(1 for _, script, _ in self.calls if all(m in script for m in markers))


class CollectingWriter:
    """Writer that keeps every batch it receives."""

    def __init__(self):
        self.batches = []

    def __call__(self, notes):
        self.batches.append(list(notes))
        return len(notes)

    @property
    def notes(self):
        return [n for batch in self.batches for n in batch]

    def by_id(self):
        return {n.id: n for n in self.notes}


def export_init(ids, folder_count) -> str:
    return json.dumps({"ids": ids, "fc": folder_count})


def folder_payload(name, rows, flag=None) -> str:
    payload = {"f": name, "n": rows}
    if flag:
        payload["e"] = flag
    return json.dumps(payload)


INIT_MARKER = "const folderCount = Notes.folders.length"


def folder_export_marker(index):
    return (f"Notes.folders[{index}]", "body_truncated")


def folder_metadata_marker(index):
    return (f"Notes.folders[{index}]", "meta_only")


def body_batch_marker(index, start, end):
    return (f"Notes.folders[{index}]", f"for (let i = {start}; i < {end}; i++)")


def index_batch_marker(indices):
    return f"const indices = [{', '.join(str(i) for i in indices)}]"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config() -> dict:
    """Configuration with the default values."""
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def collecting_writer() -> CollectingWriter:
    return CollectingWriter()


@pytest.fixture
def fake_osascript(temp_dir) -> Path:
    """
    Executable that runs its last argument as shell code, standing in for
    osascript (which takes the script as the last argument after -e).
    """
    path = temp_dir / "osascript"
    path.write_text('#!/bin/sh\nfor last; do :; done\neval "$last"\n')
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def sample_note() -> NoteRecord:
    """A fully fetched note."""
    return NoteRecord(
        id="x-coredata://ABC/ICNote/p101",
        title="Groceries",
        html_body="<div><b>Groceries</b></div><div>milk<br>eggs</div>",
        plain_text="Groceries\nmilk\neggs",
        folder="Home",
        created_at=datetime(2024, 3, 1, 10, 15, 30, tzinfo=timezone.utc),
        modified_at=datetime(2024, 3, 2, 8, 0, 0, tzinfo=timezone.utc)
    )


@pytest.fixture
def sample_notes(sample_note) -> list[NoteRecord]:
    return [
        sample_note,
        NoteRecord(
            id="x-coredata://ABC/ICNote/p102",
            title="Trip: Kyoto/Osaka",
            html_body="<div>Day 1</div>",
            plain_text="",
            folder="Travel",
            created_at=datetime(2024, 1, 5, tzinfo=timezone.utc),
            modified_at=datetime(2024, 1, 6, tzinfo=timezone.utc)
        ),
    ]
