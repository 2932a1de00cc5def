"""
Tests for importer.py - re-creating notes from a bundle.
"""
from datetime import datetime, timezone

import pytest

from conftest import FakeInvoker
from extractor import NotesExtractor
from importer import ImportFailed, body_for_import, import_bundle
from osascript import ScriptFailedError
from schemas import NoteRecord, NotesBundle


def make_bundle(notes):
    return NotesBundle(export_date=datetime(2024, 5, 1, tzinfo=timezone.utc), notes=notes)


def test_body_for_import_prefers_html():
    """Test that the HTML body is imported when present."""
    note = NoteRecord(id="1", html_body="<div>x</div>", plain_text="ignored")
    assert body_for_import(note) == "<div>x</div>"


def test_body_for_import_wraps_plain_text():
    """Test that plain text is escaped and wrapped as HTML."""
    note = NoteRecord(id="1", plain_text="a < b\nnext")
    assert body_for_import(note) == "<div>a &lt; b<br>next</div>"


def test_import_uses_original_folders(sample_config, sample_notes):
    """Test that each note is created in the folder it came from."""
    invoker = FakeInvoker([("make new note", "")])
    progress = []

    imported = import_bundle(make_bundle(sample_notes), NotesExtractor(invoker, sample_config),
                             on_progress=lambda c, t: progress.append((c, t)))

    assert imported == 2
    assert progress == [(1, 2), (2, 2)]
    assert 'if name of f is "Home"' in invoker.calls[0][1]
    assert 'if name of f is "Travel"' in invoker.calls[1][1]


def test_import_target_folder_overrides(sample_config, sample_notes):
    """Test that a target folder replaces the original folders."""
    invoker = FakeInvoker([("make new note", "")])

    import_bundle(make_bundle(sample_notes), NotesExtractor(invoker, sample_config), target_folder="Restored")

    assert all('if name of f is "Restored"' in script for _, script, _ in invoker.calls)


def test_import_default_folder_for_unfiled_notes(sample_config):
    """Test the default folder for notes without one."""
    invoker = FakeInvoker([("make new note", "")])
    bundle = make_bundle([NoteRecord(id="1", title="Loose", plain_text="x")])

    import_bundle(bundle, NotesExtractor(invoker, sample_config), default_folder="Imported")

    assert 'if name of f is "Imported"' in invoker.calls[0][1]


def test_import_stops_on_first_failure(sample_config, sample_notes):
    """Test that import stops at the first note that fails."""
    invoker = FakeInvoker([("make new note", ScriptFailedError("Notes got an error"))])

    with pytest.raises(ImportFailed) as exc_info:
        import_bundle(make_bundle(sample_notes), NotesExtractor(invoker, sample_config))

    assert "Groceries" in str(exc_info.value)
    assert len(invoker.calls) == 1
