"""
Re-create notes in the Notes app from a JSON bundle.
"""
import html
from typing import Callable

from extractor import NotesExtractor
from osascript import NotesError
from schemas import NotesBundle


class ImportFailed(Exception):
    """Raised when a note could not be created; earlier notes stay imported."""
    pass


def body_for_import(note) -> str:
    """HTML body, or the plain text wrapped as HTML when no body was captured."""
    if note.html_body:
        return note.html_body
    escaped = html.escape(note.plain_text).replace("\n", "<br>")
    return f"<div>{escaped}</div>"


def import_bundle(bundle: NotesBundle, extractor: NotesExtractor,
                  target_folder: str = "", default_folder: str = "Imported",
                  on_progress: Callable[[int, int], None] = None) -> int:
    """
    Create every note of a bundle.

    Args:
        bundle: Loaded bundle
        extractor: Extractor whose create_note issues the scripts
        target_folder: Put every note here instead of its original folder
        default_folder: Used when a note has no folder and no target is given
        on_progress: Called with (done, total) after each note

    Returns:
        Number of notes created

    Raises:
        ImportFailed: On the first note that could not be created
    """
    total = len(bundle.notes)
    imported = 0

    for index, note in enumerate(bundle.notes):
        folder = target_folder or note.folder or default_folder
        try:
            extractor.create_note(note.title, body_for_import(note), folder)
        except NotesError as e:
            raise ImportFailed(f'Could not import "{note.title}": {e}') from e
        imported += 1
        if on_progress:
            on_progress(index + 1, total)

    return imported
