#!/usr/bin/env python3
"""
Script templates for querying the Notes app through osascript.

The same logical queries exist in two dialects:
- AppleScript: results come back as delimited text (see parser.py separators)
- JXA (JavaScript for Automation): results come back as JSON

JXA additionally provides the folder-index and note-index queries used by the
full export, since AppleScript can only address folders reliably by name.

Every piece of free text (folder names, titles, ids, bodies) is escaped for the
target dialect before it is placed in a script.
"""
import json
from string import Template

from osascript import Dialect


FIELD_SEP = "<<F>>"
RECORD_SEP = "<<R>>"
SECTION_SEP = "<<SEC>>"
ERROR_MARK = "<<E>>"


def escape_applescript(text: str) -> str:
    """Escape text for use inside an AppleScript "..." literal."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def quote_javascript(text: str) -> str:
    """Quoted JavaScript string literal for text (JSON is a subset of JS literals)."""
    return json.dumps(text)


def format_indices(indices) -> str:
    return ", ".join(str(int(i)) for i in indices)


# =============================================================================
# APPLESCRIPT
# =============================================================================

AS_FOLDER_NAMES = """tell application "Notes"
    with timeout of 30 seconds
        set fNames to name of every folder
        set AppleScript's text item delimiters to linefeed
        return fNames as text
    end timeout
end tell"""

AS_FOLDER_LISTING = Template("""tell application "Notes"
    with timeout of 60 seconds
        tell folder "$folder"
            set nIds to id of every note
            set nNames to name of every note
            set AppleScript's text item delimiters to linefeed
            return (nIds as text) & "<<SEC>>" & (nNames as text)
        end tell
    end timeout
end tell""")

AS_FOLDER_CONTENT = Template("""tell application "Notes"
    with timeout of 300 seconds
        tell folder "$folder"
            set nIds to id of every note
            set nNames to name of every note
            set nBodies to body of every note
            set nPlains to plaintext of every note
            set nCreated to creation date of every note
            set nModified to modification date of every note
            set noteCount to count of nIds
            set output to {}
            repeat with i from 1 to noteCount
                set end of output to (item i of nIds) & "<<F>>" & (item i of nNames) & "<<F>>" & (item i of nBodies) & "<<F>>" & (item i of nPlains) & "<<F>>" & ((item i of nCreated) as «class isot» as string) & "<<F>>" & ((item i of nModified) as «class isot» as string)
            end repeat
            set AppleScript's text item delimiters to "<<R>>"
            return output as text
        end tell
    end timeout
end tell""")

AS_NOTE_DETAIL_BODY = Template("""set n to first note whose id is "$note_id"
        set nTitle to name of n
        set nBody to body of n
        set nPlain to plaintext of n
        set nCreated to (creation date of n) as «class isot» as string
        set nModified to (modification date of n) as «class isot» as string
        set nFolder to ""
        try
            set nFolder to name of container of n
        end try
        return nTitle & "<<F>>" & nBody & "<<F>>" & nPlain & "<<F>>" & nCreated & "<<F>>" & nModified & "<<F>>" & nFolder""")

AS_NOTE_DETAIL = Template("""tell application "Notes"
    with timeout of 30 seconds
        $body
    end timeout
end tell""")

AS_NOTE_DETAIL_TOLERANT = Template("""tell application "Notes"
    with timeout of 30 seconds
        try
        $body
        end try
    end timeout
end tell""")

AS_NOTES_BY_INDEX = Template("""tell application "Notes"
    with timeout of 300 seconds
        set idxList to {$indices}
        set output to {}
        repeat with i from 1 to count of idxList
            set idx to item i of idxList
            try
                set n to note (idx + 1)
                set nBody to ""
                set nPlain to ""
                set nFolder to ""
                try
                    set nBody to body of n
                end try
                try
                    set nPlain to plaintext of n
                end try
                try
                    set nFolder to name of container of n
                end try
                set end of output to (id of n) & "<<F>>" & (name of n) & "<<F>>" & nBody & "<<F>>" & nPlain & "<<F>>" & nFolder & "<<F>>" & ((creation date of n) as «class isot» as string) & "<<F>>" & ((modification date of n) as «class isot» as string)
            on error
                set end of output to "<<E>>" & (idx as text)
            end try
        end repeat
        set AppleScript's text item delimiters to "<<R>>"
        return output as text
    end timeout
end tell""")

AS_CREATE_NOTE = Template("""tell application "Notes"
    with timeout of 30 seconds
        set targetFolder to missing value
        repeat with f in folders
            if name of f is "$folder" then
                set targetFolder to f
                exit repeat
            end if
        end repeat
        if targetFolder is missing value then
            make new folder with properties {name:"$folder"}
            set targetFolder to folder "$folder"
        end if
        tell targetFolder
            make new note with properties {name:"$title", body:"$body"}
        end tell
    end timeout
end tell""")


class AppleScriptBuilder:
    dialect = Dialect.APPLESCRIPT

    def folder_names(self) -> str:
        return AS_FOLDER_NAMES

    def folder_listing(self, folder_name: str) -> str:
        return AS_FOLDER_LISTING.substitute(folder=escape_applescript(folder_name))

    def folder_content(self, folder_name: str) -> str:
        return AS_FOLDER_CONTENT.substitute(folder=escape_applescript(folder_name))

    def note_detail(self, note_id: str, tolerant: bool = False) -> str:
        body = AS_NOTE_DETAIL_BODY.substitute(note_id=escape_applescript(note_id))
        template = AS_NOTE_DETAIL_TOLERANT if tolerant else AS_NOTE_DETAIL
        return template.substitute(body=body)

    def notes_by_index(self, indices) -> str:
        return AS_NOTES_BY_INDEX.substitute(indices=format_indices(indices))

    def create_note(self, title: str, body: str, folder_name: str) -> str:
        return AS_CREATE_NOTE.substitute(
            title=escape_applescript(title),
            body=escape_applescript(body),
            folder=escape_applescript(folder_name)
        )


# =============================================================================
# JXA
# =============================================================================

# Date.toISOString() gives the zoned form parse_timestamp handles first
JXA_ISO = "const iso = (d) => { try { return d.toISOString() } catch (e) { return '' } }"

JXA_FOLDER_NAMES = """(() => {
    const Notes = Application('Notes')
    return JSON.stringify(Notes.folders.name())
})()"""

JXA_FOLDER_LISTING = Template("""(() => {
    const Notes = Application('Notes')
    const folder = Notes.folders.byName($folder)
    return JSON.stringify({ids: folder.notes.id(), names: folder.notes.name()})
})()""")

JXA_FOLDER_CONTENT = Template("""(() => {
    const Notes = Application('Notes')
    $iso
    const folder = Notes.folders.byName($folder)
    const ids = folder.notes.id()
    const names = folder.notes.name()
    const bodies = folder.notes.body()
    const plains = folder.notes.plaintext()
    const created = folder.notes.creationDate()
    const modified = folder.notes.modificationDate()
    const rows = ids.map((id, i) => [id, names[i] || '', bodies[i] || '', plains[i] || '', iso(created[i]), iso(modified[i])])
    return JSON.stringify(rows)
})()""")

JXA_NOTE_DETAIL = Template("""(() => {
    const Notes = Application('Notes')
    $iso
    try {
        const n = Notes.notes.byId($note_id)
        let folder = ''
        try { folder = n.container().name() } catch (e) {}
        return JSON.stringify([n.name() || '', n.body() || '', n.plaintext() || '', iso(n.creationDate()), iso(n.modificationDate()), folder])
    } catch (e) {
        $on_error
    }
})()""")

JXA_NOTES_BY_INDEX = Template("""(() => {
    const Notes = Application('Notes')
    $iso
    const indices = [$indices]
    const result = []
    const errIndices = []
    for (const idx of indices) {
        try {
            const n = Notes.notes[idx]
            const id = n.id()
            const name = n.name() || ''
            let body = '', plain = '', folder = '', created = '', modified = ''
            try { body = n.body() || '' } catch (e) {}
            try { plain = n.plaintext() || '' } catch (e) {}
            try { folder = n.container().name() } catch (e) {}
            try { created = iso(n.creationDate()) } catch (e) {}
            try { modified = iso(n.modificationDate()) } catch (e) {}
            result.push([id, name, body, plain, folder, created, modified])
        } catch (e) {
            errIndices.push(idx)
        }
    }
    return JSON.stringify({n: result, e: errIndices})
})()""")

JXA_CREATE_NOTE = Template("""(() => {
    const Notes = Application('Notes')
    const folderName = $folder
    let target = null
    for (const f of Notes.folders()) {
        if (f.name() === folderName) { target = f; break }
    }
    if (target === null) {
        target = Notes.Folder({name: folderName})
        Notes.folders.push(target)
    }
    const note = Notes.Note({name: $title, body: $body})
    target.notes.push(note)
    return note.id()
})()""")

JXA_EXPORT_INIT = """(() => {
    const Notes = Application('Notes')
    const allIds = Notes.notes.id()
    const folderCount = Notes.folders.length
    return JSON.stringify({ids: allIds, fc: folderCount})
})()"""

# Fast path reads every field in bulk; if that throws, bodies are read note by
# note. When the final JSON.stringify fails (payload too large) the script
# itself answers with metadata only and e: 'body_truncated'.
JXA_FOLDER_EXPORT = Template("""(() => {
    const Notes = Application('Notes')
    $iso
    const folder = Notes.folders[$index]
    let folderName = 'folder_$index'
    try { folderName = folder.name() } catch (e) {}
    let ids
    try { ids = folder.notes.id() } catch (e) {
        return JSON.stringify({f: folderName, n: [], e: 'note ids unavailable'})
    }
    if (ids.length === 0) return JSON.stringify({f: folderName, n: []})
    let names
    try { names = folder.notes.name() } catch (e) { names = ids.map(() => '') }
    let created = ids.map(() => ''), modified = ids.map(() => '')
    try { created = folder.notes.creationDate().map(iso) } catch (e) {}
    try { modified = folder.notes.modificationDate().map(iso) } catch (e) {}
    let notes = null
    try {
        const bodies = folder.notes.body()
        const plains = folder.notes.plaintext()
        notes = ids.map((id, i) => [id, names[i] || '', bodies[i] || '', plains[i] || '', created[i], modified[i]])
    } catch (e) {}
    if (notes === null) {
        notes = []
        for (let i = 0; i < ids.length; i++) {
            let body = '', plain = ''
            try { body = folder.notes[i].body() || '' } catch (e) {}
            try { plain = folder.notes[i].plaintext() || '' } catch (e) {}
            notes.push([ids[i], names[i] || '', body, plain, created[i], modified[i]])
        }
    }
    try {
        return JSON.stringify({f: folderName, n: notes})
    } catch (e) {
        const meta = ids.map((id, i) => [id, names[i] || '', '', '', created[i], modified[i]])
        return JSON.stringify({f: folderName, n: meta, e: 'body_truncated'})
    }
})()""")

JXA_FOLDER_METADATA = Template("""(() => {
    const Notes = Application('Notes')
    $iso
    const folder = Notes.folders[$index]
    let name = 'folder_$index'
    try { name = folder.name() } catch (e) {}
    let ids = [], names = []
    try { ids = folder.notes.id() } catch (e) {
        return JSON.stringify({f: name, n: [], e: 'note ids unavailable'})
    }
    try { names = folder.notes.name() } catch (e) {}
    let created = ids.map(() => ''), modified = ids.map(() => '')
    try { created = folder.notes.creationDate().map(iso) } catch (e) {}
    try { modified = folder.notes.modificationDate().map(iso) } catch (e) {}
    const meta = ids.map((id, i) => [id, names[i] || '', '', '', created[i], modified[i]])
    return JSON.stringify({f: name, n: meta, e: 'meta_only'})
})()""")

JXA_BODY_BATCH = Template("""(() => {
    const Notes = Application('Notes')
    const folder = Notes.folders[$index]
    const r = []
    for (let i = $start; i < $end; i++) {
        let b = '', p = ''
        try { b = folder.notes[i].body() || '' } catch (e) {}
        try { p = folder.notes[i].plaintext() || '' } catch (e) {}
        r.push([b, p])
    }
    return JSON.stringify(r)
})()""")


class JXABuilder:
    dialect = Dialect.JXA

    def folder_names(self) -> str:
        return JXA_FOLDER_NAMES

    def folder_listing(self, folder_name: str) -> str:
        return JXA_FOLDER_LISTING.substitute(folder=quote_javascript(folder_name))

    def folder_content(self, folder_name: str) -> str:
        return JXA_FOLDER_CONTENT.substitute(iso=JXA_ISO, folder=quote_javascript(folder_name))

    def note_detail(self, note_id: str, tolerant: bool = False) -> str:
        return JXA_NOTE_DETAIL.substitute(
            iso=JXA_ISO,
            note_id=quote_javascript(note_id),
            on_error="return ''" if tolerant else "throw e"
        )

    def notes_by_index(self, indices) -> str:
        return JXA_NOTES_BY_INDEX.substitute(iso=JXA_ISO, indices=format_indices(indices))

    def create_note(self, title: str, body: str, folder_name: str) -> str:
        return JXA_CREATE_NOTE.substitute(
            title=quote_javascript(title),
            body=quote_javascript(body),
            folder=quote_javascript(folder_name)
        )

    def export_init(self) -> str:
        return JXA_EXPORT_INIT

    def folder_export(self, index: int) -> str:
        return JXA_FOLDER_EXPORT.substitute(iso=JXA_ISO, index=int(index))

    def folder_metadata(self, index: int) -> str:
        return JXA_FOLDER_METADATA.substitute(iso=JXA_ISO, index=int(index))

    def body_batch(self, index: int, start: int, end: int) -> str:
        return JXA_BODY_BATCH.substitute(index=int(index), start=int(start), end=int(end))


def get_builder(dialect) -> AppleScriptBuilder | JXABuilder:
    """Script builder for a dialect (a Dialect or its string value)."""
    if Dialect(dialect) == Dialect.JXA:
        return JXABuilder()
    return AppleScriptBuilder()
