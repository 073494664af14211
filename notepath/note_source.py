"""
Note source backed by a JSON export of a note vault.

Accepted file shapes: a list of note objects, or ``{"notes": [...]}``.
Each note needs ``id`` and ``path``; ``basename``, ``content``,
``links``, ``backlinks`` and ``tags`` are optional.  Links to ids that
are not in the file are dropped, and backlinks are always recomputed
from the links (merged with any the file declares).
"""

import json
import logging
import posixpath
from typing import Any, Dict, Iterable, List, Optional

from notepath.models import NoteData

logger = logging.getLogger(__name__)


def _in_folder(path: str, folder: str) -> bool:
    folder = folder.strip("/")
    if not folder:
        return True
    return path == folder or path.startswith(folder + "/")


class JsonNoteSource:
    """In-memory note store built from note dicts or a JSON file."""

    def __init__(self, notes: Iterable[Any]):
        raw = [n if isinstance(n, NoteData) else NoteData.model_validate(n) for n in notes]
        known = {n.id for n in raw}

        cleaned: Dict[str, NoteData] = {}
        for note in raw:
            if note.id in cleaned:
                logger.warning("⚠ Duplicate note id '%s'; keeping the first.", note.id)
                continue
            links = list(dict.fromkeys(l for l in note.links if l in known and l != note.id))
            cleaned[note.id] = note.model_copy(update={"links": links})

        backlinks: Dict[str, List[str]] = {
            nid: [b for b in note.backlinks if b in known and b != nid]
            for nid, note in cleaned.items()
        }
        for note in cleaned.values():
            for target in note.links:
                backlinks[target].append(note.id)

        self._notes: Dict[str, NoteData] = {
            nid: note.model_copy(
                update={"backlinks": list(dict.fromkeys(backlinks[nid]))}
            )
            for nid, note in cleaned.items()
        }
        logger.info("Note source ready: %d note(s).", len(self._notes))

    @classmethod
    def from_file(cls, path: str) -> "JsonNoteSource":
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            data = data.get("notes", [])
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a list of notes")
        logger.info("📄 Loaded %d note record(s) from %s", len(data), path)
        return cls(data)

    def get_all_notes(
        self,
        folder: Optional[str] = None,
        exclude_folders: Iterable[str] = (),
    ) -> List[NoteData]:
        exclude = [f for f in exclude_folders if f.strip("/")]
        notes = []
        for note in self._notes.values():
            path = posixpath.normpath(note.path)
            if folder and not _in_folder(path, folder):
                continue
            if any(_in_folder(path, ex) for ex in exclude):
                continue
            notes.append(note)
        return notes

    def get_note(self, note_id: str) -> Optional[NoteData]:
        return self._notes.get(note_id)

    def get_linked_notes(self, note_id: str) -> List[NoteData]:
        note = self._notes.get(note_id)
        if note is None:
            return []
        return [self._notes[l] for l in note.links]

    def get_backlinks(self, note_id: str) -> List[NoteData]:
        note = self._notes.get(note_id)
        if note is None:
            return []
        return [self._notes[b] for b in note.backlinks]

    def exists(self, note_id: str) -> bool:
        return note_id in self._notes
