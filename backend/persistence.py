"""
Journal entry persistence.

One JSON file per entry, grouped by user, for saved reflections and
resumable conversations.
"""

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from backend.utils.helpers import generate_entry_id, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateJournalEntryParams:
    """
    Fields supplied when a journal entry is first written.

    Passage fields are None when the conversation was saved before a
    voice was chosen.
    """
    user_input: str
    clarification: Optional[str] = None
    tradition: Optional[str] = None
    thinker: Optional[str] = None
    passage_text: Optional[str] = None
    source: Optional[str] = None
    context: Optional[str] = None
    reflection_question: Optional[str] = None
    notes: Optional[str] = None
    conversation_data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class JournalEntry:
    """
    A saved reflection.

    Flat, denormalized copy of the selected passage plus the opaque
    conversation snapshot used to resume the conversation.
    """
    id: str
    user_id: str
    user_input: str
    created_at: str
    updated_at: str
    clarification: Optional[str] = None
    tradition: Optional[str] = None
    thinker: Optional[str] = None
    passage_text: Optional[str] = None
    source: Optional[str] = None
    context: Optional[str] = None
    reflection_question: Optional[str] = None
    notes: Optional[str] = None
    conversation_data: Optional[Dict[str, Any]] = None

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "JournalEntry":
        """
        Raises:
            ValueError: If a required field is missing
        """
        known = {f.name for f in fields(JournalEntry)}
        missing = [key for key in ('id', 'user_id', 'user_input', 'created_at') if key not in data]
        if missing:
            raise ValueError(f"journal entry missing required keys: {missing}")

        values = {key: value for key, value in data.items() if key in known}
        values.setdefault('updated_at', values['created_at'])
        return JournalEntry(**values)


# Columns a caller may change after creation
UPDATABLE_FIELDS = frozenset({
    'clarification', 'tradition', 'thinker', 'passage_text', 'source',
    'context', 'reflection_question', 'notes', 'conversation_data',
})


class JournalPersistence:
    """
    Manages journal entries as JSON files.

    Layout:
        outputs/journal/<user_id>/<entry_id>.json

    Design:
    - Every operation is scoped to a user id
    - A missing user id means the caller is not signed in (PermissionError)
    - Missing entries return None / False, never raise
    - Unreadable files raise ValueError naming the path
    """

    def __init__(self, base_dir: str = "outputs/journal"):
        """
        Initialize persistence layer.

        Args:
            base_dir: Base directory for all journals
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"JournalPersistence initialized: {self.base_dir}")

    def _user_dir(self, user_id: Optional[str]) -> Path:
        if not user_id:
            raise PermissionError("User not authenticated")
        if '/' in user_id or '\\' in user_id or user_id.startswith('.'):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return self.base_dir / user_id

    def _entry_path(self, user_id: Optional[str], entry_id: str) -> Path:
        if not entry_id or '/' in entry_id or '\\' in entry_id or entry_id.startswith('.'):
            raise ValueError(f"Invalid entry id: {entry_id!r}")
        return self._user_dir(user_id) / f"{entry_id}.json"

    def _read(self, path: Path) -> JournalEntry:
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            return JournalEntry.from_json(data)
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ValueError(f"Corrupted journal entry {path}: {e}") from e

    def _write(self, path: Path, entry: JournalEntry) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(entry.to_json(), f, indent=2, ensure_ascii=False)

    def save_entry(self, user_id: Optional[str], params: CreateJournalEntryParams) -> JournalEntry:
        """
        Create a new entry.

        Args:
            user_id: Owner (None if not signed in)
            params: Entry fields

        Returns:
            JournalEntry with a generated id

        Raises:
            PermissionError: If user_id is empty
        """
        now = utc_now_iso()
        entry = JournalEntry(
            id=generate_entry_id(),
            user_id=user_id or '',
            user_input=params.user_input,
            created_at=now,
            updated_at=now,
            clarification=params.clarification or None,
            tradition=params.tradition or None,
            thinker=params.thinker or None,
            passage_text=params.passage_text or None,
            source=params.source or None,
            context=params.context or None,
            reflection_question=params.reflection_question or None,
            notes=params.notes or None,
            conversation_data=params.conversation_data or None,
        )

        path = self._entry_path(user_id, entry.id)
        self._write(path, entry)

        logger.info(f"Saved journal entry {entry.id} for user {user_id}")
        return entry

    def update_entry(self, user_id: Optional[str], entry_id: str,
                     updates: Dict[str, Any]) -> Optional[JournalEntry]:
        """
        Change fields of an existing entry.

        Args:
            user_id: Owner
            entry_id: Entry to change
            updates: Field name -> new value (UPDATABLE_FIELDS only)

        Returns:
            Updated JournalEntry, or None if the entry does not exist

        Raises:
            PermissionError: If user_id is empty
            ValueError: If updates names a field that cannot change
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update journal fields: {sorted(unknown)}")

        path = self._entry_path(user_id, entry_id)
        if not path.exists():
            logger.warning(f"Journal entry not found for update: {entry_id}")
            return None

        entry = replace(self._read(path), updated_at=utc_now_iso(), **updates)
        self._write(path, entry)

        logger.info(f"Updated journal entry {entry_id}: {sorted(updates)}")
        return entry

    def get_entry(self, user_id: Optional[str], entry_id: str) -> Optional[JournalEntry]:
        """
        Load one entry.

        Returns:
            JournalEntry, or None if it does not exist
        """
        path = self._entry_path(user_id, entry_id)
        if not path.exists():
            logger.debug(f"Journal entry not found: {entry_id}")
            return None
        return self._read(path)

    def list_entries(self, user_id: Optional[str]) -> List[JournalEntry]:
        """
        All entries of a user, newest first.

        Returns:
            List of JournalEntry (empty if the user has none)
        """
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return []

        entries = [self._read(path) for path in user_dir.glob("*.json")]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    def delete_entry(self, user_id: Optional[str], entry_id: str) -> bool:
        """
        Remove an entry.

        Returns:
            bool: True if an entry was deleted, False if none existed
        """
        path = self._entry_path(user_id, entry_id)
        if not path.exists():
            logger.warning(f"Journal entry not found for delete: {entry_id}")
            return False

        path.unlink()
        logger.info(f"Deleted journal entry {entry_id} for user {user_id}")
        return True
