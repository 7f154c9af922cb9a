"""Bounded per-contact conversation history backed by a JSON file."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from wa_autoreply.core.types import Role
from wa_autoreply.log import get_logger
from wa_autoreply.storage.models import HistoryEntry, now_millis

logger = get_logger(__name__)


class ConversationStore:
    """In-memory conversation history with best-effort JSON persistence.

    Every mutation happens synchronously inside a single call, so coroutines
    interleaving on the event loop never observe a half-applied ``append``.
    Disk I/O only happens in :meth:`load`, :meth:`persist` and :meth:`clear`;
    failures there are logged and swallowed.
    """

    def __init__(self, path: str | Path, max_messages: int = 50):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self._path = Path(path)
        self._max_messages = max_messages
        self._histories: dict[str, list[HistoryEntry]] = {}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def contact_count(self) -> int:
        return len(self._histories)

    @property
    def message_count(self) -> int:
        return sum(len(entries) for entries in self._histories.values())

    def load(self) -> None:
        """Replace the in-memory map with the persisted file, if any."""
        if not self._path.exists():
            logger.info("history_file_missing", path=str(self._path))
            self._histories = {}
            return

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("history file must contain a JSON object")
            loaded: dict[str, list[HistoryEntry]] = {}
            for contact_id, entries in raw.items():
                if not isinstance(entries, list):
                    raise ValueError(f"history for {contact_id!r} is not a list")
                parsed = [HistoryEntry.from_dict(item) for item in entries]
                loaded[contact_id] = parsed[-self._max_messages:]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("history_load_failed", path=str(self._path), error=str(e))
            self._histories = {}
            return

        self._histories = loaded
        logger.info("history_loaded", contacts=len(loaded), path=str(self._path))

    def append(self, contact_id: str, role: Role | str, content: str) -> HistoryEntry:
        """Append a turn for *contact_id*, evicting the oldest entries past the cap."""
        entries = self._histories.setdefault(contact_id, [])
        timestamp = now_millis()
        if entries and entries[-1].timestamp > timestamp:
            # Wall clock stepped backwards; keep stored order chronological.
            timestamp = entries[-1].timestamp
        entry = HistoryEntry(role=Role(role), content=content, timestamp=timestamp)
        entries.append(entry)
        overflow = len(entries) - self._max_messages
        if overflow > 0:
            del entries[:overflow]
        return entry

    def history(self, contact_id: str) -> list[dict[str, str]]:
        """Ordered role/content turns for prompt construction."""
        return [entry.to_turn() for entry in self._histories.get(contact_id, [])]

    def entries(self, contact_id: str) -> list[HistoryEntry]:
        return list(self._histories.get(contact_id, []))

    def snapshot(self) -> dict[str, list[HistoryEntry]]:
        return {contact: list(entries) for contact, entries in self._histories.items()}

    def persist(self) -> bool:
        """Rewrite the backing file with the full map. Returns False on failure."""
        data = {
            contact: [entry.to_dict() for entry in entries]
            for contact, entries in self._histories.items()
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.error("history_persist_failed", path=str(self._path), error=str(e))
            return False

        logger.info("history_persisted", contacts=len(data), path=str(self._path))
        return True

    def clear(self) -> None:
        """Drop all history in memory and on disk."""
        self._histories.clear()
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("history_delete_failed", path=str(self._path), error=str(e))
            return
        logger.info("history_cleared", path=str(self._path))
