"""
Persistent per-chat ledgers: cumulative scores and display names.

Both ledgers keep their whole map in memory and persist it as a full JSON
snapshot. Chat identifiers are stored as decimal string keys.
"""
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .errors import ParseError


class SnapshotLedger(ABC):
    """Thread-safe chat id keyed map with full-snapshot JSON persistence."""

    def __init__(self, snapshot_path: str, autosave: bool = False):
        """
        Args:
            snapshot_path: JSON file the ledger is saved to and loaded from
            autosave: Save a snapshot after every mutation
        """
        self.snapshot_path = Path(snapshot_path)
        self.autosave = autosave
        self.logger = logging.getLogger(__name__)
        self._data: Dict[int, Any] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def _decode_value(self, chat_id: int, value: Any) -> Any:
        """Validate a value read from a snapshot. Raise ParseError if invalid."""

    def save_snapshot(self) -> None:
        """
        Write the whole ledger to the snapshot file.

        The snapshot is written to a temporary file first and then moved
        into place, so readers never see a partial file.

        Raises:
            OSError: If the snapshot cannot be written
        """
        temp_path = self.snapshot_path.with_name(self.snapshot_path.name + ".tmp")

        with self._lock:
            snapshot = {str(chat_id): value for chat_id, value in self._data.items()}
            try:
                self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(snapshot, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, self.snapshot_path)
            except OSError as e:
                self.logger.error(f"Error writing snapshot {self.snapshot_path}: {e}")
                if temp_path.exists():
                    try:
                        temp_path.unlink()
                    except OSError:
                        self.logger.warning(f"Could not remove temporary file {temp_path}")
                raise

        self.logger.info(f"Saved {len(snapshot)} records to {self.snapshot_path}")

    def load_snapshot(self) -> None:
        """
        Replace the in-memory ledger with the snapshot file contents.

        A missing snapshot leaves the ledger empty. A malformed snapshot
        leaves the in-memory ledger untouched.

        Raises:
            ParseError: If the snapshot cannot be read or is malformed
        """
        if not self.snapshot_path.exists():
            self.logger.info(f"No snapshot at {self.snapshot_path}, starting empty")
            with self._lock:
                self._data = {}
            return

        try:
            with open(self.snapshot_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON in snapshot {self.snapshot_path}: {e}") from e
        except OSError as e:
            raise ParseError(f"Failed to read snapshot {self.snapshot_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ParseError(f"Snapshot {self.snapshot_path} must contain a JSON object")

        data = {}
        for key, value in raw.items():
            try:
                chat_id = int(key)
            except ValueError:
                raise ParseError(f"Invalid chat id {key!r} in snapshot {self.snapshot_path}") from None
            data[chat_id] = self._decode_value(chat_id, value)

        with self._lock:
            self._data = data
        self.logger.info(f"Loaded {len(data)} records from {self.snapshot_path}")

    def _after_mutation(self) -> None:
        if not self.autosave:
            return
        try:
            self.save_snapshot()
        except OSError:
            # In-memory state stays authoritative; the shutdown flush retries.
            self.logger.exception(f"Autosave of {self.snapshot_path} failed")

    def as_dict(self) -> Dict[int, Any]:
        with self._lock:
            return dict(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, chat_id: int) -> bool:
        with self._lock:
            return chat_id in self._data


class ScoreLedger(SnapshotLedger):
    """Cumulative score per chat across all completed quizzes."""

    def _decode_value(self, chat_id: int, value: Any) -> int:
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ParseError(f"Invalid score {value!r} for chat {chat_id} in {self.snapshot_path}")
        return value

    def record_completion(self, chat_id: int, session_score: int) -> int:
        """
        Add a finished quiz's score to the chat's cumulative total.

        Args:
            chat_id: Chat identifier
            session_score: Score of the completed quiz

        Returns:
            The new cumulative score

        Raises:
            ValueError: If session_score is negative
        """
        if session_score < 0:
            raise ValueError(f"Score cannot be negative: {session_score}")

        with self._lock:
            total = self._data.get(chat_id, 0) + session_score
            self._data[chat_id] = total

        self.logger.info(
            f"Recorded score {session_score} for chat {chat_id}, total {total}",
            extra={
                'event_type': 'score_recorded',
                'chat_id': chat_id,
                'score': session_score,
                'total': total,
                'timestamp': time.time()
            }
        )
        self._after_mutation()
        return total

    def get_score(self, chat_id: int) -> int:
        with self._lock:
            return self._data.get(chat_id, 0)

    def top_n(self, n: int) -> List[Tuple[int, int]]:
        """
        Get the highest cumulative scores.

        Args:
            n: Maximum number of entries

        Returns:
            List of (chat_id, score) pairs, highest score first. Equal scores
            keep the order in which the chats were first recorded.
        """
        if n <= 0:
            return []
        with self._lock:
            entries = list(self._data.items())
        entries.sort(key=lambda entry: entry[1], reverse=True)
        return entries[:n]


class NameLedger(SnapshotLedger):
    """Display name per chat, captured on the first /start."""

    FALLBACK_NAME = "Unknown"

    def _decode_value(self, chat_id: int, value: Any) -> str:
        if not isinstance(value, str):
            raise ParseError(f"Invalid name {value!r} for chat {chat_id} in {self.snapshot_path}")
        return value

    def register_if_absent(self, chat_id: int, name: str) -> bool:
        """
        Store a display name unless the chat already has one.

        Returns:
            True if the name was stored, False if a name already existed
        """
        with self._lock:
            if chat_id in self._data:
                return False
            self._data[chat_id] = name

        self.logger.info(f"Registered name {name!r} for chat {chat_id}")
        self._after_mutation()
        return True

    def lookup(self, chat_id: int) -> str:
        with self._lock:
            return self._data.get(chat_id, self.FALLBACK_NAME)
