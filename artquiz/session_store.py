"""
In-memory store of live quiz sessions, one per chat.
"""
import logging
import threading
import time
from typing import Dict, Iterable, List, Optional

from .models import QuizSession, Question


class SessionStore:
    """
    Owns all in-progress quiz sessions, keyed by chat identifier.

    Map operations are thread-safe. Serializing events for the same chat
    is the caller's responsibility.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._sessions: Dict[int, QuizSession] = {}
        self._lock = threading.Lock()

    def start(self, chat_id: int, questions: Iterable[Question]) -> QuizSession:
        """
        Create a fresh session for a chat, replacing any existing one.

        Args:
            chat_id: Chat identifier
            questions: Question sequence; the session keeps its own copy

        Returns:
            The new QuizSession at question 0 with score 0
        """
        session = QuizSession(chat_id=chat_id, questions=tuple(questions))

        with self._lock:
            previous = self._sessions.get(chat_id)
            self._sessions[chat_id] = session

        if previous is not None:
            self.logger.info(
                f"Replaced session for chat {chat_id} at question "
                f"{previous.current_index}/{previous.total_questions} with score {previous.score}",
                extra={
                    'event_type': 'session_replaced',
                    'chat_id': chat_id,
                    'discarded_score': previous.score,
                    'timestamp': time.time()
                }
            )

        self.logger.info(
            f"Created session for chat {chat_id}: questions={session.total_questions}",
            extra={
                'event_type': 'session_created',
                'chat_id': chat_id,
                'total_questions': session.total_questions,
                'timestamp': time.time()
            }
        )
        return session

    def get(self, chat_id: int) -> Optional[QuizSession]:
        with self._lock:
            return self._sessions.get(chat_id)

    def remove(self, chat_id: int) -> bool:
        """
        Remove the session for a chat.

        Returns:
            True if a session was removed, False if none existed
        """
        with self._lock:
            removed = self._sessions.pop(chat_id, None)

        if removed is not None:
            self.logger.debug(f"Removed session for chat {chat_id}")
        return removed is not None

    def has_session(self, chat_id: int) -> bool:
        with self._lock:
            return chat_id in self._sessions

    def active_chat_ids(self) -> List[int]:
        with self._lock:
            return list(self._sessions.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
