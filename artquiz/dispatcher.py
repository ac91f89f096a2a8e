"""
Routes inbound chat messages to quiz operations and delivers the replies.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import NotFoundError, ParseError, TransportError
from .gateway import MessagingGateway
from .ledger import NameLedger, ScoreLedger
from .models import Response
from .quiz_engine import QuizEngine
from .session_store import SessionStore

START_COMMAND = "/start"
SCORE_COMMAND = "/score"

DEFAULT_USER_NAME = "User"
LEADERBOARD_HEADER = "🏆 Top players:"
LEADERBOARD_LINE = "{rank}. {name}: {score} points"
QUIZ_UNAVAILABLE_MESSAGE = "Sorry, the quiz is unavailable right now. Please try again later."
INTERNAL_ERROR_MESSAGE = "Something went wrong while processing your message. Please try again."


class QuizDispatcher:
    """
    Entry point for inbound chat events.

    Events for the same chat are handled one at a time, in arrival order;
    events for different chats run concurrently.
    """

    def __init__(
        self,
        data_manager: DataManager,
        session_store: SessionStore,
        score_ledger: ScoreLedger,
        name_ledger: NameLedger,
        gateway: MessagingGateway,
        config_manager: Optional[ConfigManager] = None
    ):
        """
        Initialize the dispatcher.

        Args:
            data_manager: Source of the question bank
            session_store: Live sessions per chat
            score_ledger: Cumulative scores per chat
            name_ledger: Display names per chat
            gateway: Transport responses are delivered through
            config_manager: Settings, defaults are used if None
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.session_store = session_store
        self.score_ledger = score_ledger
        self.name_ledger = name_ledger
        self.gateway = gateway
        self.config_manager = config_manager or ConfigManager()
        self.quiz_engine = QuizEngine(session_store, score_ledger)

        self._chat_locks: Dict[int, asyncio.Lock] = {}
        self._chat_lock_users: Dict[int, int] = {}

    def _acquire_chat_lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        self._chat_lock_users[chat_id] = self._chat_lock_users.get(chat_id, 0) + 1
        return lock

    def _release_chat_lock(self, chat_id: int) -> None:
        # Forget the lock once no handler holds or waits for it
        users = self._chat_lock_users[chat_id] - 1
        if users:
            self._chat_lock_users[chat_id] = users
        else:
            del self._chat_lock_users[chat_id]
            del self._chat_locks[chat_id]

    async def handle_message(self, chat_id: int, sender_name: Optional[str], text: str) -> None:
        """
        Process one inbound text message and deliver the replies.

        Never raises: failures are logged and answered with an apology.

        Args:
            chat_id: Chat the message arrived in
            sender_name: Display name of the sender
            text: Message text
        """
        lock = self._acquire_chat_lock(chat_id)
        try:
            async with lock:
                try:
                    responses = self.route(chat_id, sender_name, text)
                except Exception:
                    self.logger.exception(
                        f"Error handling message in chat {chat_id}",
                        extra={
                            'event_type': 'dispatch_error',
                            'chat_id': chat_id,
                            'timestamp': time.time()
                        }
                    )
                    responses = [Response.message(INTERNAL_ERROR_MESSAGE)]

                await self.deliver(chat_id, responses)

                if not self.session_store.has_session(chat_id):
                    await self.gateway.clear_choices(chat_id)
        finally:
            self._release_chat_lock(chat_id)

    def route(self, chat_id: int, sender_name: Optional[str], text: str) -> List[Response]:
        """
        Map a message to its quiz operation.

        Returns:
            Responses for the chat, in delivery order
        """
        if text == START_COMMAND:
            return self.start_quiz(chat_id, sender_name)
        if text == SCORE_COMMAND:
            return self.show_scores()
        return self.quiz_engine.submit_answer(chat_id, text)

    def start_quiz(self, chat_id: int, sender_name: Optional[str]) -> List[Response]:
        """
        Begin a new quiz for a chat, discarding any quiz in progress.

        Returns:
            Welcome message followed by the first question, or a notice that
            the quiz is unavailable if the question bank cannot be loaded
        """
        name = sender_name if sender_name and sender_name.strip() else DEFAULT_USER_NAME
        self.name_ledger.register_if_absent(chat_id, name)

        try:
            questions = self.data_manager.get_questions(
                reload=self.config_manager.get_reload_questions_on_start()
            )
        except (NotFoundError, ParseError) as e:
            self.logger.error(
                f"Cannot start quiz for chat {chat_id}: {e}",
                extra={
                    'event_type': 'quiz_start_failed',
                    'chat_id': chat_id,
                    'error_type': type(e).__name__,
                    'timestamp': time.time()
                }
            )
            return [Response.message(QUIZ_UNAVAILABLE_MESSAGE)]

        session = self.session_store.start(chat_id, questions)
        responses = [Response.message(self.config_manager.get_welcome_message())]
        responses.extend(self.quiz_engine.advance(chat_id, session))
        return responses

    def show_scores(self) -> List[Response]:
        """Build the leaderboard message."""
        return [Response.message(self.format_leaderboard())]

    def format_leaderboard(self) -> str:
        """
        Format the top cumulative scores as a ranked list.

        Returns:
            Header line followed by one line per ranked chat
        """
        lines = [LEADERBOARD_HEADER]
        top_scores = self.score_ledger.top_n(self.config_manager.get_leaderboard_size())
        for rank, (chat_id, score) in enumerate(top_scores, start=1):
            lines.append(LEADERBOARD_LINE.format(
                rank=rank,
                name=self.name_ledger.lookup(chat_id),
                score=score
            ))
        return "\n".join(lines)

    async def deliver(self, chat_id: int, responses: List[Response]) -> None:
        """
        Hand responses to the gateway in order.

        A failed delivery is logged and skipped; later responses are still sent.
        """
        for response in responses:
            try:
                await self.gateway.send(chat_id, response)
            except TransportError as e:
                self.logger.warning(
                    f"Dropped response to chat {chat_id}: {e}",
                    extra={
                        'event_type': 'delivery_failed',
                        'chat_id': chat_id,
                        'timestamp': time.time()
                    }
                )

    def save_ledgers(self) -> bool:
        """
        Write both ledger snapshots.

        Returns:
            True if both snapshots were saved
        """
        success = True
        for ledger in (self.score_ledger, self.name_ledger):
            try:
                ledger.save_snapshot()
            except OSError:
                self.logger.exception(f"Failed to save ledger {ledger.snapshot_path}")
                success = False
        return success
