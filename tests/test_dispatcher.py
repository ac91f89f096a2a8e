"""
Unit tests for QuizDispatcher routing, delivery and per-chat serialization.
"""
import asyncio
import os
import shutil
import tempfile
import unittest
from unittest.mock import Mock, patch

from artquiz.config_manager import ConfigManager
from artquiz.data_manager import DataManager
from artquiz.dispatcher import (
    QuizDispatcher,
    LEADERBOARD_HEADER,
    QUIZ_UNAVAILABLE_MESSAGE,
    INTERNAL_ERROR_MESSAGE,
)
from artquiz.errors import NotFoundError, ParseError
from artquiz.ledger import NameLedger, ScoreLedger
from artquiz.quiz_engine import PLEASE_START_MESSAGE, CORRECT_MESSAGE, COMMANDS_MESSAGE
from artquiz.session_store import SessionStore
from tests.test_fixtures import TestFixtures, RecordingGateway


class DispatcherTestCase(unittest.IsolatedAsyncioTestCase):
    """Builds a dispatcher wired to real stores and a recording gateway."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_manager = Mock(spec=DataManager)
        self.data_manager.get_questions.return_value = TestFixtures.create_plain_questions(3)
        self.session_store = SessionStore()
        self.score_ledger = ScoreLedger(os.path.join(self.temp_dir, "scores.json"))
        self.name_ledger = NameLedger(os.path.join(self.temp_dir, "usernames.json"))
        self.gateway = RecordingGateway()
        self.config_manager = ConfigManager()
        self.dispatcher = QuizDispatcher(
            data_manager=self.data_manager,
            session_store=self.session_store,
            score_ledger=self.score_ledger,
            name_ledger=self.name_ledger,
            gateway=self.gateway,
            config_manager=self.config_manager
        )

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestDispatcherCommands(DispatcherTestCase):
    """Test cases for command routing."""

    async def test_start_sends_welcome_and_first_question(self):
        """Test /start greets the user and presents question 1."""
        await self.dispatcher.handle_message(1, "Alice", "/start")

        self.assertEqual(self.gateway.sent, [
            (1, 'text', ConfigManager.DEFAULT_WELCOME_MESSAGE),
            (1, 'choices', ("Question 0?", ("right 0", "wrong 0"))),
        ])
        self.assertTrue(self.session_store.has_session(1))
        self.assertEqual(self.name_ledger.lookup(1), "Alice")

    async def test_start_uses_configured_welcome_and_reload(self):
        """Test /start honours welcome message and reload settings."""
        self.config_manager.set_welcome_message("Hello, art lover!")
        self.config_manager.set_reload_questions_on_start(True)

        await self.dispatcher.handle_message(1, "Alice", "/start")

        self.assertEqual(self.gateway.texts_for(1)[0], "Hello, art lover!")
        self.data_manager.get_questions.assert_called_once_with(reload=True)

    async def test_start_keeps_first_name(self):
        """Test the display name from the first /start is kept."""
        await self.dispatcher.handle_message(1, "Alice", "/start")
        await self.dispatcher.handle_message(1, "Alicia", "/start")

        self.assertEqual(self.name_ledger.lookup(1), "Alice")

    async def test_start_blank_name_uses_default(self):
        """Test a missing sender name is stored as the default user name."""
        await self.dispatcher.handle_message(1, None, "/start")
        await self.dispatcher.handle_message(2, "   ", "/start")

        self.assertEqual(self.name_ledger.lookup(1), "User")
        self.assertEqual(self.name_ledger.lookup(2), "User")

    async def test_start_discards_active_session_without_scoring(self):
        """Test /start mid-quiz resets progress and does not fold the partial score."""
        await self.dispatcher.handle_message(1, "Alice", "/start")
        await self.dispatcher.handle_message(1, "Alice", "right 0")

        await self.dispatcher.handle_message(1, "Alice", "/start")

        session = self.session_store.get(1)
        self.assertEqual(session.current_index, 0)
        self.assertEqual(session.score, 0)
        self.assertNotIn(1, self.score_ledger)

    async def test_start_with_missing_question_file(self):
        """Test NotFoundError aborts quiz initiation with a notice."""
        self.data_manager.get_questions.side_effect = NotFoundError("questions.json missing")

        with self.assertLogs('artquiz.dispatcher', level='ERROR'):
            await self.dispatcher.handle_message(1, "Alice", "/start")

        self.assertEqual(self.gateway.texts_for(1), [QUIZ_UNAVAILABLE_MESSAGE])
        self.assertFalse(self.session_store.has_session(1))

    async def test_start_with_malformed_question_file(self):
        """Test ParseError aborts quiz initiation with a notice."""
        self.data_manager.get_questions.side_effect = ParseError("bad json")

        with self.assertLogs('artquiz.dispatcher', level='ERROR'):
            await self.dispatcher.handle_message(1, "Alice", "/start")

        self.assertEqual(self.gateway.texts_for(1), [QUIZ_UNAVAILABLE_MESSAGE])

    async def test_score_with_no_completions_is_header_only(self):
        """Test /score before anyone finishes shows only the header."""
        await self.dispatcher.handle_message(1, "Alice", "/score")

        self.assertEqual(self.gateway.texts_for(1), [LEADERBOARD_HEADER])

    async def test_score_lists_ranked_names(self):
        """Test /score ranks chats by cumulative score with their names."""
        self.name_ledger.register_if_absent(1, "Alice")
        self.name_ledger.register_if_absent(2, "Bob")
        self.score_ledger.record_completion(1, 3)
        self.score_ledger.record_completion(2, 5)
        self.score_ledger.record_completion(3, 1)

        await self.dispatcher.handle_message(9, "Carol", "/score")

        self.assertEqual(self.gateway.texts_for(9), [
            "🏆 Top players:\n"
            "1. Bob: 5 points\n"
            "2. Alice: 3 points\n"
            "3. Unknown: 1 points"
        ])

    async def test_score_limited_to_leaderboard_size(self):
        """Test the leaderboard shows at most the configured number of entries."""
        for chat_id in range(15):
            self.score_ledger.record_completion(chat_id, chat_id)

        leaderboard = self.dispatcher.format_leaderboard()

        lines = leaderboard.split("\n")
        self.assertEqual(len(lines), 1 + 10)
        self.assertEqual(lines[1], "1. Unknown: 14 points")

        self.config_manager.set_leaderboard_size(3)
        self.assertEqual(len(self.dispatcher.format_leaderboard().split("\n")), 4)

    async def test_score_does_not_touch_session(self):
        """Test /score during a quiz leaves the session where it was."""
        await self.dispatcher.handle_message(1, "Alice", "/start")
        await self.dispatcher.handle_message(1, "Alice", "right 0")

        await self.dispatcher.handle_message(1, "Alice", "/score")

        self.assertEqual(self.session_store.get(1).current_index, 1)

    async def test_commands_are_exact_text(self):
        """Test commands are not trimmed or case-folded."""
        await self.dispatcher.handle_message(1, "Alice", "/START")
        await self.dispatcher.handle_message(1, "Alice", " /start")

        self.assertEqual(self.gateway.texts_for(1), [PLEASE_START_MESSAGE, PLEASE_START_MESSAGE])

    async def test_answer_without_session_is_guidance(self):
        """Test an answer with no active quiz only asks for /start."""
        await self.dispatcher.handle_message(1, "Alice", "Leonardo da Vinci")

        self.assertEqual(self.gateway.texts_for(1), [PLEASE_START_MESSAGE])
        self.assertEqual(len(self.session_store), 0)
        self.assertEqual(len(self.score_ledger), 0)
        self.assertEqual(len(self.name_ledger), 0)


class TestDispatcherScenarios(DispatcherTestCase):
    """End-to-end quiz scenarios through the dispatcher."""

    async def test_empty_bank_finishes_immediately(self):
        """Test /start with an empty bank reports score 0 and records it."""
        self.data_manager.get_questions.return_value = ()

        await self.dispatcher.handle_message(1, "Alice", "/start")

        self.assertEqual(self.gateway.texts_for(1), [
            ConfigManager.DEFAULT_WELCOME_MESSAGE,
            "Quiz finished! Your score: 0",
            COMMANDS_MESSAGE,
        ])
        self.assertIn(1, self.score_ledger)
        self.assertEqual(self.score_ledger.get_score(1), 0)
        self.assertFalse(self.session_store.has_session(1))

    async def test_correct_wrong_correct(self):
        """Test a 3-question quiz answered correct, wrong, correct scores 2."""
        self.score_ledger.record_completion(1, 4)

        await self.dispatcher.handle_message(1, "Alice", "/start")
        await self.dispatcher.handle_message(1, "Alice", "right 0")
        await self.dispatcher.handle_message(1, "Alice", "wrong 1")
        await self.dispatcher.handle_message(1, "Alice", "right 2")

        texts = self.gateway.texts_for(1)
        self.assertIn(CORRECT_MESSAGE, texts)
        self.assertIn("❌ Wrong! The correct answer is: right 1", texts)
        self.assertEqual(texts[-2:], ["Quiz finished! Your score: 2", COMMANDS_MESSAGE])
        self.assertEqual(self.score_ledger.get_score(1), 6)
        self.assertFalse(self.session_store.has_session(1))

        self.gateway.sent.clear()
        await self.dispatcher.handle_message(1, "Alice", "/score")
        self.assertEqual(self.gateway.texts_for(1), ["🏆 Top players:\n1. Alice: 6 points"])

    async def test_questions_and_images_delivered_in_order(self):
        """Test image responses follow their question."""
        self.data_manager.get_questions.return_value = TestFixtures.create_sample_questions()

        await self.dispatcher.handle_message(1, "Alice", "/start")

        kinds = [kind for _, kind, _ in self.gateway.sent]
        self.assertEqual(kinds, ['text', 'choices', 'image'])

    async def test_finished_quiz_clears_choices(self):
        """Test answer options are withdrawn only once the quiz is over."""
        await self.dispatcher.handle_message(1, "Alice", "/start")
        await self.dispatcher.handle_message(1, "Alice", "right 0")
        self.assertEqual(self.gateway.cleared, [])

        await self.dispatcher.handle_message(1, "Alice", "right 1")
        await self.dispatcher.handle_message(1, "Alice", "right 2")
        self.assertEqual(self.gateway.cleared, [1])


class TestDispatcherErrorHandling(DispatcherTestCase):
    """Test cases for failure isolation."""

    async def test_transport_error_drops_only_that_response(self):
        """Test a failed send is logged and later responses still go out."""
        self.gateway.failing_texts.add(ConfigManager.DEFAULT_WELCOME_MESSAGE)

        with self.assertLogs('artquiz.dispatcher', level='WARNING'):
            await self.dispatcher.handle_message(1, "Alice", "/start")

        self.assertEqual(self.gateway.sent, [
            (1, 'choices', ("Question 0?", ("right 0", "wrong 0"))),
        ])
        self.assertTrue(self.session_store.has_session(1))

    async def test_unexpected_error_is_contained(self):
        """Test an engine failure is logged and answered with an apology."""
        with patch.object(self.dispatcher.quiz_engine, 'submit_answer', side_effect=RuntimeError("boom")):
            with self.assertLogs('artquiz.dispatcher', level='ERROR'):
                await self.dispatcher.handle_message(1, "Alice", "anything")

        self.assertEqual(self.gateway.texts_for(1), [INTERNAL_ERROR_MESSAGE])

        # The chat keeps working afterwards
        await self.dispatcher.handle_message(1, "Alice", "/start")
        self.assertTrue(self.session_store.has_session(1))

    async def test_save_ledgers(self):
        """Test save_ledgers writes both snapshots."""
        self.score_ledger.record_completion(1, 2)
        self.name_ledger.register_if_absent(1, "Alice")

        self.assertTrue(self.dispatcher.save_ledgers())

        self.assertTrue(os.path.exists(self.score_ledger.snapshot_path))
        self.assertTrue(os.path.exists(self.name_ledger.snapshot_path))

    async def test_save_ledgers_continues_after_failure(self):
        """Test one failed snapshot does not stop the other being saved."""
        self.name_ledger.register_if_absent(1, "Alice")

        with patch.object(self.score_ledger, 'save_snapshot', side_effect=OSError("disk full")):
            with self.assertLogs('artquiz.dispatcher', level='ERROR'):
                result = self.dispatcher.save_ledgers()

        self.assertFalse(result)
        self.assertTrue(os.path.exists(self.name_ledger.snapshot_path))


class SlowGateway(RecordingGateway):
    """Recording gateway that yields to the event loop on every send."""

    async def send_text(self, chat_id, text):
        await asyncio.sleep(0.01)
        await super().send_text(chat_id, text)

    async def send_choices(self, chat_id, text, options):
        await asyncio.sleep(0.01)
        await super().send_choices(chat_id, text, options)


class TestDispatcherConcurrency(DispatcherTestCase):
    """Test cases for per-chat serialization."""

    def setUp(self):
        super().setUp()
        self.gateway = SlowGateway()
        self.dispatcher.gateway = self.gateway

    async def test_same_chat_events_are_serialized(self):
        """Test concurrent answers for one chat are applied one at a time, in order."""
        await self.dispatcher.handle_message(1, "Alice", "/start")

        await asyncio.gather(
            self.dispatcher.handle_message(1, "Alice", "right 0"),
            self.dispatcher.handle_message(1, "Alice", "right 1"),
            self.dispatcher.handle_message(1, "Alice", "right 2"),
        )

        self.assertEqual(self.score_ledger.get_score(1), 3)
        texts = self.gateway.texts_for(1)
        self.assertEqual(texts.count(CORRECT_MESSAGE), 3)
        self.assertEqual(texts[-2:], ["Quiz finished! Your score: 3", COMMANDS_MESSAGE])

    async def test_different_chats_interleave(self):
        """Test independent chats make progress concurrently."""
        await asyncio.gather(*(
            self.dispatcher.handle_message(chat_id, f"Player {chat_id}", "/start")
            for chat_id in range(5)
        ))

        chat_order = [chat_id for chat_id, _, _ in self.gateway.sent]
        # Serial handling would send both messages of chat 0 before any of chat 1
        self.assertNotEqual(chat_order[:2], [0, 0])
        self.assertEqual(len(self.session_store), 5)

    async def test_many_chats_complete_independently(self):
        """Test a full quiz in many chats at once records each score once."""
        async def play(chat_id):
            await self.dispatcher.handle_message(chat_id, f"Player {chat_id}", "/start")
            for i in range(3):
                answer = f"right {i}" if i < chat_id % 4 else f"wrong {i}"
                await self.dispatcher.handle_message(chat_id, f"Player {chat_id}", answer)

        await asyncio.gather(*(play(chat_id) for chat_id in range(8)))

        for chat_id in range(8):
            self.assertEqual(self.score_ledger.get_score(chat_id), min(chat_id % 4, 3))
        self.assertEqual(len(self.session_store), 0)

    async def test_chat_locks_released_after_handling(self):
        """Test per-chat locks are dropped once no message is in flight."""
        await self.dispatcher.handle_message(1, "Alice", "/start")
        await asyncio.gather(
            *(self.dispatcher.handle_message(1, "Alice", f"right {i}") for i in range(3)),
            self.dispatcher.handle_message(2, "Bob", "/score"),
        )

        self.assertEqual(self.dispatcher._chat_locks, {})
        self.assertEqual(self.dispatcher._chat_lock_users, {})

    async def test_waiting_message_shares_the_held_lock(self):
        """Test a lock stays registered while a message waits on it."""
        first = asyncio.create_task(self.dispatcher.handle_message(1, "Alice", "/start"))
        await asyncio.sleep(0)
        second = asyncio.create_task(self.dispatcher.handle_message(1, "Alice", "right 0"))
        await asyncio.sleep(0)

        self.assertEqual(self.dispatcher._chat_lock_users, {1: 2})

        await asyncio.gather(first, second)
        self.assertEqual(self.dispatcher._chat_locks, {})
        self.assertEqual(self.score_ledger.get_score(1), 0)
        self.assertEqual(self.session_store.get(1).score, 1)


if __name__ == '__main__':
    unittest.main()
