"""
Quiz engine core logic for the Art Quiz Bot.
Handles answer checking, scoring, question progression and quiz completion.
"""
import logging
import time
from typing import List

from .models import Question, QuizSession, Response
from .session_store import SessionStore
from .ledger import ScoreLedger

logger = logging.getLogger(__name__)

PLEASE_START_MESSAGE = "Please start the quiz with /start."
CORRECT_MESSAGE = "✅ Correct!"
INCORRECT_MESSAGE = "❌ Wrong! The correct answer is: {answer}"
FINISHED_MESSAGE = "Quiz finished! Your score: {score}"
COMMANDS_MESSAGE = "To start again, send /start.\nTo see the leaderboard, send /score."


class QuizEngine:
    """
    State transitions for quiz sessions.

    A session is in progress while its index points at a question and
    completes once the index reaches the end of its question list. Completed
    sessions are folded into the score ledger and removed from the store.
    """

    def __init__(self, session_store: SessionStore, score_ledger: ScoreLedger):
        self.session_store = session_store
        self.score_ledger = score_ledger

    @staticmethod
    def check_answer(question: Question, answer_text: str) -> bool:
        """Exact, case-sensitive comparison with the correct option."""
        return answer_text == question.correct_option

    def advance(self, chat_id: int, session: QuizSession) -> List[Response]:
        """
        Present the session's current question, or finish the quiz.

        Args:
            chat_id: Chat identifier
            session: The chat's live session

        Returns:
            Responses to deliver to the chat, in order
        """
        if session.is_complete:
            return self._complete(chat_id, session)

        question = session.current_question
        responses = [Response.choices(question.text, question.options)]
        if question.image_url:
            responses.append(Response.image(question.image_url))

        logger.debug(
            f"Presenting question {session.current_index + 1}/{session.total_questions} to chat {chat_id}",
            extra={
                'event_type': 'question_presented',
                'chat_id': chat_id,
                'question_index': session.current_index,
                'timestamp': time.time()
            }
        )
        return responses

    def submit_answer(self, chat_id: int, answer_text: str) -> List[Response]:
        """
        Score an answer to the chat's current question and move on.

        Args:
            chat_id: Chat identifier
            answer_text: The text the user sent

        Returns:
            Responses to deliver to the chat, in order. Without an active
            session this is a single prompt to use /start.
        """
        session = self.session_store.get(chat_id)
        if session is None:
            logger.debug(f"Answer from chat {chat_id} without an active session")
            return [Response.message(PLEASE_START_MESSAGE)]

        question = session.current_question
        responses = []

        correct = self.check_answer(question, answer_text)
        if correct:
            session.score += 1
            responses.append(Response.message(CORRECT_MESSAGE))
        else:
            responses.append(Response.message(INCORRECT_MESSAGE.format(answer=question.correct_option)))

        if question.explanation:
            responses.append(Response.message(question.explanation))

        logger.info(
            f"Chat {chat_id} answered question {session.current_index + 1}/{session.total_questions}: "
            f"{'correct' if correct else 'incorrect'}, score {session.score}",
            extra={
                'event_type': 'answer_submitted',
                'chat_id': chat_id,
                'question_index': session.current_index,
                'correct': correct,
                'score': session.score,
                'timestamp': time.time()
            }
        )

        session.current_index += 1
        responses.extend(self.advance(chat_id, session))
        return responses

    def _complete(self, chat_id: int, session: QuizSession) -> List[Response]:
        total = self.score_ledger.record_completion(chat_id, session.score)
        self.session_store.remove(chat_id)

        logger.info(
            f"Quiz completed for chat {chat_id}: score {session.score}/{session.total_questions}, "
            f"cumulative {total}",
            extra={
                'event_type': 'quiz_completed',
                'chat_id': chat_id,
                'score': session.score,
                'total_questions': session.total_questions,
                'cumulative_score': total,
                'timestamp': time.time()
            }
        )
        return [
            Response.message(FINISHED_MESSAGE.format(score=session.score)),
            Response.message(COMMANDS_MESSAGE),
        ]
