"""
Core data models for the Art Quiz Bot.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple
from datetime import datetime


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice quiz question."""
    text: str
    options: Tuple[str, ...]
    correct_option_index: int
    explanation: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def correct_option(self) -> str:
        """Text of the correct option."""
        return self.options[self.correct_option_index]


@dataclass
class QuizSession:
    """Represents an in-progress quiz attempt for one chat."""
    chat_id: int
    questions: Tuple[Question, ...]
    current_index: int = 0
    score: int = 0
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def is_complete(self) -> bool:
        return self.current_index >= len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self.is_complete:
            return None
        return self.questions[self.current_index]


@dataclass(frozen=True)
class Response:
    """
    Transport-neutral description of one outbound message.

    A response is either plain text, an image by URL, or a text prompt
    with a list of selectable options.
    """
    text: Optional[str] = None
    image_url: Optional[str] = None
    options: Tuple[str, ...] = ()

    @classmethod
    def message(cls, text: str) -> "Response":
        return cls(text=text)

    @classmethod
    def image(cls, image_url: str) -> "Response":
        return cls(image_url=image_url)

    @classmethod
    def choices(cls, text: str, options) -> "Response":
        return cls(text=text, options=tuple(options))

    @property
    def is_image(self) -> bool:
        return self.image_url is not None

    @property
    def has_choices(self) -> bool:
        return len(self.options) > 0
