"""
Exception hierarchy for the Art Quiz Bot.
"""


class QuizBotError(Exception):
    """Base exception for quiz bot errors."""
    pass


class NotFoundError(QuizBotError):
    """Raised when the configured question source does not exist."""
    pass


class ParseError(QuizBotError):
    """Raised when a question file or ledger snapshot is malformed."""
    pass


class TransportError(QuizBotError):
    """Raised by a messaging gateway when a message cannot be delivered."""
    pass
