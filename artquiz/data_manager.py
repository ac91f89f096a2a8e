"""
Data manager for loading and validating the JSON question bank.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path

from .errors import NotFoundError, ParseError
from .models import Question


# Accepted spellings for each question field, matched case-insensitively
FIELD_ALIASES = {
    'text': ('text',),
    'options': ('options',),
    'correct_option_index': ('correctoptionindex', 'correct_option_index'),
    'explanation': ('explanation',),
    'image_url': ('imageurl', 'image_url'),
}


class DataManager:
    """Loads, validates and caches the ordered question bank."""

    def __init__(self, questions_file: str = "./questions.json"):
        """
        Initialize DataManager with the question file path.

        Args:
            questions_file: Path to the JSON question file
        """
        self.questions_file = Path(questions_file)
        self.logger = logging.getLogger(__name__)
        self._questions: Optional[Tuple[Question, ...]] = None

    def load(self) -> Tuple[Question, ...]:
        """
        Read and parse the question file.

        Returns:
            Tuple of Question objects in file order

        Raises:
            NotFoundError: If the question file does not exist
            ParseError: If the file cannot be read or its content is malformed
        """
        if not self.questions_file.exists():
            self.logger.error(f"Question file not found: {self.questions_file}")
            raise NotFoundError(f"Question file not found: {self.questions_file}")

        try:
            with open(self.questions_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {self.questions_file}: {e}")
            raise ParseError(f"Invalid JSON in {self.questions_file}: {e}") from e
        except OSError as e:
            self.logger.error(f"Failed to read question file {self.questions_file}: {e}")
            raise ParseError(f"Failed to read question file {self.questions_file}: {e}") from e

        problems = self.validate_question_structure(data)
        if problems:
            raise ParseError(f"Invalid question file {self.questions_file}: {problems[0]}")

        questions = self._parse_questions(self._question_records(data))
        self.logger.info(f"Loaded {len(questions)} questions from {self.questions_file}")
        return questions

    def get_questions(self, reload: bool = False) -> Tuple[Question, ...]:
        """
        Return the cached question bank, loading it on first use.

        Args:
            reload: Force a fresh read of the question file

        Returns:
            Tuple of Question objects

        Raises:
            NotFoundError, ParseError: As raised by load()
        """
        if self._questions is None or reload:
            self._questions = self.load()
        return self._questions

    def is_loaded(self) -> bool:
        return self._questions is not None

    def get_question_count(self) -> int:
        """
        Get the number of questions in the cached bank.

        Returns:
            Number of questions, or 0 if the bank has not been loaded
        """
        return len(self._questions) if self._questions is not None else 0

    @staticmethod
    def _question_records(data: Any) -> Any:
        if isinstance(data, dict):
            return data.get("questions")
        return data

    @staticmethod
    def _normalize_keys(record: Dict[str, Any]) -> Dict[str, Any]:
        lowered = {str(key).lower(): value for key, value in record.items()}
        normalized = {}
        for field_name, aliases in FIELD_ALIASES.items():
            for alias in aliases:
                if alias in lowered:
                    normalized[field_name] = lowered[alias]
                    break
        return normalized

    def validate_question_structure(self, data: Any) -> List[str]:
        """
        Validate that JSON data has the correct question bank structure.

        Expected structure, either bare or wrapped as {"questions": [...]}:
        [
            {
                "text": str,
                "options": [str, str, ...],
                "correctOptionIndex": int,
                "explanation": str,  # Optional
                "imageUrl": str      # Optional
            }
        ]

        Args:
            data: Parsed JSON data to validate

        Returns:
            List of problems found, empty if the structure is valid
        """
        records = self._question_records(data)
        if not isinstance(records, list):
            problem = "Question data must be an array or an object with a 'questions' array"
            self.logger.error(problem)
            return [problem]

        problems = []
        for i, record in enumerate(records):
            if not isinstance(record, dict):
                problems.append(f"Question {i} must be an object")
                continue

            question_data = self._normalize_keys(record)

            text = question_data.get('text')
            if not isinstance(text, str) or not text.strip():
                problems.append(f"Question {i} 'text' field must be a non-empty string")

            options = question_data.get('options')
            if not isinstance(options, list):
                problems.append(f"Question {i} 'options' field must be an array")
                options = None
            elif len(options) < 2:
                problems.append(f"Question {i} must have at least 2 options")
            elif not all(isinstance(option, str) for option in options):
                problems.append(f"Question {i} options must all be strings")
            elif len(set(options)) != len(options):
                self.logger.warning(f"Question {i} has duplicate options")

            index = question_data.get('correct_option_index')
            if not isinstance(index, int) or isinstance(index, bool):
                problems.append(f"Question {i} 'correctOptionIndex' field must be an integer")
            elif options is not None and not 0 <= index < len(options):
                problems.append(f"Question {i} 'correctOptionIndex' {index} is out of range")

            for optional_field in ('explanation', 'image_url'):
                value = question_data.get(optional_field)
                if value is not None and not isinstance(value, str):
                    problems.append(f"Question {i} '{optional_field}' field must be a string")

        for problem in problems:
            self.logger.error(problem)
        return problems

    def _parse_questions(self, records: List[Dict[str, Any]]) -> Tuple[Question, ...]:
        """
        Parse validated question records into Question objects.

        Args:
            records: Validated question dictionaries

        Returns:
            Tuple of Question objects
        """
        questions = []

        for record in records:
            question_data = self._normalize_keys(record)
            question = Question(
                text=question_data['text'],
                options=tuple(question_data['options']),
                correct_option_index=question_data['correct_option_index'],
                explanation=question_data.get('explanation') or None,
                image_url=question_data.get('image_url') or None
            )
            questions.append(question)

        return tuple(questions)
