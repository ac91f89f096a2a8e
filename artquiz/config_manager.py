"""
Configuration manager for Art Quiz Bot settings and file locations.
"""
import logging
from typing import Dict, Any, List


class ConfigManager:
    """Manages bot configuration settings, storage paths and quiz parameters."""

    # Default configuration values
    DEFAULT_QUESTIONS_FILE = "./questions.json"
    DEFAULT_RELOAD_QUESTIONS_ON_START = False
    DEFAULT_LEADERBOARD_SIZE = 10
    DEFAULT_WELCOME_MESSAGE = "🎉 Welcome to the art quiz!"
    DEFAULT_SCORES_FILE = "./scores.json"
    DEFAULT_NAMES_FILE = "./usernames.json"
    DEFAULT_AUTOSAVE = False

    # Validation limits
    MIN_LEADERBOARD_SIZE = 1
    MAX_LEADERBOARD_SIZE = 50

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._questions_file = self.DEFAULT_QUESTIONS_FILE
        self._reload_questions_on_start = self.DEFAULT_RELOAD_QUESTIONS_ON_START
        self._leaderboard_size = self.DEFAULT_LEADERBOARD_SIZE
        self._welcome_message = self.DEFAULT_WELCOME_MESSAGE
        self._scores_file = self.DEFAULT_SCORES_FILE
        self._names_file = self.DEFAULT_NAMES_FILE
        self._autosave = self.DEFAULT_AUTOSAVE

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply settings from a parsed config.json dictionary.

        Invalid values are logged and the current value is kept.

        Args:
            config: Parsed configuration with optional 'quiz' and 'storage' sections

        Returns:
            List of user-friendly messages for settings that were rejected
        """
        quiz_config = config.get('quiz', {}) or {}
        storage_config = config.get('storage', {}) or {}

        results = []
        if 'questions_file' in quiz_config:
            results.append(self.set_questions_file(quiz_config['questions_file']))
        if 'reload_questions_on_start' in quiz_config:
            results.append(self.set_reload_questions_on_start(quiz_config['reload_questions_on_start']))
        if 'leaderboard_size' in quiz_config:
            results.append(self.set_leaderboard_size(quiz_config['leaderboard_size']))
        if 'welcome_message' in quiz_config:
            results.append(self.set_welcome_message(quiz_config['welcome_message']))
        if 'scores_file' in storage_config:
            results.append(self.set_scores_file(storage_config['scores_file']))
        if 'names_file' in storage_config:
            results.append(self.set_names_file(storage_config['names_file']))
        if 'autosave' in storage_config:
            results.append(self.set_autosave(storage_config['autosave']))

        rejected = [result['user_message'] for result in results if not result['success']]
        if rejected:
            self.logger.warning(f"Configuration applied with {len(rejected)} rejected settings")
        else:
            self.logger.info("Configuration applied successfully")
        return rejected

    def _validate_path(self, value: Any, setting_name: str) -> Dict[str, Any]:
        if not isinstance(value, str):
            error_msg = f"{setting_name} must be a string, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid {setting_name}: expected a path string"
            }

        if not value.strip():
            error_msg = f"{setting_name} cannot be empty"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {setting_name} cannot be empty"
            }

        return {'success': True}

    def _validate_flag(self, value: Any, setting_name: str) -> Dict[str, Any]:
        if not isinstance(value, bool):
            error_msg = f"{setting_name} must be a boolean, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid {setting_name}: expected true or false"
            }
        return {'success': True}

    def set_questions_file(self, path: str) -> Dict[str, Any]:
        """
        Set the path of the JSON question file.

        Args:
            path: Path to the question file

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._validate_path(path, "questions_file")
        if not result['success']:
            return result

        self._questions_file = path
        self.logger.info(f"Questions file set to {path}")
        return {
            'success': True,
            'message': f"Questions file set to {path}",
            'user_message': f"✅ Questions file set to {path}"
        }

    def get_questions_file(self) -> str:
        return self._questions_file

    def set_reload_questions_on_start(self, reload: bool) -> Dict[str, Any]:
        """
        Choose whether the question file is re-read on every /start.

        Args:
            reload: True to reload per quiz, False to use the cached bank

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._validate_flag(reload, "reload_questions_on_start")
        if not result['success']:
            return result

        self._reload_questions_on_start = reload
        self.logger.info(f"Reload questions on start set to {reload}")
        return {
            'success': True,
            'message': f"Reload questions on start set to {reload}",
            'user_message': f"✅ Questions will {'be reloaded' if reload else 'stay cached'} between quizzes"
        }

    def get_reload_questions_on_start(self) -> bool:
        return self._reload_questions_on_start

    def set_leaderboard_size(self, size: int) -> Dict[str, Any]:
        """
        Set how many entries /score shows.

        Args:
            size: Number of leaderboard entries

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        # bool is an int subclass
        if not isinstance(size, int) or isinstance(size, bool):
            error_msg = f"Leaderboard size must be an integer, got {type(size).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(size).__name__}"
            }

        if size < self.MIN_LEADERBOARD_SIZE or size > self.MAX_LEADERBOARD_SIZE:
            error_msg = (f"Leaderboard size must be between {self.MIN_LEADERBOARD_SIZE} "
                         f"and {self.MAX_LEADERBOARD_SIZE}")
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': (f"❌ Leaderboard size must be between {self.MIN_LEADERBOARD_SIZE} "
                                 f"and {self.MAX_LEADERBOARD_SIZE}")
            }

        self._leaderboard_size = size
        self.logger.info(f"Leaderboard size set to {size}")
        return {
            'success': True,
            'message': f"Leaderboard size set to {size}",
            'user_message': f"✅ Leaderboard will show the top {size} players"
        }

    def get_leaderboard_size(self) -> int:
        return self._leaderboard_size

    def set_welcome_message(self, message: str) -> Dict[str, Any]:
        """
        Set the greeting sent when a quiz starts.

        Args:
            message: Welcome text

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(message, str) or not message.strip():
            error_msg = "Welcome message must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Welcome message cannot be empty"
            }

        self._welcome_message = message
        self.logger.info("Welcome message updated")
        return {
            'success': True,
            'message': "Welcome message updated",
            'user_message': "✅ Welcome message updated"
        }

    def get_welcome_message(self) -> str:
        return self._welcome_message

    def set_scores_file(self, path: str) -> Dict[str, Any]:
        """Set the snapshot file for cumulative scores."""
        result = self._validate_path(path, "scores_file")
        if not result['success']:
            return result

        self._scores_file = path
        self.logger.info(f"Scores file set to {path}")
        return {
            'success': True,
            'message': f"Scores file set to {path}",
            'user_message': f"✅ Scores file set to {path}"
        }

    def get_scores_file(self) -> str:
        return self._scores_file

    def set_names_file(self, path: str) -> Dict[str, Any]:
        """Set the snapshot file for display names."""
        result = self._validate_path(path, "names_file")
        if not result['success']:
            return result

        self._names_file = path
        self.logger.info(f"Names file set to {path}")
        return {
            'success': True,
            'message': f"Names file set to {path}",
            'user_message': f"✅ Names file set to {path}"
        }

    def get_names_file(self) -> str:
        return self._names_file

    def set_autosave(self, autosave: bool) -> Dict[str, Any]:
        """
        Choose whether ledgers are written after every change.

        Args:
            autosave: True to save on every mutation, False to save on shutdown only

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._validate_flag(autosave, "autosave")
        if not result['success']:
            return result

        self._autosave = autosave
        self.logger.info(f"Ledger autosave set to {autosave}")
        return {
            'success': True,
            'message': f"Ledger autosave set to {autosave}",
            'user_message': f"✅ Autosave {'enabled' if autosave else 'disabled'}"
        }

    def get_autosave(self) -> bool:
        return self._autosave

    def get_settings_summary(self) -> str:
        """
        Get a one-line summary of current settings.

        Returns:
            Formatted string describing current settings
        """
        reload_text = "reload per quiz" if self._reload_questions_on_start else "cached"
        autosave_text = "autosave" if self._autosave else "save on shutdown"
        return (f"Questions: {self._questions_file} ({reload_text}) | "
                f"Leaderboard: top {self._leaderboard_size} | "
                f"Storage: {self._scores_file}, {self._names_file} ({autosave_text})")
