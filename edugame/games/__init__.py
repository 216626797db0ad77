"""Built-in game variants."""

from edugame.games.quiz import QUIZ_PLUGIN, QuizGame

__all__ = ["QUIZ_PLUGIN", "QuizGame"]
