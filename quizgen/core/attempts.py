"""
Quiz attempt submission and history.

Scores are computed by the quiz player and stored as submitted; this layer
does not re-grade answers.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from quizgen.storage.models import QuizAttempt
from quizgen.storage.repository import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptSummary:
    """An attempt joined with the title and description of its quiz.

    ``quiz_deleted`` is set when the quiz set no longer exists.
    """
    attempt: QuizAttempt
    quiz_title: Optional[str]
    quiz_description: Optional[str]
    quiz_deleted: bool


class QuizSessionAuthority:
    """Stores finished quiz attempts and serves attempt history."""

    def __init__(self, db: Database):
        self.db = db

    def submit_attempt(
        self,
        user_id: str,
        quiz_set_id: str,
        answers: Mapping[Any, Any],
        score: int,
        total_questions: int
    ) -> QuizAttempt:
        """Store a finished attempt.

        The attempt is stored verbatim: the score is trusted and the quiz set
        is not looked up. Scores outside ``0..total_questions`` are logged.

        Args:
            user_id: User who took the quiz
            quiz_set_id: Quiz set the attempt belongs to
            answers: Mapping of question id to the chosen answer
            score: Number of correct answers reported by the client
            total_questions: Number of questions in the quiz

        Returns:
            The stored attempt with its id and completion time
        """
        if not 0 <= score <= total_questions:
            logger.warning(
                "Attempt score out of range stored as submitted: user_id=%s, "
                "quiz_set_id=%s, score=%s, total_questions=%s",
                user_id, quiz_set_id, score, total_questions
            )
        attempt = self.db.quiz_attempts.create(
            user_id=user_id,
            quiz_set_id=quiz_set_id,
            answers=json.dumps(answers),
            score=score,
            total_questions=total_questions,
        )
        logger.info(
            "Attempt stored: id=%s, user_id=%s, quiz_set_id=%s, score=%s/%s",
            attempt.id, user_id, quiz_set_id, score, total_questions
        )
        return attempt

    def count_attempts(self, quiz_set_id: str) -> int:
        return self.db.quiz_attempts.count(quiz_set_id=quiz_set_id)

    def attempt_history(self, user_id: str) -> List[AttemptSummary]:
        """Return the user's attempts, newest first, with quiz details.

        Attempts whose quiz set was deleted are kept and flagged.
        """
        summaries = []
        for attempt in self.db.quiz_attempts.find_many(user_id=user_id):
            quiz = self.db.quiz_sets.find_unique(id=attempt.quiz_set_id)
            summaries.append(AttemptSummary(
                attempt=attempt,
                quiz_title=quiz.title if quiz else None,
                quiz_description=quiz.description if quiz else None,
                quiz_deleted=quiz is None,
            ))
        summaries.sort(key=lambda s: s.attempt.completed_at, reverse=True)
        return summaries
