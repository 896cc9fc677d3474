"""
Quiz set library.

Creating, listing, reading and deleting quiz sets on behalf of a user.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from quizgen.storage.models import QuizSet
from quizgen.storage.repository import Database

logger = logging.getLogger(__name__)


class UnknownUserError(Exception):
    """Raised when a quiz set would be created for a user that does not exist."""
    def __init__(self, user_id: str):
        super().__init__(f"Unknown user: {user_id}")
        self.user_id = user_id


class QuizNotFoundError(Exception):
    def __init__(self, quiz_id: str):
        super().__init__(f"Quiz not found: {quiz_id}")
        self.quiz_id = quiz_id


class QuizOwnershipError(Exception):
    """Raised when a user tries to delete a quiz set they did not create."""
    def __init__(self, quiz_id: str, user_id: str):
        super().__init__(f"User {user_id} does not own quiz {quiz_id}")
        self.quiz_id = quiz_id
        self.user_id = user_id


def validate_questions(questions: Sequence[Any]) -> None:
    """Check that quiz questions have the shape the quiz player needs.

    Every question needs an ``id``, a ``type``, the ``question`` text and a
    ``correct_answer``; multiple-choice questions also need a list of
    ``options``.

    Raises:
        ValueError: If the list is empty or a question is malformed
    """
    if not questions:
        raise ValueError("A quiz needs at least one question")
    for index, question in enumerate(questions):
        if not isinstance(question, dict):
            raise ValueError(f"Question at index {index} is malformed: not an object")
        missing = [name for name in ("id", "type", "question") if question.get(name) in (None, "")]
        if missing:
            raise ValueError(f"Question at index {index} is malformed: missing {missing}")
        if question["type"] == "multiple_choice" and not isinstance(question.get("options"), list):
            raise ValueError(f"Question at index {index} is malformed: options must be a list")
        if question.get("correct_answer") is None:
            raise ValueError(f"Question at index {index} is malformed: missing correct_answer")


@dataclass(frozen=True)
class QuizSummary:
    quiz: QuizSet
    attempt_count: int


@dataclass(frozen=True)
class QuizDetail:
    """A quiz set with its questions decoded.

    ``author`` is None when the creating user no longer exists.
    """
    quiz: QuizSet
    questions: List[Dict[str, Any]]
    author: Optional[Dict[str, Optional[str]]]


class QuizLibrary:
    """Quiz set operations scoped to the signed-in user."""

    def __init__(self, db: Database):
        self.db = db

    def create_quiz(
        self,
        user_id: str,
        title: str,
        questions: Sequence[Dict[str, Any]],
        description: Optional[str] = None
    ) -> QuizSet:
        """Persist a generated quiz for its creator.

        Raises:
            ValueError: If the title is blank or a question is malformed
            UnknownUserError: If the creator does not exist
        """
        if not title or not title.strip():
            raise ValueError("title is required and cannot be empty")
        validate_questions(questions)
        if self.db.users.find_unique(id=user_id) is None:
            raise UnknownUserError(user_id)

        quiz = self.db.quiz_sets.create(
            title=title,
            description=description,
            questions=json.dumps(list(questions)),
            created_by=user_id,
        )
        logger.info("Quiz created: id=%s, user_id=%s, questions=%d", quiz.id, user_id, len(questions))
        return quiz

    def list_quizzes(self, user_id: str) -> List[QuizSummary]:
        return [
            QuizSummary(quiz=quiz, attempt_count=self.db.quiz_attempts.count(quiz_set_id=quiz.id))
            for quiz in self.db.quiz_sets.find_many(created_by=user_id)
        ]

    def get_quiz(self, quiz_id: str) -> Optional[QuizDetail]:
        quiz = self.db.quiz_sets.find_unique(id=quiz_id)
        if quiz is None:
            return None
        author = self.db.users.find_unique(id=quiz.created_by)
        return QuizDetail(
            quiz=quiz,
            questions=json.loads(quiz.questions),
            author={"name": author.name, "email": author.email} if author else None,
        )

    def delete_quiz(self, user_id: str, quiz_id: str) -> None:
        """Delete a quiz set owned by the user.

        Attempts referencing the quiz are left in place.

        Raises:
            QuizNotFoundError: If the quiz set does not exist
            QuizOwnershipError: If the user is not its creator
        """
        quiz = self.db.quiz_sets.find_unique(id=quiz_id)
        if quiz is None:
            raise QuizNotFoundError(quiz_id)
        if quiz.created_by != user_id:
            raise QuizOwnershipError(quiz_id, user_id)
        self.db.quiz_sets.delete(id=quiz_id)
        logger.info("Quiz deleted: id=%s, user_id=%s", quiz_id, user_id)
