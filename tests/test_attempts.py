"""
Unit tests for quiz attempt submission and history.
"""

import json
import logging
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from quizgen.core.attempts import QuizSessionAuthority
from quizgen.core.quizzes import QuizLibrary
from quizgen.storage.repository import Database


class StepClock:
    """Clock that advances one minute on every reading."""

    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        value = self.now
        self.now += timedelta(minutes=1)
        return value


QUESTIONS = [
    {"id": i, "type": "text", "question": f"Question {i}?", "correct_answer": "x",
     "explanation": ""}
    for i in range(1, 6)
]


class TestQuizSessionAuthority:
    """Test storing attempts and reading history."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db = Database(self.temp_dir, clock=StepClock())
        self.authority = QuizSessionAuthority(self.db)
        self.library = QuizLibrary(self.db)
        self.user = self.db.users.create(email="u@example.com", name="U")

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_end_to_end_attempt(self):
        """Create a quiz, submit one attempt and read it back."""
        quiz = self.library.create_quiz(self.user.id, "Photosynthesis", QUESTIONS)
        assert self.db.quiz_attempts.count(quiz_set_id=quiz.id) == 0

        attempt = self.authority.submit_attempt(
            self.user.id, quiz.id, {"1": "a", "2": "b"}, score=4, total_questions=5
        )

        assert self.authority.count_attempts(quiz.id) == 1
        attempts = self.db.quiz_attempts.find_many(user_id=self.user.id)
        assert attempts == [attempt]
        assert attempts[0].completed_at is not None
        assert (attempts[0].score, attempts[0].total_questions) == (4, 5)

    def test_answers_are_stored_as_json(self):
        attempt = self.authority.submit_attempt(
            self.user.id, "q1", {1: 0, 2: "Glucose"}, score=1, total_questions=2
        )

        assert json.loads(attempt.answers) == {"1": 0, "2": "Glucose"}

    def test_score_above_total_is_stored_as_submitted(self, caplog):
        """Known gap: the client's score is trusted without re-grading."""
        quiz = self.library.create_quiz(self.user.id, "Photosynthesis", QUESTIONS)

        with caplog.at_level(logging.WARNING, logger="quizgen.core.attempts"):
            attempt = self.authority.submit_attempt(
                self.user.id, quiz.id, {}, score=7, total_questions=5
            )

        assert attempt.score == 7
        assert self.db.quiz_attempts.find_unique(id=attempt.id).score == 7
        assert "out of range" in caplog.text

    def test_unknown_quiz_id_is_accepted(self):
        attempt = self.authority.submit_attempt(
            self.user.id, "no-such-quiz", {}, score=0, total_questions=3
        )

        assert self.db.quiz_attempts.find_unique(id=attempt.id) == attempt

    def test_history_is_newest_first_with_quiz_details(self):
        first = self.library.create_quiz(
            self.user.id, "First", QUESTIONS, description="first quiz"
        )
        second = self.library.create_quiz(self.user.id, "Second", QUESTIONS)
        self.authority.submit_attempt(self.user.id, first.id, {}, 3, 5)
        self.authority.submit_attempt(self.user.id, second.id, {}, 5, 5)
        self.authority.submit_attempt("someone-else", first.id, {}, 1, 5)

        history = self.authority.attempt_history(self.user.id)

        assert [s.quiz_title for s in history] == ["Second", "First"]
        assert history[1].quiz_description == "first quiz"
        assert history[0].attempt.completed_at > history[1].attempt.completed_at
        assert not any(s.quiz_deleted for s in history)

    def test_deleting_quiz_keeps_attempts(self):
        quiz = self.library.create_quiz(self.user.id, "Photosynthesis", QUESTIONS)
        self.authority.submit_attempt(self.user.id, quiz.id, {}, 4, 5)

        self.library.delete_quiz(self.user.id, quiz.id)

        assert self.authority.count_attempts(quiz.id) == 1
        history = self.authority.attempt_history(self.user.id)
        assert len(history) == 1
        assert history[0].quiz_deleted is True
        assert history[0].quiz_title is None
        assert history[0].attempt.score == 4

    def test_empty_history(self):
        assert self.authority.attempt_history(self.user.id) == []
