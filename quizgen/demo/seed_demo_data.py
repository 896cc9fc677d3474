# quizgen/demo/seed_demo_data.py

from typing import Tuple

from quizgen.core.accounts import AccountService
from quizgen.core.attempts import QuizSessionAuthority
from quizgen.core.quizzes import QuizLibrary
from quizgen.core.usage import GENERATE_QUIZ, UsageMeter
from quizgen.storage.models import QuizSet, User
from quizgen.storage.repository import Database, get_database

DEMO_EMAIL = "demo@example.com"

DEMO_QUESTIONS = [
    {
        "id": 1,
        "type": "multiple_choice",
        "question": "Which pigment absorbs light for photosynthesis?",
        "options": ["Chlorophyll", "Melanin", "Hemoglobin", "Keratin"],
        "correct_answer": 0,
        "explanation": "Chlorophyll in the chloroplasts captures light energy.",
    },
    {
        "id": 2,
        "type": "multiple_choice",
        "question": "Which gas do plants take in during photosynthesis?",
        "options": ["Oxygen", "Carbon dioxide", "Nitrogen", "Helium"],
        "correct_answer": 1,
        "explanation": "Carbon dioxide is fixed into sugars.",
    },
    {
        "id": 3,
        "type": "text",
        "question": "What sugar is the main product of photosynthesis?",
        "correct_answer": "Glucose",
        "explanation": "Glucose is built in the Calvin cycle.",
    },
    {
        "id": 4,
        "type": "multiple_choice",
        "question": "Where do the light-dependent reactions happen?",
        "options": ["Stroma", "Thylakoid membrane", "Nucleus", "Cell wall"],
        "correct_answer": 1,
        "explanation": "Photosystems sit in the thylakoid membranes.",
    },
    {
        "id": 5,
        "type": "text",
        "question": "Which gas is released as a by-product?",
        "correct_answer": "Oxygen",
        "explanation": "Splitting water releases oxygen.",
    },
]


def seed_demo_data(db: Database) -> Tuple[User, QuizSet]:
    """Create a demo user with one generated quiz, one attempt and one metered action."""
    user = AccountService(db).sign_in(DEMO_EMAIL, name="Demo User")
    quiz = QuizLibrary(db).create_quiz(
        user.id,
        "Photosynthesis",
        DEMO_QUESTIONS,
        description="How plants turn light into sugar",
    )
    UsageMeter(db).record_usage(user.id, GENERATE_QUIZ, "Photosynthesis basics", 0.01)
    QuizSessionAuthority(db).submit_attempt(
        user.id,
        quiz.id,
        {1: 0, 2: 1, 3: "Glucose", 4: 0, 5: "Oxygen"},
        score=4,
        total_questions=len(DEMO_QUESTIONS),
    )
    return user, quiz


if __name__ == "__main__":
    demo_user, demo_quiz = seed_demo_data(get_database())
    print(f"Demo data inserted for {demo_user.email} (quiz {demo_quiz.id})")
