"""Pytest configuration and shared fixtures."""
import json
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.database import init_db, make_session_factory
from app.models.generation_models import SynthesizedQuestion
from app.models.retrieval_models import ContentChunk


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the in-memory engine."""
    return make_session_factory(db_engine)


@pytest.fixture
def chat_completion():
    """Build a fake Chat Completions response carrying ``content``."""

    def build(content):
        return MagicMock(
            choices=[MagicMock(message=MagicMock(content=content))],
            usage=MagicMock(total_tokens=100),
        )

    return build


@pytest.fixture
def mock_openai_client(chat_completion):
    """Create a mock OpenAI client."""
    client = MagicMock()
    client.chat.completions.create.return_value = chat_completion("{}")
    return client


@pytest.fixture
def question_items():
    """Build ``count`` well-formed question dicts cycling through all types."""

    def build(count, difficulty="medium"):
        items = []
        for number in range(1, count + 1):
            kind = number % 3
            if kind == 1:
                items.append(
                    {
                        "questionNumber": number,
                        "questionType": "multiple_choice",
                        "questionText": f"Question {number}: which force keeps planets in orbit?",
                        "options": ["Gravity", "Friction", "Magnetism", "Tension"],
                        "correctAnswer": "Gravity",
                        "explanation": "Gravity provides the centripetal force.",
                        "difficulty": difficulty,
                    }
                )
            elif kind == 2:
                items.append(
                    {
                        "questionNumber": number,
                        "questionType": "true_false",
                        "questionText": f"Question {number}: momentum is conserved in a closed system.",
                        "correctAnswer": True,
                        "explanation": "No external forces act on a closed system.",
                        "difficulty": difficulty,
                    }
                )
            else:
                items.append(
                    {
                        "questionNumber": number,
                        "questionType": "short_answer",
                        "questionText": f"Question {number}: state Newton's second law.",
                        "correctAnswer": "Force equals mass times acceleration",
                        "explanation": "F = ma",
                        "difficulty": difficulty,
                    }
                )
        return items

    return build


@pytest.fixture
def question_payload(question_items):
    """Model response text holding ``count`` questions after some leading prose."""

    def build(count):
        body = json.dumps({"questions": question_items(count)})
        return f"Here are your questions:\n```json\n{body}\n```"

    return build


@pytest.fixture
def synthesized_questions(question_items):
    """Validated SynthesizedQuestion objects."""

    def build(count):
        return [SynthesizedQuestion.model_validate(item) for item in question_items(count)]

    return build


@pytest.fixture
def sample_chunks():
    """Content chunks for Physics / Mechanics."""
    return [
        ContentChunk(
            id=f"chunk_{i}",
            content=f"Mechanics passage {i}: Newton's laws describe motion.",
            subject="Physics",
            topic="Mechanics",
            language="en",
        )
        for i in range(1, 4)
    ]
