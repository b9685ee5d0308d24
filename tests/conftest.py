"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
an in-memory SQLite database per test, a fixed clock, principals and small
factories for the question catalog.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from reinforce.core.clock import FixedClock  # noqa: E402
from reinforce.core.grades import Grade  # noqa: E402
from reinforce.core.principal import Principal, Role  # noqa: E402
from reinforce.db.database import configure_engine  # noqa: E402
from reinforce.db.models import AnswerOption, Base, Difficulty, Question, Topic  # noqa: E402
from reinforce.learning.grade_tracker import DifficultyGradeTracker  # noqa: E402
from reinforce.study.session_lifecycle import SessionLifecycle  # noqa: E402

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database bound to the global session factory."""
    engine = configure_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """SQLAlchemy session; tests flush, nothing is committed."""
    session = Session(bind=engine, autoflush=False, expire_on_commit=False)
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def settings():
    """Default lifecycle policy, independent of any .env file."""
    return Settings(_env_file=None, database_url="sqlite://")


@pytest.fixture
def clock():
    """Clock frozen at Monday 2025-03-10 09:00 UTC."""
    return FixedClock(T0)


@pytest.fixture
def course_id():
    return uuid4()


@pytest.fixture
def student():
    return Principal(user_id=uuid4(), role=Role.STUDENT)


@pytest.fixture
def other_student():
    return Principal(user_id=uuid4(), role=Role.STUDENT)


@pytest.fixture
def teacher():
    return Principal(user_id=uuid4(), role=Role.TEACHER)


@pytest.fixture
def admin():
    return Principal(user_id=uuid4(), role=Role.ADMIN)


class CatalogFactory:
    """Builds difficulties and questions directly through the ORM."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.topic = Topic(name=f"topic-{uuid4().hex[:8]}")
        self.db.add(self.topic)

    def difficulty(self, name: str = "Fractions") -> Difficulty:
        difficulty = Difficulty(topic=self.topic, name=f"{name}-{uuid4().hex[:6]}")
        self.db.add(difficulty)
        self.db.flush()
        return difficulty

    def question(
        self,
        difficulty: Difficulty,
        grade: Grade,
        teacher_id=None,
        option_count: int = 4,
        correct_index: int = 0,
    ) -> Question:
        question = Question(
            difficulty_id=difficulty.id,
            grade=grade,
            enunciation=f"Question {uuid4().hex[:8]}",
            teacher_id=teacher_id,
            options=[
                AnswerOption(position=i, text=f"Option {i}", is_correct=i == correct_index)
                for i in range(option_count)
            ],
        )
        self.db.add(question)
        self.db.flush()
        return question

    @staticmethod
    def correct(question: Question):
        return question.correct_option.id

    @staticmethod
    def wrong(question: Question):
        return next(o.id for o in question.options if not o.is_correct)


@pytest.fixture
def catalog(db):
    return CatalogFactory(db)


@pytest.fixture
def difficulty(catalog):
    return catalog.difficulty()


@pytest.fixture
def tracker(db, settings):
    return DifficultyGradeTracker(db, threshold=settings.pass_threshold_pct)


@pytest.fixture
def lifecycle(db, settings, tracker):
    return SessionLifecycle(db, settings=settings, tracker=tracker)


@pytest.fixture
def grade_student(tracker, course_id, clock):
    """Register an evaluated grade for (student, difficulty)."""

    def _grade(student_id, difficulty, grade: Grade):
        return tracker.register_evaluation(course_id, student_id, difficulty.id, grade, clock.now())

    return _grade
