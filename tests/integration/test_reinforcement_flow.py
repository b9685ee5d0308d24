"""
Integration tests for the reinforcement flow across committed units of work.

Each step runs in its own ``session_scope()`` the way a request handler or
the cron sweep would, so state only carries over through the database.

Run: pytest tests/integration/test_reinforcement_flow.py -v
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from reinforce.core.errors import ValidationError
from reinforce.core.grades import Grade
from reinforce.core.principal import Principal, Role
from reinforce.core.states import ResultTrigger, SessionState
from reinforce.db.database import session_scope
from reinforce.db.models import AnswerOption, Difficulty, Question, ReinforcementSession, Topic
from reinforce.db.repositories import SessionRepository
from reinforce.learning.grade_tracker import DifficultyGradeTracker
from reinforce.schemas import CreateSessionRequest, SubmitAnswersRequest
from reinforce.study.expiry_sweep import assign_automatic_sessions, run_expiry_sweep
from reinforce.study.session_lifecycle import SessionLifecycle


def seed_difficulty(grade_questions: dict[Grade, int]) -> tuple:
    """Commit a difficulty with N system questions per grade; return (difficulty_id, {grade: [(qid, correct, wrong)]})."""
    with session_scope() as db:
        difficulty = Difficulty(topic=Topic(name=f"topic-{uuid4().hex[:8]}"), name="Fractions")
        db.add(difficulty)
        db.flush()
        questions: dict[Grade, list[tuple]] = {}
        for grade, count in grade_questions.items():
            for _ in range(count):
                question = Question(
                    difficulty_id=difficulty.id,
                    grade=grade,
                    enunciation=f"Question {uuid4().hex[:8]}",
                    options=[AnswerOption(position=i, text=f"Option {i}", is_correct=i == 0) for i in range(3)],
                )
                db.add(question)
                db.flush()
                questions.setdefault(grade, []).append(
                    (question.id, question.options[0].id, question.options[1].id)
                )
        return difficulty.id, questions


def evaluate(course_id, student_id, difficulty_id, grade, now):
    with session_scope() as db:
        DifficultyGradeTracker(db).register_evaluation(course_id, student_id, difficulty_id, grade, now)


def current_grade(course_id, student_id, difficulty_id) -> Grade:
    with session_scope() as db:
        return DifficultyGradeTracker(db).get_current_grade(course_id, student_id, difficulty_id)


def create_session(settings, teacher, course_id, student_id, difficulty_id, now, hours=1, limit=30):
    request = CreateSessionRequest(
        student_id=student_id,
        difficulty_id=difficulty_id,
        deadline_at=now + timedelta(hours=hours),
        time_limit_minutes=limit,
    )
    with session_scope() as db:
        return SessionLifecycle(db, settings=settings).create(teacher, course_id, request, now).id


@pytest.fixture(autouse=True)
def database(engine):
    """Bind session_scope() to the in-memory test database."""
    return engine


class TestSubmitFlow:
    """Start and submit in separate transactions."""

    def test_medium_session_answered_correctly_steps_down(self, settings, teacher, student, course_id, clock):
        difficulty_id, questions = seed_difficulty({Grade.MEDIUM: 1})
        evaluate(course_id, student.user_id, difficulty_id, Grade.MEDIUM, clock.now())
        session_id = create_session(settings, teacher, course_id, student.user_id, difficulty_id, clock.now())
        ((question_id, correct, _),) = questions[Grade.MEDIUM]

        with session_scope() as db:
            SessionLifecycle(db, settings=settings).start(student, session_id, clock.now())
        clock.advance(minutes=5)
        with session_scope() as db:
            outcome = SessionLifecycle(db, settings=settings).submit(
                student, session_id, SubmitAnswersRequest.from_pairs([(question_id, correct)]), clock.now()
            )

        assert outcome.state is SessionState.COMPLETED
        assert outcome.result.accuracy_pct == 100.0
        assert outcome.result.grade_after is Grade.LOW
        assert current_grade(course_id, student.user_id, difficulty_id) is Grade.LOW

        with session_scope() as db:
            view = SessionLifecycle(db, settings=settings).get(student, session_id, clock.now())
            history = DifficultyGradeTracker(db).history(course_id, student.user_id, difficulty_id)
            sources = [h.session_id for h in history]
        assert view.result == outcome.result
        assert view.remaining is None
        assert sources == [None, session_id]

    def test_failed_operation_leaves_no_trace(self, settings, teacher, student, course_id, clock):
        difficulty_id, _ = seed_difficulty({Grade.MEDIUM: 1})
        evaluate(course_id, student.user_id, difficulty_id, Grade.MEDIUM, clock.now())

        with pytest.raises(ValidationError):
            create_session(settings, teacher, course_id, student.user_id, difficulty_id, clock.now(), limit=0)

        with session_scope() as db:
            assert SessionRepository(db).list_for_student(course_id, student.user_id) == []


class TestExpirySweep:
    """The scheduled sweep finalizes what clients left behind."""

    def test_never_started_session_not_held(self, settings, teacher, student, course_id, clock):
        difficulty_id, _ = seed_difficulty({Grade.MEDIUM: 1})
        evaluate(course_id, student.user_id, difficulty_id, Grade.MEDIUM, clock.now())
        session_id = create_session(settings, teacher, course_id, student.user_id, difficulty_id, clock.now())
        clock.advance(hours=1, seconds=1)

        with session_scope() as db:
            report = run_expiry_sweep(db, clock.now(), settings=settings)

        assert report.not_held == 1
        assert report.failed == []
        assert current_grade(course_id, student.user_id, difficulty_id) is Grade.MEDIUM
        with session_scope() as db:
            assert db.get(ReinforcementSession, session_id).state is SessionState.NOT_HELD
            assert run_expiry_sweep(db, clock.now(), settings=settings).examined == 0

    def test_abandoned_attempt_graded_from_drafts(self, settings, teacher, student, course_id, clock):
        difficulty_id, questions = seed_difficulty({Grade.MEDIUM: 2})
        evaluate(course_id, student.user_id, difficulty_id, Grade.MEDIUM, clock.now())
        session_id = create_session(settings, teacher, course_id, student.user_id, difficulty_id, clock.now())
        (first_id, first_correct, _), (second_id, _, second_wrong) = questions[Grade.MEDIUM]

        with session_scope() as db:
            lifecycle = SessionLifecycle(db, settings=settings)
            lifecycle.start(student, session_id, clock.now())
            lifecycle.save_answers(
                student,
                session_id,
                SubmitAnswersRequest.from_pairs([(first_id, first_correct), (second_id, second_wrong)]),
                clock.now(),
            )

        clock.advance(minutes=31)
        with session_scope() as db:
            report = run_expiry_sweep(db, clock.now(), settings=settings)
        assert report.completed == 1

        # The client's countdown fires after the sweep won: same outcome, no error.
        with session_scope() as db:
            late = SessionLifecycle(db, settings=settings).submit(student, session_id, None, clock.now())
        assert late.state is SessionState.COMPLETED
        assert not late.transitioned
        assert late.result.trigger is ResultTrigger.EXPIRY
        assert late.result.accuracy_pct == 50.0
        assert current_grade(course_id, student.user_id, difficulty_id) is Grade.HIGH

    def test_in_progress_session_left_alone(self, settings, teacher, student, course_id, clock):
        difficulty_id, _ = seed_difficulty({Grade.MEDIUM: 1})
        evaluate(course_id, student.user_id, difficulty_id, Grade.MEDIUM, clock.now())
        session_id = create_session(settings, teacher, course_id, student.user_id, difficulty_id, clock.now())
        with session_scope() as db:
            SessionLifecycle(db, settings=settings).start(student, session_id, clock.now())
        clock.advance(minutes=10)

        with session_scope() as db:
            report = run_expiry_sweep(db, clock.now(), settings=settings)

        assert report.examined == 0
        with session_scope() as db:
            assert db.get(ReinforcementSession, session_id).state is SessionState.PENDING

    def test_open_exams_do_not_crowd_out_overdue_ones(self, settings, teacher, course_id, clock):
        difficulty_id, _ = seed_difficulty({Grade.MEDIUM: 1})
        overdue_student, active_student = uuid4(), uuid4()
        for student_id in (overdue_student, active_student):
            evaluate(course_id, student_id, difficulty_id, Grade.MEDIUM, clock.now())

        overdue_id = create_session(settings, teacher, course_id, overdue_student, difficulty_id, clock.now(), hours=5)
        with session_scope() as db:
            SessionLifecycle(db, settings=settings).start(
                Principal(user_id=overdue_student, role=Role.STUDENT), overdue_id, clock.now()
            )

        # Earlier deadline, still inside its exam window at sweep time.
        clock.advance(minutes=40)
        active_id = create_session(settings, teacher, course_id, active_student, difficulty_id, clock.now(), hours=1)
        with session_scope() as db:
            SessionLifecycle(db, settings=settings).start(
                Principal(user_id=active_student, role=Role.STUDENT), active_id, clock.now()
            )

        clock.advance(minutes=5)
        with session_scope() as db:
            report = run_expiry_sweep(db, clock.now(), settings=settings, batch_size=1)

        assert report.examined == 1
        assert report.completed == 1
        with session_scope() as db:
            assert db.get(ReinforcementSession, overdue_id).state is SessionState.COMPLETED
            assert db.get(ReinforcementSession, active_id).state is SessionState.PENDING


class TestAutomaticAssignment:
    """System-assigned sessions for High grades."""

    def test_assigns_each_high_grade_once(self, settings, course_id, clock):
        difficulty_id, _ = seed_difficulty({Grade.HIGH: 2, Grade.MEDIUM: 1})
        high_students = [uuid4(), uuid4()]
        for student_id in high_students:
            evaluate(course_id, student_id, difficulty_id, Grade.HIGH, clock.now())
        evaluate(course_id, uuid4(), difficulty_id, Grade.MEDIUM, clock.now())

        with session_scope() as db:
            created = assign_automatic_sessions(db, course_id, clock.now(), settings=settings)
            assigned = {s.student_id: (s.time_limit_minutes, s.is_automatic, len(s.questions)) for s in created}

        assert assigned == {student_id: (20, True, 2) for student_id in high_students}

        with session_scope() as db:
            assert assign_automatic_sessions(db, course_id, clock.now(), settings=settings) == []
