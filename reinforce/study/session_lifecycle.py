"""
Reinforcement Session Lifecycle.

State machine:

    Pending ──submit / expire(started)──────────> Completed
       │   ──expire(started, no grading)────────> Incomplete
       │   ──expire(never started)──────────────> NotHeld
       └───cancel(before start and deadline)────> Cancelled

Every right-hand state is terminal. A Pending session with ``started_at`` set
is "in progress"; there is no separate state for it.

The terminal flip is a compare-and-swap on ``state``: when a student's submit
and the expiry sweep race, exactly one of them finalizes and the other returns
the already recorded outcome. The grade write and the result rows share the
flip's transaction.

None of these methods commit. Run them inside ``session_scope()``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from config import Settings, get_settings
from reinforce.core.clock import ensure_utc
from reinforce.core.errors import (
    InsufficientContentError,
    InvalidStateTransitionError,
    NoDeficiencyError,
    PendingSessionExistsError,
    PermissionDeniedError,
    SessionExpiredError,
    ValidationError,
)
from reinforce.core.grades import Grade
from reinforce.core.principal import Principal, Role, require_owner, require_staff
from reinforce.core.states import ResultTrigger, SessionState
from reinforce.db.models import (
    ReinforcementSession,
    SessionAnswerDraft,
    SessionQuestion,
    SessionResult,
    SessionResultAnswer,
)
from reinforce.db.repositories import QuestionRepository, SessionRepository
from reinforce.learning.grade_tracker import DifficultyGradeTracker
from reinforce.schemas import AnswerIn, CreateSessionRequest, SubmitAnswersRequest
from reinforce.study.exam_clock import ExamWindow, is_overdue
from reinforce.study.session_assembler import AssembledQuiz, SessionAssembler


# ========================================
# Outcomes and Views
# ========================================


@dataclass(frozen=True)
class ResultSummary:
    """Graded result of a completed session."""

    correct_count: int
    incorrect_count: int
    accuracy_pct: float
    grade_before: Grade
    grade_after: Grade
    trigger: ResultTrigger
    completed_at: datetime
    answers: dict[UUID, UUID | None] = field(default_factory=dict)

    @classmethod
    def from_model(cls, result: SessionResult) -> ResultSummary:
        return cls(
            correct_count=result.correct_count,
            incorrect_count=result.incorrect_count,
            accuracy_pct=result.accuracy_pct,
            grade_before=result.grade_before,
            grade_after=result.grade_after,
            trigger=result.trigger,
            completed_at=ensure_utc(result.completed_at),
            answers=result.chosen_options(),
        )

    @property
    def total(self) -> int:
        return self.correct_count + self.incorrect_count


@dataclass(frozen=True)
class SessionOutcome:
    """State of a session after submit or expire."""

    session_id: UUID
    state: SessionState
    result: ResultSummary | None = None
    transitioned: bool = False  # True only for the call that performed the flip


@dataclass(frozen=True)
class SessionView:
    """Read model of a session, with its exam window evaluated at ``now``."""

    session_id: UUID
    course_id: UUID
    student_id: UUID
    difficulty_id: UUID
    session_number: int
    session_grade: Grade
    state: SessionState
    is_automatic: bool
    deadline_at: datetime
    time_limit_minutes: int
    question_ids: tuple[UUID, ...]
    started_at: datetime | None = None
    ends_at: datetime | None = None
    remaining: timedelta | None = None
    cancel_reason: str | None = None
    result: ResultSummary | None = None

    @classmethod
    def build(cls, session: ReinforcementSession, now: datetime) -> SessionView:
        window = ExamWindow.from_session(session)
        in_progress = window is not None and session.state is SessionState.PENDING
        return cls(
            session_id=session.id,
            course_id=session.course_id,
            student_id=session.student_id,
            difficulty_id=session.difficulty_id,
            session_number=session.session_number,
            session_grade=session.session_grade,
            state=session.state,
            is_automatic=session.is_automatic,
            deadline_at=session.deadline,
            time_limit_minutes=session.time_limit_minutes,
            question_ids=tuple(q.question_id for q in session.questions),
            started_at=window.started_at if window else None,
            ends_at=window.ends_at if window else None,
            remaining=window.remaining(now) if in_progress else None,
            cancel_reason=session.cancel_reason,
            result=ResultSummary.from_model(session.result) if session.result else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly payload (the shape a client countdown is built from)."""
        return {
            "id": str(self.session_id),
            "session_number": self.session_number,
            "state": self.state.value,
            "session_grade": self.session_grade.value,
            "deadline_at": self.deadline_at.isoformat(),
            "time_limit_minutes": self.time_limit_minutes,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "remaining_seconds": int(self.remaining.total_seconds()) if self.remaining is not None else None,
            "question_count": len(self.question_ids),
        }


# ========================================
# Lifecycle
# ========================================


class SessionLifecycle:
    """
    Create, start, submit, expire and cancel reinforcement sessions.

    Every operation receives ``now`` from the clock collaborator; nothing here
    reads the wall clock.
    """

    def __init__(
        self,
        db_session: Session,
        settings: Settings | None = None,
        tracker: DifficultyGradeTracker | None = None,
        assembler: SessionAssembler | None = None,
    ):
        self.db = db_session
        self.settings = settings or get_settings()
        self.sessions = SessionRepository(db_session)
        self.questions = QuestionRepository(db_session)
        self.tracker = tracker or DifficultyGradeTracker(db_session, threshold=self.settings.pass_threshold_pct)
        self.assembler = assembler or SessionAssembler(
            db_session,
            tracker=self.tracker,
            max_extra_questions=self.settings.max_extra_questions,
        )

    # ----------------------------------------
    # Creation
    # ----------------------------------------

    def create(
        self,
        principal: Principal,
        course_id: UUID,
        request: CreateSessionRequest,
        now: datetime,
    ) -> ReinforcementSession:
        """
        Create a teacher-assigned session.

        An earlier pending session whose deadline has passed is expired here
        and does not block the new one.

        Raises:
            PermissionDeniedError: principal is a student
            ValidationError: deadline, time limit or extras out of range
            PendingSessionExistsError: student already has a teacher-assigned pending session
            NoDeficiencyError / InsufficientContentError: from assembly
        """
        require_staff(principal, "create reinforcement sessions")
        now = ensure_utc(now)
        deadline = ensure_utc(request.deadline_at)

        if request.time_limit_minutes <= 0:
            raise ValidationError(
                "time_limit_minutes must be positive",
                details={"time_limit_minutes": request.time_limit_minutes},
            )
        if deadline <= now:
            raise ValidationError("Deadline must be in the future", details={"deadline_at": deadline.isoformat()})
        latest = now + timedelta(days=self.settings.max_deadline_days)
        if deadline > latest:
            raise ValidationError(
                f"Deadline cannot be more than {self.settings.max_deadline_days} days ahead",
                details={"deadline_at": deadline.isoformat(), "latest": latest.isoformat()},
            )
        if len(request.extra_question_ids) > self.settings.max_extra_questions:
            raise ValidationError(
                f"At most {self.settings.max_extra_questions} extra questions are allowed",
                details={"extra_count": len(request.extra_question_ids)},
            )

        pending = self.sessions.find_pending(course_id, request.student_id, teacher_assigned_only=True)
        if any(self._expire_if_overdue(s, now) is None for s in pending):
            raise PendingSessionExistsError(
                "Student already has a pending reinforcement session",
                details={"student_id": str(request.student_id)},
            )

        quiz = self.assembler.assemble(
            course_id, request.student_id, request.difficulty_id, request.extra_question_ids
        )
        session = self._persist(
            course_id=course_id,
            student_id=request.student_id,
            difficulty_id=request.difficulty_id,
            quiz=quiz,
            deadline_at=deadline,
            time_limit_minutes=request.time_limit_minutes,
            teacher_id=principal.user_id,
        )
        logger.info(
            f"Created session #{session.session_number} for student {session.student_id} "
            f"({quiz.total} questions, grade {quiz.grade.value}, deadline {deadline.isoformat()})"
        )
        return session

    def create_automatic(
        self,
        course_id: UUID,
        student_id: UUID,
        difficulty_id: UUID,
        now: datetime,
    ) -> ReinforcementSession | None:
        """
        Create a system-assigned session, or return None when one is not due.

        Skipped when a pending session already exists for the difficulty, when
        the student is not deficient, or when there are no questions.
        """
        now = ensure_utc(now)
        if self.sessions.find_pending(course_id, student_id, difficulty_id=difficulty_id):
            logger.debug(f"Student {student_id} already has a pending session for {difficulty_id}")
            return None

        try:
            quiz = self.assembler.assemble(course_id, student_id, difficulty_id)
        except (NoDeficiencyError, InsufficientContentError) as e:
            logger.warning(f"Skipping automatic session for student {student_id}: {e.message}")
            return None

        session = self._persist(
            course_id=course_id,
            student_id=student_id,
            difficulty_id=difficulty_id,
            quiz=quiz,
            deadline_at=now + timedelta(days=self.settings.auto_session_deadline_days),
            time_limit_minutes=self.settings.auto_session_time_limit_minutes,
            teacher_id=None,
        )
        logger.info(f"Created automatic session #{session.session_number} for student {student_id}")
        return session

    def _persist(
        self,
        course_id: UUID,
        student_id: UUID,
        difficulty_id: UUID,
        quiz: AssembledQuiz,
        deadline_at: datetime,
        time_limit_minutes: int,
        teacher_id: UUID | None,
    ) -> ReinforcementSession:
        extras = set(quiz.extra_question_ids)
        session = ReinforcementSession(
            course_id=course_id,
            student_id=student_id,
            difficulty_id=difficulty_id,
            session_number=self.sessions.next_session_number(course_id, student_id),
            session_grade=quiz.grade,
            teacher_id=teacher_id,
            deadline_at=deadline_at,
            time_limit_minutes=time_limit_minutes,
            state=SessionState.PENDING,
            questions=[
                SessionQuestion(question_id=question_id, position=i, is_extra=question_id in extras)
                for i, question_id in enumerate(quiz.question_ids)
            ],
        )
        self.sessions.add(session)
        return session

    # ----------------------------------------
    # Taking the exam
    # ----------------------------------------

    def start(self, principal: Principal, session_id: UUID, now: datetime) -> datetime:
        """
        Record the server-side start of the exam and return ``started_at``.

        Idempotent while the session is Pending: a second call returns the
        original ``started_at``.

        Raises:
            SessionExpiredError: the deadline passed before the first start,
                the session is NotHeld, or the exam window has closed
            InvalidStateTransitionError: the session is Completed, Incomplete or Cancelled
        """
        now = ensure_utc(now)
        session = self.sessions.require(session_id)
        require_owner(principal, session.student_id, "start")

        if session.state is SessionState.NOT_HELD:
            raise SessionExpiredError(
                "Session deadline has passed",
                details={"session_id": str(session_id), "deadline_at": session.deadline.isoformat()},
            )
        if session.state.is_terminal:
            raise InvalidStateTransitionError(
                f"Session is {session.state.value}", details={"session_id": str(session_id)}
            )

        if session.started_at is not None:
            if is_overdue(session, now, self.settings.submit_grace_seconds):
                raise SessionExpiredError("Exam window has closed", details={"session_id": str(session_id)})
            return ensure_utc(session.started_at)

        if now > session.deadline:
            raise SessionExpiredError(
                "Session deadline has passed",
                details={"session_id": str(session_id), "deadline_at": session.deadline.isoformat()},
            )

        if not self._mark_started(session, now):
            self.sessions.reload(session)
            if session.started_at is None:
                raise InvalidStateTransitionError(
                    f"Session is {session.state.value}", details={"session_id": str(session_id)}
                )
            return ensure_utc(session.started_at)

        self.sessions.reload(session)
        logger.info(f"Session {session_id} started; exam ends at {ensure_utc(session.exam_ends_at).isoformat()}")
        return now

    def save_answers(
        self,
        principal: Principal,
        session_id: UUID,
        answers: SubmitAnswersRequest,
        now: datetime,
    ) -> int:
        """
        Save draft answers while the exam is open. Returns the number kept.

        Answers for questions outside the snapshot are ignored; a repeated
        question keeps its last answer.
        """
        now = ensure_utc(now)
        session = self.sessions.require(session_id)
        require_owner(principal, session.student_id, "answer")

        if session.state is not SessionState.PENDING:
            raise InvalidStateTransitionError(
                f"Session is {session.state.value}", details={"session_id": str(session_id)}
            )
        window = ExamWindow.from_session(session)
        if window is None:
            raise InvalidStateTransitionError("Session has not been started", details={"session_id": str(session_id)})
        if window.is_overdue(now, self.settings.submit_grace_seconds):
            raise InvalidStateTransitionError("Exam window has closed", details={"session_id": str(session_id)})

        chosen = self._chosen_options(session, answers.answers)
        drafts = {d.question_id: d for d in session.drafts}
        for question_id, option_id in chosen.items():
            draft = drafts.get(question_id)
            if draft is None:
                session.drafts.append(
                    SessionAnswerDraft(question_id=question_id, chosen_option_id=option_id, saved_at=now)
                )
            else:
                draft.chosen_option_id = option_id
                draft.saved_at = now
        self.db.flush()
        logger.debug(f"Saved {len(chosen)} draft answers for session {session_id}")
        return len(chosen)

    def submit(
        self,
        principal: Principal,
        session_id: UUID,
        answers: SubmitAnswersRequest | None,
        now: datetime,
    ) -> SessionOutcome:
        """
        Grade the session and transition it to Completed.

        Submitted answers override saved drafts question by question. An
        already finalized session returns its recorded outcome unchanged. A
        submission arriving after the exam window (plus grace) is not
        accepted; the session is expired with its saved drafts instead.

        Returns:
            SessionOutcome. After the window plus grace the answers in
            ``answers`` are discarded: the outcome is graded from saved drafts
            only (``trigger=expiry``), or is Incomplete with no result when
            grading on expiry is disabled.

        Raises:
            InvalidStateTransitionError: the session was cancelled
        """
        now = ensure_utc(now)
        session = self.sessions.require(session_id)
        require_owner(principal, session.student_id, "submit")

        if session.state is SessionState.CANCELLED:
            raise InvalidStateTransitionError("Session was cancelled", details={"session_id": str(session_id)})
        if session.state.is_terminal:
            logger.debug(f"Session {session_id} already {session.state.value}; submit is a no-op")
            return self._outcome(session)

        if is_overdue(session, now, self.settings.submit_grace_seconds):
            logger.warning(f"Late submission for session {session_id}; expiring instead")
            return self._expire(session, now)

        if session.started_at is None:
            if self._mark_started(session, now):
                logger.info(f"Session {session_id} implicitly started at submit")
            self.sessions.reload(session)

        chosen = {d.question_id: d.chosen_option_id for d in session.drafts}
        chosen.update(self._chosen_options(session, answers.answers if answers else []))
        return self._complete(session, chosen, now, ResultTrigger.SUBMIT)

    # ----------------------------------------
    # Expiry and cancellation
    # ----------------------------------------

    def expire(self, session_id: UUID, now: datetime) -> SessionOutcome:
        """
        Finalize an overdue session.

        Started sessions are graded with their saved answers (or marked
        Incomplete when grading on expiry is disabled); sessions that were
        never started become NotHeld and leave the grade untouched. A session
        that is already terminal is returned as is.

        Raises:
            InvalidStateTransitionError: the session is not overdue yet
        """
        now = ensure_utc(now)
        session = self.sessions.require(session_id)
        if session.state.is_terminal:
            return self._outcome(session)
        if not is_overdue(session, now, self.settings.submit_grace_seconds):
            raise InvalidStateTransitionError(
                "Session is not overdue", details={"session_id": str(session_id)}
            )
        return self._expire(session, now)

    def cancel(self, principal: Principal, session_id: UUID, reason: str, now: datetime) -> SessionOutcome:
        """
        Cancel a pending session that has not been started.

        Raises:
            PermissionDeniedError: principal is a student, or another teacher's session
            ValidationError: empty reason
            InvalidStateTransitionError: not pending, already started or past the deadline
        """
        require_staff(principal, "cancel reinforcement sessions")
        now = ensure_utc(now)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A cancellation reason is required")

        session = self.sessions.require(session_id)
        if (
            principal.role is Role.TEACHER
            and session.teacher_id is not None
            and session.teacher_id != principal.user_id
        ):
            raise PermissionDeniedError("Only the assigning teacher may cancel this session")

        if session.state is not SessionState.PENDING:
            raise InvalidStateTransitionError(
                f"Session is {session.state.value}", details={"session_id": str(session_id)}
            )
        if session.started_at is not None:
            raise InvalidStateTransitionError(
                "Session already started", details={"session_id": str(session_id)}
            )
        if now > session.deadline:
            raise InvalidStateTransitionError(
                "Session deadline has passed", details={"session_id": str(session_id)}
            )

        if not self.sessions.flip_state(
            session.id, SessionState.CANCELLED, now, cancelled_at=now, cancel_reason=reason
        ):
            self.sessions.reload(session)
            raise InvalidStateTransitionError(
                f"Session is {session.state.value}", details={"session_id": str(session_id)}
            )
        self.sessions.reload(session)
        logger.info(f"Session {session_id} cancelled: {reason}")
        return self._outcome(session, transitioned=True)

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    def get(self, principal: Principal, session_id: UUID, now: datetime) -> SessionView:
        """Return the session, expiring it first when it is overdue."""
        now = ensure_utc(now)
        session = self.sessions.require(session_id)
        if principal.role is Role.STUDENT:
            require_owner(principal, session.student_id, "view")
        self._expire_if_overdue(session, now)
        return SessionView.build(session, now)

    def list_for_student(
        self,
        principal: Principal,
        course_id: UUID,
        student_id: UUID,
        now: datetime,
    ) -> list[SessionView]:
        now = ensure_utc(now)
        if principal.role is Role.STUDENT:
            require_owner(principal, student_id, "view")
        views = []
        for session in self.sessions.list_for_student(course_id, student_id):
            self._expire_if_overdue(session, now)
            views.append(SessionView.build(session, now))
        return views

    # ----------------------------------------
    # Internals
    # ----------------------------------------

    def _mark_started(self, session: ReinforcementSession, now: datetime) -> bool:
        ends_at = now + timedelta(minutes=session.time_limit_minutes)
        return self.sessions.mark_started(session.id, now, ends_at)

    def _expire_if_overdue(self, session: ReinforcementSession, now: datetime) -> SessionOutcome | None:
        if is_overdue(session, now, self.settings.submit_grace_seconds):
            return self._expire(session, now)
        return None

    def _expire(self, session: ReinforcementSession, now: datetime) -> SessionOutcome:
        if session.started_at is None:
            return self._flip(session, SessionState.NOT_HELD, now)
        if not self.settings.grade_on_expiry:
            return self._flip(session, SessionState.INCOMPLETE, now)
        chosen = {d.question_id: d.chosen_option_id for d in session.drafts}
        return self._complete(session, chosen, now, ResultTrigger.EXPIRY)

    def _flip(self, session: ReinforcementSession, to_state: SessionState, now: datetime) -> SessionOutcome:
        flipped = self.sessions.flip_state(session.id, to_state, now)
        self.sessions.reload(session)
        if flipped:
            logger.info(f"Session {session.id} -> {to_state.value}")
        else:
            logger.debug(f"Session {session.id} was already finalized as {session.state.value}")
        return self._outcome(session, transitioned=flipped)

    def _complete(
        self,
        session: ReinforcementSession,
        chosen: dict[UUID, UUID],
        now: datetime,
        trigger: ResultTrigger,
    ) -> SessionOutcome:
        snapshot = [q.question_id for q in session.questions]
        questions = {q.id: q for q in self.questions.get_many(snapshot)}

        graded: list[SessionResultAnswer] = []
        for question_id in snapshot:
            correct_option = questions[question_id].correct_option
            option_id = chosen.get(question_id)
            is_correct = option_id is not None and correct_option is not None and option_id == correct_option.id
            graded.append(
                SessionResultAnswer(question_id=question_id, chosen_option_id=option_id, is_correct=is_correct)
            )

        total = len(graded)
        correct = sum(1 for a in graded if a.is_correct)
        accuracy_pct = correct * 100 / total if total else 0.0

        if not self.sessions.flip_state(session.id, SessionState.COMPLETED, now):
            self.sessions.reload(session)
            logger.debug(f"Session {session.id} was already finalized as {session.state.value}")
            return self._outcome(session)
        self.sessions.reload(session)

        transition = self.tracker.apply_outcome(
            session.course_id,
            session.student_id,
            session.difficulty_id,
            grade_at_session_start=session.session_grade,
            accuracy_pct=accuracy_pct,
            now=now,
            session_id=session.id,
        )
        self.db.add(
            SessionResult(
                session_id=session.id,
                correct_count=correct,
                incorrect_count=total - correct,
                accuracy_pct=accuracy_pct,
                grade_before=transition.grade_before,
                grade_after=transition.grade_after,
                trigger=trigger,
                completed_at=now,
                answers=graded,
            )
        )
        self.db.flush()
        self.db.expire(session, ["result"])

        logger.info(
            f"Session {session.id} completed by {trigger.value}: {correct}/{total} "
            f"({accuracy_pct:.1f}%), grade {transition.grade_before.value} -> {transition.grade_after.value}"
        )
        return self._outcome(session, transitioned=True)

    @staticmethod
    def _chosen_options(session: ReinforcementSession, answers: Iterable[AnswerIn]) -> dict[UUID, UUID]:
        snapshot = {q.question_id for q in session.questions}
        chosen: dict[UUID, UUID] = {}
        for answer in answers:
            if answer.question_id in snapshot:
                chosen[answer.question_id] = answer.chosen_option_id
        return chosen

    @staticmethod
    def _outcome(session: ReinforcementSession, transitioned: bool = False) -> SessionOutcome:
        result = ResultSummary.from_model(session.result) if session.result is not None else None
        return SessionOutcome(
            session_id=session.id,
            state=session.state,
            result=result,
            transitioned=transitioned,
        )
