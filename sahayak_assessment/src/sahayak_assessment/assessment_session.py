"""
Adaptive Assessment Session

Explicit state and transitions for one student's attempt at one assessment:

    AWAITING_ANSWER -> SELECTING -> AWAITING_ANSWER | COMPLETE

The session owns the append-only answered list; selection itself is delegated
to a selector (the deterministic controller by default).
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sahayak_assessment.adaptive_controller import (
    AdaptiveSessionController,
    ScoringMode,
    SessionResult,
    SessionStatus,
)
from sahayak_assessment.question_models import AnsweredQuestion, Question, parse_flag


class SessionPhase(Enum):
    SELECTING = "selecting"
    AWAITING_ANSWER = "awaiting_answer"
    COMPLETE = "complete"


class SessionStateError(RuntimeError):
    """Raised when an operation is not allowed in the session's current phase."""


@dataclass
class StudentAssessmentAttempt:
    """Immutable record of a finished attempt, as written to persistence."""
    student_id: str
    assessment_id: str
    topic: str
    questions_attempted: List[AnsweredQuestion]
    adaptive_score: float
    time_taken: float  # Seconds
    ended_early: bool = False
    scoring_mode: str = ScoringMode.DIFFICULTY_WEIGHTED.value
    submitted_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "studentId": self.student_id,
            "assessmentId": self.assessment_id,
            "topic": self.topic,
            "questionsAttempted": [a.to_dict() for a in self.questions_attempted],
            "adaptiveScore": self.adaptive_score,
            "timeTaken": self.time_taken,
            "endedEarly": self.ended_early,
            "scoringMode": self.scoring_mode,
            "submittedAt": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StudentAssessmentAttempt":
        submitted_at = data.get("submittedAt")
        return cls(
            student_id=data["studentId"],
            assessment_id=data["assessmentId"],
            topic=data.get("topic", ""),
            questions_attempted=[AnsweredQuestion.from_dict(q) for q in data.get("questionsAttempted") or []],
            adaptive_score=float(data.get("adaptiveScore", 0.0)),
            time_taken=float(data.get("timeTaken", 0.0)),
            ended_early=parse_flag(data.get("endedEarly", False)),
            scoring_mode=data.get("scoringMode") or ScoringMode.DIFFICULTY_WEIGHTED.value,
            submitted_at=datetime.fromisoformat(submitted_at) if submitted_at else datetime.now(),
        )


class AdaptiveAssessmentSession:
    """
    One adaptive assessment attempt.

    Usage:
        session = AdaptiveAssessmentSession(bank, target_count=5, student_id=..., assessment_id=...)
        question = session.start()
        result = session.submit("student answer", is_correct=True)
    """

    def __init__(
        self,
        bank: List[Question],
        target_count: int,
        student_id: str,
        assessment_id: str,
        topic: str = "",
        session_id: Optional[str] = None,
        controller: Optional[AdaptiveSessionController] = None,
    ):
        self.session_id = session_id or f"assessment_{uuid.uuid4().hex}"
        self.bank = tuple(bank)
        self.target_count = target_count
        self.student_id = student_id
        self.assessment_id = assessment_id
        self.topic = topic
        self.controller = controller or AdaptiveSessionController()

        self.answered: List[AnsweredQuestion] = []
        self.phase = SessionPhase.SELECTING
        self.current_question: Optional[Question] = None
        self.result: Optional[SessionResult] = None
        self.started_at = datetime.now()
        self._started_monotonic = time.monotonic()
        self._elapsed_offset = 0.0
        self._finished_elapsed: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.phase is SessionPhase.COMPLETE

    @property
    def elapsed_seconds(self) -> float:
        if self._finished_elapsed is not None:
            return self._finished_elapsed
        return self._elapsed_offset + (time.monotonic() - self._started_monotonic)

    def start(self) -> Optional[Question]:
        """Select the opening question. Returns None if the session completes immediately."""
        if self.phase is not SessionPhase.SELECTING or self.answered:
            raise SessionStateError(f"Session already started (phase={self.phase.value})")
        result = self.controller.select_next(self.bank, self.answered, self.target_count)
        self.advance(result)
        return self.current_question

    def record_answer(self, student_answer: str, is_correct: bool) -> AnsweredQuestion:
        """Attach the grader's verdict to the current question and append it."""
        if self.phase is not SessionPhase.AWAITING_ANSWER or self.current_question is None:
            raise SessionStateError(f"Session is not awaiting an answer (phase={self.phase.value})")

        answered = AnsweredQuestion(
            question=self.current_question,
            student_answer=student_answer,
            is_correct=is_correct,
        )
        self.answered.append(answered)
        self.current_question = None
        self.phase = SessionPhase.SELECTING
        return answered

    def advance(self, result: SessionResult) -> SessionResult:
        """
        Apply a selection result produced by any selector.

        Raises:
            SessionStateError: If not selecting, or the result would repeat a question
        """
        if self.phase is not SessionPhase.SELECTING:
            raise SessionStateError(f"Session is not selecting (phase={self.phase.value})")

        if result.status is SessionStatus.COMPLETE:
            self.result = result
            self.phase = SessionPhase.COMPLETE
            self._finished_elapsed = self.elapsed_seconds
            return result

        question = result.next_question
        if question is None:
            raise SessionStateError("Continue result carries no question")
        if question.question_id in {a.question_id for a in self.answered}:
            raise SessionStateError(f"Question {question.question_id} was already answered")
        if len(self.answered) >= self.target_count:
            raise SessionStateError("Target question count already reached")

        self.current_question = question
        self.phase = SessionPhase.AWAITING_ANSWER
        return result

    def submit(self, student_answer: str, is_correct: bool) -> SessionResult:
        """Record a graded answer and select with the deterministic controller."""
        self.record_answer(student_answer, is_correct)
        result = self.controller.select_next(self.bank, self.answered, self.target_count)
        return self.advance(result)

    def to_attempt(self) -> StudentAssessmentAttempt:
        if not self.is_complete or self.result is None:
            raise SessionStateError("Only a completed session can be saved as an attempt")
        return StudentAssessmentAttempt(
            student_id=self.student_id,
            assessment_id=self.assessment_id,
            topic=self.topic,
            questions_attempted=list(self.answered),
            adaptive_score=self.result.final_score or 0.0,
            time_taken=round(self.elapsed_seconds, 2),
            ended_early=self.result.ended_early,
            scoring_mode=(self.result.scoring_mode or ScoringMode.DIFFICULTY_WEIGHTED).value,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage between round trips."""
        return {
            "session_id": self.session_id,
            "student_id": self.student_id,
            "assessment_id": self.assessment_id,
            "topic": self.topic,
            "target_count": self.target_count,
            "bank": [q.to_dict() for q in self.bank],
            "answered": [a.to_dict() for a in self.answered],
            "phase": self.phase.value,
            "current_question_id": self.current_question.question_id if self.current_question else None,
            "final_score": self.result.final_score if self.result else None,
            "ended_early": self.result.ended_early if self.result else False,
            "scoring_mode": self.result.scoring_mode.value if self.result and self.result.scoring_mode else None,
            "started_at": self.started_at.isoformat(),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdaptiveAssessmentSession":
        session = cls(
            bank=[Question.from_dict(q) for q in data["bank"]],
            target_count=int(data["target_count"]),
            student_id=data["student_id"],
            assessment_id=data["assessment_id"],
            topic=data.get("topic", ""),
            session_id=data["session_id"],
        )
        session.answered = [AnsweredQuestion.from_dict(a) for a in data.get("answered") or []]
        session.phase = SessionPhase(data.get("phase", SessionPhase.SELECTING.value))
        session.started_at = datetime.fromisoformat(data["started_at"]) if data.get("started_at") else datetime.now()
        session._elapsed_offset = float(data.get("elapsed_seconds") or 0.0)

        current_id = data.get("current_question_id")
        if current_id is not None:
            session.current_question = next(
                (q for q in session.bank if q.question_id == current_id), None
            )

        if session.phase is SessionPhase.COMPLETE:
            mode = data.get("scoring_mode")
            session.result = SessionResult(
                status=SessionStatus.COMPLETE,
                final_score=data.get("final_score"),
                ended_early=parse_flag(data.get("ended_early", False)),
                scoring_mode=ScoringMode(mode) if mode else None,
            )
            session._finished_elapsed = session._elapsed_offset
        return session
