"""
Assessment Store

Persists question banks, in-flight adaptive sessions and finished attempts in
Supabase. In-flight sessions fall back to in-memory storage when no client is
configured or a database call fails.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sahayak_assessment.assessment_session import AdaptiveAssessmentSession, StudentAssessmentAttempt
from sahayak_assessment.question_models import AnsweredQuestion, Question

logger = logging.getLogger(__name__)


class AssessmentNotFoundError(LookupError):
    pass


class SessionConflictError(RuntimeError):
    """Raised when a stored session changed after it was loaded."""


class AssessmentStore:
    """
    Supabase-backed storage for adaptive assessments.

    Tables:
        assessments          teacher-published question banks (read only here)
        assessment_sessions  session state between round trips
        student_assessments  immutable finished attempts
    """

    def __init__(self, supabase_client=None):
        """
        Initialize AssessmentStore.

        Args:
            supabase_client: Supabase client instance (optional)
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None

        self._in_memory_sessions: Dict[str, Dict[str, Any]] = {}
        self._in_memory_attempts: List[Dict[str, Any]] = []
        self._in_memory_banks: Dict[str, Dict[str, Any]] = {}

    # ==================== Question banks ====================

    def add_question_bank(self, assessment_id: str, topic: str, questions: List[Question], num_questions: int):
        """Register a bank in memory (used when running without Supabase)."""
        self._in_memory_banks[assessment_id] = {
            "id": assessment_id,
            "topic": topic,
            "numQuestions": num_questions,
            "questions": [q.to_dict() for q in questions],
        }

    async def get_question_bank(self, assessment_id: str) -> Tuple[Dict[str, Any], List[Question]]:
        """
        Load an assessment and its questions.

        Returns:
            (assessment row, questions)

        Raises:
            AssessmentNotFoundError: If no such assessment exists
        """
        if self.use_supabase:
            result = self.supabase.table('assessments').select('*').eq('id', assessment_id).execute()
            row = result.data[0] if result.data else None
        else:
            row = self._in_memory_banks.get(assessment_id)

        if not row:
            raise AssessmentNotFoundError(f"Assessment {assessment_id} not found")

        questions = self._decode_json(row.get("questions"), [])
        return row, [Question.from_dict(q) for q in questions]

    # ==================== In-flight sessions ====================

    async def get_session(self, session_id: str, student_id: Optional[str] = None) -> Optional[AdaptiveAssessmentSession]:
        if not self.use_supabase:
            data = self._in_memory_sessions.get(session_id)
        else:
            try:
                query = self.supabase.table('assessment_sessions').select('*').eq('session_id', session_id)
                if student_id:
                    query = query.eq('student_id', student_id)
                result = query.execute()
                data = self._decode_json(result.data[0].get("state"), None) if result.data else None
            except Exception as e:
                logger.warning(f"⚠️ [AssessmentStore] Error loading session from database: {e}")
                data = self._in_memory_sessions.get(session_id)

        if data is None:
            return None
        if student_id and data.get("student_id") != student_id:
            return None
        return AdaptiveAssessmentSession.from_dict(data)

    async def save_session(self, session: AdaptiveAssessmentSession, expected_answered: Optional[int] = None) -> bool:
        """
        Save session state.

        Args:
            session: Session to store
            expected_answered: When given, only overwrite a stored session that
                still has this many answers

        Returns:
            True if saved to the database (or in-memory mode), False if it fell back

        Raises:
            SessionConflictError: If the stored session moved past expected_answered
        """
        state = session.to_dict()
        if not self.use_supabase:
            if expected_answered is not None:
                self._check_stored_answers(session.session_id, expected_answered)
            self._in_memory_sessions[session.session_id] = state
            return True

        row = {
            "session_id": session.session_id,
            "student_id": session.student_id,
            "assessment_id": session.assessment_id,
            "phase": session.phase.value,
            "answered_count": len(session.answered),
            "state": json.dumps(state),
        }
        try:
            table = self.supabase.table('assessment_sessions')
            if expected_answered is None:
                table.upsert(row, on_conflict='session_id').execute()
                return True
            # Matches no row once another request has bumped answered_count
            result = table.update(row).eq('session_id', session.session_id).eq(
                'answered_count', expected_answered
            ).execute()
            updated = bool(result.data)

        except Exception as e:
            logger.warning(f"⚠️ [AssessmentStore] Error saving session to database: {e}")
            self._in_memory_sessions[session.session_id] = state
            return False

        if not updated:
            raise SessionConflictError(f"Session {session.session_id} was updated by another request")
        return True

    def _check_stored_answers(self, session_id: str, expected_answered: int):
        stored = self._in_memory_sessions.get(session_id)
        if stored is None or len(stored.get("answered") or []) != expected_answered:
            raise SessionConflictError(f"Session {session_id} was updated by another request")

    async def delete_session(self, session_id: str) -> bool:
        if not self.use_supabase:
            return self._in_memory_sessions.pop(session_id, None) is not None

        try:
            self.supabase.table('assessment_sessions').delete().eq('session_id', session_id).execute()
            self._in_memory_sessions.pop(session_id, None)
            return True
        except Exception as e:
            logger.warning(f"⚠️ [AssessmentStore] Error deleting session: {e}")
            return False

    # ==================== Finished attempts ====================

    async def save_attempt(self, attempt: StudentAssessmentAttempt) -> str:
        """
        Write a finished attempt. Attempts are never updated once written.

        Returns:
            The new record id

        Raises:
            ValueError: If the attempt has no student id
        """
        if not attempt.student_id:
            raise ValueError("Student must be authenticated to save an assessment.")

        record = attempt.to_dict()
        if not self.use_supabase:
            record["id"] = uuid.uuid4().hex
            self._in_memory_attempts.append(record)
            return record["id"]

        row = dict(record)
        row["questionsAttempted"] = json.dumps(record["questionsAttempted"])
        result = self.supabase.table('student_assessments').insert(row).execute()
        if not result.data:
            raise RuntimeError("Failed to save student assessment")
        return str(result.data[0].get("id"))

    async def get_attempts(self, student_id: str, topic: Optional[str] = None) -> List[StudentAssessmentAttempt]:
        if not self.use_supabase:
            rows = [r for r in self._in_memory_attempts if r["studentId"] == student_id]
        else:
            query = self.supabase.table('student_assessments').select('*').eq('studentId', student_id)
            if topic:
                query = query.eq('topic', topic)
            rows = query.order('submittedAt', desc=False).execute().data or []

        attempts = []
        for row in rows:
            row = dict(row)
            row["questionsAttempted"] = self._decode_json(row.get("questionsAttempted"), [])
            attempts.append(StudentAssessmentAttempt.from_dict(row))

        if topic:
            attempts = [a for a in attempts if a.topic == topic]
        return attempts

    async def get_past_answers(self, student_id: str, topic: str) -> List[AnsweredQuestion]:
        """All answers a student gave across their attempts on a topic."""
        answers: List[AnsweredQuestion] = []
        for attempt in await self.get_attempts(student_id, topic):
            answers.extend(attempt.questions_attempted)
        return answers

    def _decode_json(self, value, default):
        if value is None:
            return default
        if isinstance(value, str):
            return json.loads(value or "null") or default
        return value
