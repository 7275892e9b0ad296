"""
Unit Tests for Assessment Store

Tests question bank loading, session persistence between round trips and
immutable attempt records, against both in-memory and Supabase-style storage.
"""

import json
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "sahayak_assessment", "src"))

from sahayak_assessment.assessment_session import AdaptiveAssessmentSession
from sahayak_assessment.assessment_store import AssessmentNotFoundError, AssessmentStore, SessionConflictError
from sahayak_assessment.question_models import Question


@pytest.fixture
def bank():
    return [
        Question("1", "Define photosynthesis", "Plants make food from light", 2, tags=("biology",)),
        Question("2", "Chlorophyll colour?", "Green", 1, tags=("biology",)),
        Question("3", "Photosynthesis equation product?", "Glucose", 4, tags=("chemistry",)),
    ]


def finished_session(bank, student_id="student_1", topic="Photosynthesis", verdicts=(True, False)):
    session = AdaptiveAssessmentSession(
        bank=bank, target_count=len(verdicts), student_id=student_id,
        assessment_id="assessment_1", topic=topic,
    )
    session.start()
    for verdict in verdicts:
        session.submit("answer", verdict)
    return session


class TestInMemoryStore:
    """Store without a Supabase client."""

    @pytest.fixture
    def store(self, bank):
        store = AssessmentStore()
        store.add_question_bank("assessment_1", "Photosynthesis", bank, num_questions=2)
        return store

    @pytest.mark.asyncio
    async def test_get_question_bank(self, store, bank):
        assessment, questions = await store.get_question_bank("assessment_1")
        assert assessment["topic"] == "Photosynthesis"
        assert assessment["numQuestions"] == 2
        assert questions == bank

    @pytest.mark.asyncio
    async def test_missing_assessment(self, store):
        with pytest.raises(AssessmentNotFoundError):
            await store.get_question_bank("nope")

    @pytest.mark.asyncio
    async def test_session_round_trip(self, store, bank):
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        session.start()

        assert await store.save_session(session) is True
        loaded = await store.get_session(session.session_id, student_id="s1")

        assert loaded.current_question == session.current_question
        assert loaded.phase == session.phase

    @pytest.mark.asyncio
    async def test_session_hidden_from_other_students(self, store, bank):
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        session.start()
        await store.save_session(session)

        assert await store.get_session(session.session_id, student_id="s2") is None

    @pytest.mark.asyncio
    async def test_delete_session(self, store, bank):
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        await store.save_session(session)

        assert await store.delete_session(session.session_id) is True
        assert await store.get_session(session.session_id) is None
        assert await store.delete_session(session.session_id) is False

    @pytest.mark.asyncio
    async def test_stale_answer_rejected(self, store, bank):
        """Two requests loaded the same session; only the first answer is kept."""
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        session.start()
        await store.save_session(session)

        first = await store.get_session(session.session_id)
        second = await store.get_session(session.session_id)
        first.submit("Green", True)
        second.submit("Blue", False)

        assert await store.save_session(first, expected_answered=0) is True
        with pytest.raises(SessionConflictError):
            await store.save_session(second, expected_answered=0)

        stored = await store.get_session(session.session_id)
        assert [a.student_answer for a in stored.answered] == ["Green"]

    @pytest.mark.asyncio
    async def test_save_attempt_requires_student(self, store, bank):
        attempt = finished_session(bank, student_id="").to_attempt()
        with pytest.raises(ValueError):
            await store.save_attempt(attempt)

    @pytest.mark.asyncio
    async def test_attempts_filtered_by_student_and_topic(self, store, bank):
        await store.save_attempt(finished_session(bank, topic="Photosynthesis").to_attempt())
        await store.save_attempt(finished_session(bank, topic="Respiration").to_attempt())
        await store.save_attempt(finished_session(bank, student_id="student_2").to_attempt())

        assert len(await store.get_attempts("student_1")) == 2
        topic_attempts = await store.get_attempts("student_1", "Photosynthesis")
        assert [a.topic for a in topic_attempts] == ["Photosynthesis"]

        past = await store.get_past_answers("student_1", "Photosynthesis")
        assert len(past) == 2
        assert [a.is_correct for a in past] == [True, False]


class TestSupabaseStore:
    """Store backed by the Supabase table API."""

    @pytest.fixture
    def store(self, fake_supabase):
        return AssessmentStore(supabase_client=fake_supabase)

    @pytest.mark.asyncio
    async def test_question_bank_from_json_column(self, store, fake_supabase, bank):
        fake_supabase.tables["assessments"] = [{
            "id": "assessment_1",
            "topic": "Photosynthesis",
            "numQuestions": 2,
            "questions": json.dumps([q.to_dict() for q in bank]),
        }]

        assessment, questions = await store.get_question_bank("assessment_1")
        assert assessment["numQuestions"] == 2
        assert questions == bank

    @pytest.mark.asyncio
    async def test_session_upsert(self, store, fake_supabase, bank):
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        session.start()
        await store.save_session(session)
        session.submit("Green", True)
        await store.save_session(session)

        rows = fake_supabase.tables["assessment_sessions"]
        assert len(rows) == 1
        loaded = await store.get_session(session.session_id, student_id="s1")
        assert len(loaded.answered) == 1

    @pytest.mark.asyncio
    async def test_guarded_update_checks_answered_count(self, store, fake_supabase, bank):
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        session.start()
        await store.save_session(session)

        stale = await store.get_session(session.session_id, student_id="s1")
        session.submit("Green", True)
        assert await store.save_session(session, expected_answered=0) is True
        assert fake_supabase.tables["assessment_sessions"][0]["answered_count"] == 1

        stale.submit("Blue", False)
        with pytest.raises(SessionConflictError):
            await store.save_session(stale, expected_answered=0)

        loaded = await store.get_session(session.session_id, student_id="s1")
        assert [a.student_answer for a in loaded.answered] == ["Green"]

    @pytest.mark.asyncio
    async def test_attempt_insert_and_read(self, store, fake_supabase, bank):
        attempt = finished_session(bank).to_attempt()
        attempt_id = await store.save_attempt(attempt)

        assert attempt_id == "student_assessments_1"
        stored = fake_supabase.tables["student_assessments"][0]
        assert isinstance(stored["questionsAttempted"], str)

        attempts = await store.get_attempts("student_1", "Photosynthesis")
        assert attempts[0].questions_attempted == attempt.questions_attempted
        assert attempts[0].adaptive_score == attempt.adaptive_score

    @pytest.mark.asyncio
    async def test_session_falls_back_to_memory_on_failure(self, store, fake_supabase, bank):
        session = AdaptiveAssessmentSession(bank=bank, target_count=2, student_id="s1", assessment_id="assessment_1")
        session.start()
        fake_supabase.fail = True

        assert await store.save_session(session) is False
        loaded = await store.get_session(session.session_id, student_id="s1")
        assert loaded.session_id == session.session_id


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
