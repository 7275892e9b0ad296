"""
FastAPI Backend for Sahayak Adaptive Assessments

Provides REST API endpoints with:
- JWT Authentication (student identity comes from the token)
- Adaptive question selection and difficulty-weighted scoring
- Answer grading
- Supabase persistence for sessions and finished attempts
- Revision sessions built from past mistakes
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
import os
import sys
import time

from dotenv import load_dotenv

from lib.logger import setup_logging, get_logger

load_dotenv()
setup_logging(use_colors=True)

logger = get_logger("backend.main")

# Add the sahayak_assessment package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'sahayak_assessment', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client
from lib.auth import get_current_user

from sahayak_assessment.adaptive_controller import InvalidInputError, SessionResult
from sahayak_assessment.answer_grader import AnswerGrader
from sahayak_assessment.assessment_session import AdaptiveAssessmentSession, SessionStateError
from sahayak_assessment.assessment_store import AssessmentNotFoundError, AssessmentStore, SessionConflictError
from sahayak_assessment.llm_selector import LLMQuestionSelector
from sahayak_assessment.question_models import Question
from sahayak_assessment.revision_planner import RevisionPlanner

# Singletons to avoid reinitializing clients on every request
_store: Optional[AssessmentStore] = None
_grader: Optional[AnswerGrader] = None
_selector: Optional[LLMQuestionSelector] = None


def get_store() -> AssessmentStore:
    global _store
    if _store is None:
        _store = AssessmentStore(supabase_client=get_supabase_client())
    return _store


def get_grader() -> AnswerGrader:
    global _grader
    if _grader is None:
        _grader = AnswerGrader()
    return _grader


def get_selector() -> Optional[LLMQuestionSelector]:
    """LLM selector when ASSESSMENT_SELECTOR=llm, None for the deterministic controller."""
    global _selector
    if os.getenv("ASSESSMENT_SELECTOR", "deterministic").lower() != "llm":
        return None
    if _selector is None:
        _selector = LLMQuestionSelector()
    return _selector


app = FastAPI(
    title="Sahayak Adaptive Assessment API",
    description="Adaptive assessments and revision sessions for students",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:9002",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class AnswerSubmission(BaseModel):
    answer: str


class QuestionView(BaseModel):
    """Question as served to a student (no answer key)."""
    no: str
    text: str
    difficulty: int
    tags: List[str] = []
    questionType: str
    options: Optional[List[str]] = None


class SessionView(BaseModel):
    session_id: str
    assessment_id: str
    topic: str
    phase: str
    questions_answered: int
    target_count: int
    next_question: Optional[QuestionView] = None
    is_complete: bool = False
    final_score: Optional[float] = None
    ended_early: bool = False
    scoring_mode: Optional[str] = None
    attempt_id: Optional[str] = None


class AnswerResponse(BaseModel):
    is_correct: bool
    feedback: str
    session: SessionView


class AttemptSummary(BaseModel):
    assessment_id: str
    topic: str
    adaptive_score: float
    time_taken: float
    questions_attempted: int
    ended_early: bool
    submitted_at: str


class RevisionView(BaseModel):
    topic: str
    has_mistakes: bool
    weak_tags: List[Dict[str, Any]]
    summary: str
    revision_questions_available: int


# ==================== Helper Functions ====================

def question_view(question: Optional[Question]) -> Optional[QuestionView]:
    if question is None:
        return None
    return QuestionView(**question.to_dict(include_answer=False))


def session_view(session: AdaptiveAssessmentSession, attempt_id: Optional[str] = None) -> SessionView:
    result = session.result
    return SessionView(
        session_id=session.session_id,
        assessment_id=session.assessment_id,
        topic=session.topic,
        phase=session.phase.value,
        questions_answered=len(session.answered),
        target_count=session.target_count,
        next_question=question_view(session.current_question),
        is_complete=session.is_complete,
        final_score=result.final_score if result else None,
        ended_early=result.ended_early if result else False,
        scoring_mode=result.scoring_mode.value if result and result.scoring_mode else None,
        attempt_id=attempt_id,
    )


async def run_selection(session: AdaptiveAssessmentSession, selector: Optional[LLMQuestionSelector]) -> SessionResult:
    """Select with the configured strategy and apply the result to the session."""
    if selector is None:
        result = session.controller.select_next(session.bank, session.answered, session.target_count)
    else:
        result = await selector.select_next(session.bank, session.answered, session.target_count)

    logger.debug("Selection made", data={
        "session_id": session.session_id,
        "strategy": "deterministic" if selector is None else "llm",
        "answered": len(session.answered),
        "next_question": result.next_question.question_id if result.next_question else None,
        "next_difficulty": result.next_question.difficulty if result.next_question else None,
        "complete": result.is_complete,
    })
    return session.advance(result)


async def finish_if_complete(
    session: AdaptiveAssessmentSession,
    store: AssessmentStore,
    expected_answered: Optional[int] = None
) -> Optional[str]:
    """
    Save the session, and the attempt once it completes. Returns the attempt id.

    With expected_answered, the session save acts as a claim: a concurrent
    answer to the same question raises SessionConflictError before any
    attempt is written.
    """
    await store.save_session(session, expected_answered=expected_answered)
    if not session.is_complete:
        return None

    attempt = session.to_attempt()
    attempt_id = await store.save_attempt(attempt)
    await store.delete_session(session.session_id)

    if attempt.ended_early:
        logger.warning("Session ended before the target question count", data={
            "session_id": session.session_id,
            "answered": len(session.answered),
            "target_count": session.target_count,
        })
    logger.success("Assessment attempt saved", data={
        "attempt_id": attempt_id,
        "score": attempt.adaptive_score,
        "scoring_mode": attempt.scoring_mode,
        "time_taken": attempt.time_taken,
    })
    return attempt_id


async def start_session(
    session: AdaptiveAssessmentSession,
    store: AssessmentStore,
    selector: Optional[LLMQuestionSelector]
) -> SessionView:
    try:
        await run_selection(session, selector)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    attempt_id = await finish_if_complete(session, store)
    return session_view(session, attempt_id)


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Sahayak Adaptive Assessment API",
        "version": "1.0.0",
        "selector": os.getenv("ASSESSMENT_SELECTOR", "deterministic"),
    }


@app.post("/api/assessments/{assessment_id}/sessions", response_model=SessionView)
async def create_assessment_session(
    assessment_id: str,
    user: dict = Depends(get_current_user),
    store: AssessmentStore = Depends(get_store),
    selector: Optional[LLMQuestionSelector] = Depends(get_selector),
):
    """Open an adaptive session on a published assessment and serve the first question."""
    logger.request("POST", f"/api/assessments/{assessment_id}/sessions", user_id=user["id"])

    try:
        assessment, questions = await store.get_question_bank(assessment_id)
    except AssessmentNotFoundError:
        raise HTTPException(status_code=404, detail="Assessment not found")

    target_count = int(assessment.get("numQuestions") or len(questions))
    session = AdaptiveAssessmentSession(
        bank=questions,
        target_count=target_count,
        student_id=user["id"],
        assessment_id=assessment_id,
        topic=assessment.get("topic", ""),
    )
    logger.section("ASSESSMENT SESSION START", {
        "session_id": session.session_id,
        "assessment_id": assessment_id,
        "bank_size": len(questions),
        "target_count": target_count,
    })
    return await start_session(session, store, selector)


@app.post("/api/revision/{topic}/sessions", response_model=SessionView)
async def create_revision_session(
    topic: str,
    num_questions: int = 5,
    user: dict = Depends(get_current_user),
    store: AssessmentStore = Depends(get_store),
    selector: Optional[LLMQuestionSelector] = Depends(get_selector),
):
    """Open an adaptive session over the caller's past mistakes on a topic."""
    logger.request("POST", f"/api/revision/{topic}/sessions", user_id=user["id"])

    if num_questions < 1:
        raise HTTPException(status_code=400, detail="num_questions must be at least 1")

    past_answers = await store.get_past_answers(user["id"], topic)
    bank = RevisionPlanner().build_revision_bank(past_answers, limit=num_questions * 2)
    if not bank:
        raise HTTPException(status_code=404, detail="No past mistakes to revise on this topic")

    session = AdaptiveAssessmentSession(
        bank=bank,
        target_count=min(num_questions, len(bank)),
        student_id=user["id"],
        assessment_id=f"revision:{topic}",
        topic=topic,
    )
    return await start_session(session, store, selector)


@app.post("/api/assessment-sessions/{session_id}/answer", response_model=AnswerResponse)
async def submit_answer(
    session_id: str,
    submission: AnswerSubmission,
    user: dict = Depends(get_current_user),
    store: AssessmentStore = Depends(get_store),
    grader: AnswerGrader = Depends(get_grader),
    selector: Optional[LLMQuestionSelector] = Depends(get_selector),
):
    """Grade the answer to the current question and serve the next one, or finish."""
    start_time = time.time()
    logger.request("POST", f"/api/assessment-sessions/{session_id}/answer", user_id=user["id"], data={
        "answer_length": len(submission.answer),
    })

    session = await store.get_session(session_id, student_id=user["id"])
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if session.current_question is None:
        raise HTTPException(status_code=409, detail="Session is not awaiting an answer")

    grade = await grader.grade(session.current_question, submission.answer)

    try:
        session.record_answer(submission.answer, grade.is_correct)
        await run_selection(session, selector)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        attempt_id = await finish_if_complete(session, store, expected_answered=len(session.answered) - 1)
    except SessionConflictError as e:
        logger.warning("Concurrent answer rejected", data={"session_id": session_id, "error": str(e)})
        raise HTTPException(status_code=409, detail="Session was already answered by another request")
    except Exception as e:
        logger.error("Failed to persist assessment attempt", error=e)
        raise HTTPException(status_code=500, detail="Failed to save assessment attempt")

    logger.info("Answer processed", data={
        "session_id": session_id,
        "is_correct": grade.is_correct,
        "grading_method": grade.method,
        "phase": session.phase.value,
        "duration_ms": f"{(time.time() - start_time) * 1000:.2f}",
    })
    return AnswerResponse(
        is_correct=grade.is_correct,
        feedback=grade.feedback,
        session=session_view(session, attempt_id),
    )


@app.get("/api/assessment-sessions/{session_id}", response_model=SessionView)
async def get_assessment_session(
    session_id: str,
    user: dict = Depends(get_current_user),
    store: AssessmentStore = Depends(get_store),
):
    session = await store.get_session(session_id, student_id=user["id"])
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session_view(session)


@app.get("/api/student-assessments", response_model=List[AttemptSummary])
async def list_student_assessments(
    topic: Optional[str] = None,
    user: dict = Depends(get_current_user),
    store: AssessmentStore = Depends(get_store),
):
    """The caller's finished attempts, oldest first."""
    attempts = await store.get_attempts(user["id"], topic)
    return [
        AttemptSummary(
            assessment_id=a.assessment_id,
            topic=a.topic,
            adaptive_score=a.adaptive_score,
            time_taken=a.time_taken,
            questions_attempted=len(a.questions_attempted),
            ended_early=a.ended_early,
            submitted_at=a.submitted_at.isoformat(),
        )
        for a in attempts
    ]


@app.get("/api/revision/{topic}", response_model=RevisionView)
async def get_revision_summary(
    topic: str,
    user: dict = Depends(get_current_user),
    store: AssessmentStore = Depends(get_store),
):
    """Summary of the caller's past mistakes on a topic."""
    past_answers = await store.get_past_answers(user["id"], topic)
    planner = RevisionPlanner()
    summary = planner.summarize(topic, past_answers)
    return RevisionView(
        topic=topic,
        has_mistakes=summary.has_mistakes,
        weak_tags=[{"tag": tag, "misses": misses} for tag, misses in summary.weak_tags],
        summary=summary.summary,
        revision_questions_available=len(summary.incorrect_questions),
    )


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
