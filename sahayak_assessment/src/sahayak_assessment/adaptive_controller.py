"""
Adaptive Session Controller

Decides which question to serve next in an adaptive assessment, when the
session is complete, and the difficulty-weighted final score.

Pure and deterministic: the same (bank, answered, target_count) always yields
the same result. All session state is passed in by the caller.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from statistics import median_low
from typing import Dict, List, Optional, Sequence, Tuple

from sahayak_assessment.question_models import AnsweredQuestion, Question

logger = logging.getLogger(__name__)


class InvalidInputError(ValueError):
    """Raised when select_next is called with inputs that break its preconditions."""


class SessionStatus(Enum):
    CONTINUE = "continue"
    COMPLETE = "complete"


class ScoringMode(Enum):
    DIFFICULTY_WEIGHTED = "difficulty_weighted"
    UNWEIGHTED = "unweighted"  # Total difficulty was zero


@dataclass(frozen=True)
class FinalScore:
    value: float
    mode: ScoringMode


@dataclass(frozen=True)
class SessionResult:
    """Outcome of one selection round: a next question or a final score, never both."""
    status: SessionStatus
    next_question: Optional[Question] = None
    final_score: Optional[float] = None
    ended_early: bool = False
    scoring_mode: Optional[ScoringMode] = None

    @property
    def is_complete(self) -> bool:
        return self.status is SessionStatus.COMPLETE

    @classmethod
    def continue_with(cls, question: Question) -> "SessionResult":
        return cls(status=SessionStatus.CONTINUE, next_question=question)

    @classmethod
    def complete(cls, score: FinalScore, ended_early: bool = False) -> "SessionResult":
        return cls(
            status=SessionStatus.COMPLETE,
            final_score=score.value,
            ended_early=ended_early,
            scoring_mode=score.mode,
        )


def question_id_sort_key(question_id: str) -> Tuple[int, int, str]:
    """
    Total order over question identifiers.

    Purely numeric ids ("1", "2", "10") sort numerically and come first;
    anything else sorts lexicographically after them.
    """
    if question_id.isdigit():
        return (0, int(question_id), question_id)
    return (1, 0, question_id)


def score_answers(answered: Sequence[AnsweredQuestion]) -> FinalScore:
    """
    Difficulty-weighted percentage of the answered questions.

    score = 100 * sum(difficulty of correct) / sum(difficulty of all)

    Falls back to correct/total * 100 when the total difficulty is zero.
    """
    if not answered:
        return FinalScore(0.0, ScoringMode.DIFFICULTY_WEIGHTED)

    total_weight = sum(a.difficulty for a in answered)
    if total_weight <= 0:
        logger.warning(
            f"⚠️ [AdaptiveController] Total difficulty is {total_weight} across {len(answered)} answers, "
            f"using unweighted score"
        )
        correct = sum(1 for a in answered if a.is_correct)
        value = 100.0 * correct / len(answered)
        return FinalScore(_bounded(value), ScoringMode.UNWEIGHTED)

    correct_weight = sum(a.difficulty for a in answered if a.is_correct)
    value = 100.0 * correct_weight / total_weight
    return FinalScore(_bounded(value), ScoringMode.DIFFICULTY_WEIGHTED)


def compute_final_score(answered: Sequence[AnsweredQuestion]) -> float:
    return score_answers(answered).value


def _bounded(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 2)


class AdaptiveSessionController:
    """
    Rule-based next-question selection.

    Algorithm:
    - First question: lower median difficulty of the unanswered pool
    - After a correct answer: aim one level higher (max 5)
    - After an incorrect answer: aim one level lower (min 1)
    - Closest difficulty to the aim wins; ties go to the side the student is
      moving towards, then the question closest to the mean difficulty of
      correctly answered questions, then lowest id
    """

    MIN_DIFFICULTY = 1
    MAX_DIFFICULTY = 5

    def select_next(
        self,
        bank: Sequence[Question],
        answered: Sequence[AnsweredQuestion],
        target_count: int
    ) -> SessionResult:
        """
        Select the next question or complete the session.

        Args:
            bank: Full question bank for the assessment
            answered: Answered questions so far, oldest first
            target_count: Number of questions to ask in this session

        Returns:
            SessionResult carrying the next question or the final score

        Raises:
            InvalidInputError: If the inputs break the preconditions
        """
        self.validate(bank, answered, target_count)

        if len(answered) >= target_count:
            return SessionResult.complete(score_answers(answered))

        answered_ids = {a.question_id for a in answered}
        unanswered = [q for q in bank if q.question_id not in answered_ids]

        if not unanswered:
            logger.warning(
                f"⚠️ [AdaptiveController] Question pool exhausted after {len(answered)} of {target_count} "
                f"questions, ending early"
            )
            return SessionResult.complete(score_answers(answered), ended_early=True)

        if answered:
            candidate = self._closest_to_target(unanswered, answered)
        else:
            candidate = self._opening_question(unanswered)

        if candidate.question_id in answered_ids:
            logger.warning(
                f"⚠️ [AdaptiveController] Selected already answered question {candidate.question_id}, falling back"
            )
            candidate = self._lowest_id(unanswered)

        return SessionResult.continue_with(candidate)

    def compute_final_score(self, answered: Sequence[AnsweredQuestion]) -> float:
        return compute_final_score(answered)

    def validate(
        self,
        bank: Sequence[Question],
        answered: Sequence[AnsweredQuestion],
        target_count: int
    ) -> None:
        """Check select_next preconditions, raising InvalidInputError on the first violation."""
        if not bank:
            raise InvalidInputError("Question bank is empty")

        bank_ids: Dict[str, Question] = {}
        for question in bank:
            if question.question_id in bank_ids:
                raise InvalidInputError(f"Duplicate question id in bank: {question.question_id}")
            bank_ids[question.question_id] = question

        if isinstance(target_count, bool) or not isinstance(target_count, int) or target_count < 1:
            raise InvalidInputError(f"target_count must be a positive integer (got {target_count!r})")

        seen = set()
        for item in answered:
            if item.question_id not in bank_ids:
                raise InvalidInputError(f"Answered question {item.question_id} is not in the bank")
            if item.question_id in seen:
                raise InvalidInputError(f"Question {item.question_id} was answered more than once")
            seen.add(item.question_id)

    def target_difficulty(self, last: AnsweredQuestion) -> int:
        """Difficulty to aim for after the given answer."""
        step = 1 if last.is_correct else -1
        return max(self.MIN_DIFFICULTY, min(self.MAX_DIFFICULTY, last.difficulty + step))

    def _opening_question(self, unanswered: List[Question]) -> Question:
        opening = median_low(q.difficulty for q in unanswered)
        return self._lowest_id([q for q in unanswered if q.difficulty == opening])

    def _closest_to_target(
        self,
        unanswered: List[Question],
        answered: Sequence[AnsweredQuestion]
    ) -> Question:
        last = answered[-1]
        target = self.target_difficulty(last)
        step = 1 if last.is_correct else -1

        correct = [a.difficulty for a in answered if a.is_correct]
        mean_correct = sum(correct) / len(correct) if correct else None

        def rank(question: Question):
            # Equal distance: harder after a correct answer, easier after a miss
            against_direction = 1 if (question.difficulty - target) * step < 0 else 0
            to_mean = abs(question.difficulty - mean_correct) if mean_correct is not None else 0.0
            return (
                abs(question.difficulty - target),
                against_direction,
                to_mean,
                question_id_sort_key(question.question_id),
            )

        return min(unanswered, key=rank)

    def _lowest_id(self, questions: List[Question]) -> Question:
        return min(questions, key=lambda q: question_id_sort_key(q.question_id))
