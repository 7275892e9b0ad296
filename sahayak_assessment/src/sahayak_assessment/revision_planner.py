"""
Revision Planner

Turns a student's past answers on a topic into revision material: the
questions they got wrong, their weakest tags, and a question bank for a
revision session.
"""

from collections import Counter
from dataclasses import dataclass, field, replace
from typing import List, Sequence, Tuple

from sahayak_assessment.adaptive_controller import question_id_sort_key
from sahayak_assessment.question_models import AnsweredQuestion, Question

NO_MISTAKES_SUMMARY = (
    "No past mistakes found on this topic. "
    "Please generate general revision questions with a mix of difficulties."
)


@dataclass
class RevisionSummary:
    topic: str
    incorrect_questions: List[Question] = field(default_factory=list)
    weak_tags: List[Tuple[str, int]] = field(default_factory=list)  # (tag, misses), most missed first
    summary: str = NO_MISTAKES_SUMMARY

    @property
    def has_mistakes(self) -> bool:
        return bool(self.incorrect_questions)


class RevisionPlanner:
    """Builds revision material from past performance."""

    def summarize(self, topic: str, past_answers: Sequence[AnsweredQuestion]) -> RevisionSummary:
        incorrect = self._distinct_misses(past_answers)
        if not incorrect:
            return RevisionSummary(topic=topic)

        tag_counts = Counter(tag for answer in past_answers if not answer.is_correct for tag in answer.question.tags)
        weak_tags = sorted(tag_counts.items(), key=lambda item: (-item[1], item[0]))

        summary = "\n".join(
            f'- Question: "{q.text}" (Correct Answer was: "{q.answer}")' for q in incorrect
        )
        return RevisionSummary(
            topic=topic,
            incorrect_questions=incorrect,
            weak_tags=weak_tags,
            summary=summary,
        )

    def build_revision_bank(self, past_answers: Sequence[AnsweredQuestion], limit: int) -> List[Question]:
        """
        Past misses for a revision session, hardest first.

        Args:
            past_answers: Answers across the student's attempts
            limit: Maximum number of questions
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        misses = self._distinct_misses(past_answers)
        misses.sort(key=lambda q: (-q.difficulty, question_id_sort_key(q.question_id)))
        # Renumber so ids stay unique when misses come from different banks
        return [replace(q, question_id=str(number)) for number, q in enumerate(misses[:limit], start=1)]

    def _distinct_misses(self, past_answers: Sequence[AnsweredQuestion]) -> List[Question]:
        # Ids are only unique within one bank, so key on id and text
        seen = set()
        misses = []
        for answer in past_answers:
            key = (answer.question_id, answer.question.text)
            if answer.is_correct or key in seen:
                continue
            seen.add(key)
            misses.append(answer.question)
        return misses
