"""
Answer Grader

Hybrid approach for judging a student's answer:
1. Exact match against the answer key (after normalization)
2. Multiple choice resolved locally (option letter or option text)
3. LLM grading for open answers that are not an exact match
4. Keyword overlap heuristic when no LLM is available
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI

from sahayak_assessment.question_models import Question, parse_flag

load_dotenv()

logger = logging.getLogger(__name__)

STOPWORDS = {
    "a", "an", "the", "of", "to", "in", "on", "and", "or", "is", "are", "was",
    "were", "it", "its", "by", "for", "with", "as", "at", "that", "this", "be",
}


@dataclass(frozen=True)
class GradeResult:
    is_correct: bool
    feedback: str
    method: str  # "exact", "choice", "llm", "heuristic", "empty"


def normalize_answer(text: str) -> str:
    """Lowercase, collapse whitespace and strip surrounding punctuation."""
    text = re.sub(r"\s+", " ", (text or "").strip().lower())
    return text.strip(" .,;:!?\"'")


class AnswerGrader:
    """
    Grades student answers as correct or incorrect.

    Lenient with spelling and phrasing on open answers (via the LLM),
    strict on multiple choice.
    """

    KEYWORD_OVERLAP_THRESHOLD = 0.6

    def __init__(self, llm_client: Optional[AsyncOpenAI] = None, use_llm: Optional[bool] = None):
        self.model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        if use_llm is None:
            use_llm = os.getenv("GRADER_USE_LLM", "true").lower() == "true"

        # An explicitly passed client always wins over the environment
        self.llm_client: Optional[AsyncOpenAI] = llm_client
        if self.llm_client is None and use_llm:
            api_key = os.getenv("OPENAI_API_KEY")
            if api_key:
                self.llm_client = AsyncOpenAI(api_key=api_key)

    async def grade(self, question: Question, student_answer: str) -> GradeResult:
        """
        Grade a student answer.

        Args:
            question: The question that was asked
            student_answer: The student's free-text answer

        Returns:
            GradeResult with the verdict and one-sentence feedback
        """
        if not student_answer or not student_answer.strip():
            return GradeResult(False, "No answer was given.", "empty")

        if question.is_multiple_choice:
            return self._grade_choice(question, student_answer)

        if normalize_answer(student_answer) == normalize_answer(question.answer):
            return GradeResult(True, "Your answer matches the expected answer.", "exact")

        if self.llm_client:
            return await self._llm_grade(question, student_answer)
        return self._heuristic_grade(question, student_answer)

    def _grade_choice(self, question: Question, student_answer: str) -> GradeResult:
        chosen = self._resolve_option(question.options or (), student_answer)
        expected = self._resolve_option(question.options or (), question.answer)
        is_correct = normalize_answer(chosen) == normalize_answer(expected)
        if is_correct:
            return GradeResult(True, "Correct choice.", "choice")
        return GradeResult(False, f"The correct choice was: {expected}", "choice")

    def _resolve_option(self, options, answer: str) -> str:
        """Map an option letter like "B" or "b)" to its option text."""
        cleaned = normalize_answer(answer).rstrip(")")
        if len(cleaned) == 1 and cleaned.isalpha():
            index = ord(cleaned) - ord("a")
            if 0 <= index < len(options):
                return options[index]
        for option in options:
            if normalize_answer(option) == normalize_answer(answer):
                return option
        return answer

    def _heuristic_grade(self, question: Question, student_answer: str) -> GradeResult:
        """Keyword overlap against the answer key. No LLM call."""
        key_words = self._content_words(question.answer)
        if not key_words:
            return GradeResult(False, "Your answer does not match the expected answer.", "heuristic")

        given = set(self._content_words(student_answer))
        overlap = sum(1 for word in key_words if word in given) / len(key_words)
        if overlap >= self.KEYWORD_OVERLAP_THRESHOLD:
            return GradeResult(True, "Your answer covers the key points.", "heuristic")
        return GradeResult(False, "Your answer misses key points of the expected answer.", "heuristic")

    def _content_words(self, text: str) -> List[str]:
        words = re.findall(r"[a-z0-9]+", (text or "").lower())
        return [w for w in words if w not in STOPWORDS]

    async def _llm_grade(self, question: Question, student_answer: str) -> GradeResult:
        prompt = f"""You are an expert grader for school assessments. Decide if the student's answer is correct.
Be lenient with spelling and grammar, but strict on the core concepts.

Question: {question.text}
Correct Answer / Rubric: {question.answer}
Student's Answer: {student_answer}

If the answer is substantially correct, even if phrased differently, it is correct.
If it is incorrect, incomplete, or misses the key concept, it is incorrect.

Return ONLY a JSON object with this exact format:
{{"isCorrect": true or false, "feedback": "brief one-sentence explanation"}}"""

        try:
            completion = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You are an educational grader. Return only valid JSON."},
                    {"role": "user", "content": prompt}
                ],
                temperature=0.1,
                max_tokens=150
            )

            content = completion.choices[0].message.content.strip()
            json_match = re.search(r'\{[^}]+\}', content, re.DOTALL)
            result = json.loads(json_match.group(0) if json_match else content)

            return GradeResult(
                is_correct=parse_flag(result.get("isCorrect")),
                feedback=str(result.get("feedback", "")).strip(),
                method="llm",
            )

        except Exception as e:
            logger.warning(f"⚠️ [AnswerGrader] LLM grading failed: {e}, using heuristic")
            return self._heuristic_grade(question, student_answer)
