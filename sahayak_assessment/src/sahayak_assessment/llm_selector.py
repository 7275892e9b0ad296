"""
LLM Question Selector

Alternative selection strategy that asks a hosted model for the next question.
Completion and scoring always come from the deterministic controller; the
model only proposes which unanswered question to serve. Any unusable proposal
falls back to the deterministic choice.
"""

import json
import logging
import os
import re
from typing import Optional, Sequence

from dotenv import load_dotenv
from openai import AsyncOpenAI

from sahayak_assessment.adaptive_controller import AdaptiveSessionController, SessionResult
from sahayak_assessment.question_models import AnsweredQuestion, Question

load_dotenv()

logger = logging.getLogger(__name__)


class LLMQuestionSelector:
    """Model-backed next-question selection with deterministic fallback."""

    def __init__(
        self,
        llm_client: Optional[AsyncOpenAI] = None,
        controller: Optional[AdaptiveSessionController] = None
    ):
        self.controller = controller or AdaptiveSessionController()
        self.model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.llm_client = llm_client
        if self.llm_client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if api_key:
                self.llm_client = AsyncOpenAI(api_key=api_key)

    async def select_next(
        self,
        bank: Sequence[Question],
        answered: Sequence[AnsweredQuestion],
        target_count: int
    ) -> SessionResult:
        """
        Same contract as AdaptiveSessionController.select_next.

        Raises:
            InvalidInputError: If the inputs break the preconditions
        """
        fallback = self.controller.select_next(bank, answered, target_count)
        if fallback.is_complete or not self.llm_client:
            return fallback

        answered_ids = {a.question_id for a in answered}
        unanswered = {q.question_id: q for q in bank if q.question_id not in answered_ids}

        proposed_id = await self._propose(unanswered.values(), answered, target_count)
        if proposed_id is None:
            return fallback

        if proposed_id not in unanswered:
            logger.warning(
                f"⚠️ [LLMQuestionSelector] Model proposed unavailable question {proposed_id!r}, "
                f"using {fallback.next_question.question_id}"
            )
            return fallback

        return SessionResult.continue_with(unanswered[proposed_id])

    async def _propose(self, unanswered, answered: Sequence[AnsweredQuestion], target_count: int) -> Optional[str]:
        if answered:
            history = "\n".join(
                f"- Question {a.question_id} (Difficulty: {a.difficulty}): "
                f"{'Correct' if a.is_correct else 'Incorrect'}"
                for a in reversed(answered)
            )
        else:
            history = "This is the first question."

        available = "\n".join(
            f'- Question {q.question_id}: "{q.text}" (Difficulty: {q.difficulty})'
            for q in unanswered
        )

        prompt = f"""You are facilitating an adaptive test for a student. Select the best next question.

Questions to ask in this session: {target_count}
Questions answered so far: {len(answered)}

Student's answer history (most recent first):
{history}

If the student is doing well, especially on hard questions, choose a slightly harder question.
If they are struggling, especially on easy questions, choose an easier one.

Unanswered questions (choose ONLY from these):
{available}

Return ONLY a JSON object with this exact format:
{{"questionId": "<id of the chosen question>"}}"""

        try:
            completion = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You are an adaptive assessment engine. Return only valid JSON."},
                    {"role": "user", "content": prompt}
                ],
                temperature=0.3,
                max_tokens=60
            )

            content = completion.choices[0].message.content.strip()
            json_match = re.search(r'\{[^}]+\}', content, re.DOTALL)
            result = json.loads(json_match.group(0) if json_match else content)
            question_id = result.get("questionId")
            return str(question_id) if question_id is not None else None

        except Exception as e:
            logger.warning(f"⚠️ [LLMQuestionSelector] Selection failed: {e}, using deterministic choice")
            return None
