"""
Unit Tests for LLM Question Selector

The model may only choose among unanswered questions; everything else falls
back to the deterministic controller.
"""

import pytest
import sys
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "sahayak_assessment", "src"))

from sahayak_assessment.adaptive_controller import AdaptiveSessionController, InvalidInputError
from sahayak_assessment.llm_selector import LLMQuestionSelector
from sahayak_assessment.question_models import AnsweredQuestion, Question


def fake_llm(content=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
        client.chat.completions.create = AsyncMock(return_value=completion)
    return client


@pytest.fixture
def bank():
    return [Question(str(i), f"Question {i}", f"Answer {i}", d) for i, d in enumerate([1, 2, 3, 4, 5], start=1)]


class TestLLMQuestionSelector:
    """Test suite for LLMQuestionSelector."""

    @pytest.mark.asyncio
    async def test_uses_model_choice(self, bank):
        selector = LLMQuestionSelector(llm_client=fake_llm('{"questionId": "5"}'))
        result = await selector.select_next(bank, [], 3)

        assert result.next_question.question_id == "5"

    @pytest.mark.asyncio
    async def test_answered_choice_falls_back(self, bank):
        answered = [AnsweredQuestion(bank[2], "x", True)]
        selector = LLMQuestionSelector(llm_client=fake_llm('{"questionId": "3"}'))

        result = await selector.select_next(bank, answered, 3)
        expected = AdaptiveSessionController().select_next(bank, answered, 3)
        assert result == expected
        assert result.next_question.question_id == "4"

    @pytest.mark.asyncio
    async def test_unknown_choice_falls_back(self, bank):
        selector = LLMQuestionSelector(llm_client=fake_llm('{"questionId": "42"}'))
        result = await selector.select_next(bank, [], 3)

        assert result.next_question.question_id == "3"

    @pytest.mark.asyncio
    async def test_api_error_falls_back(self, bank):
        selector = LLMQuestionSelector(llm_client=fake_llm(error=RuntimeError("timeout")))
        result = await selector.select_next(bank, [], 3)

        assert result.next_question.question_id == "3"

    @pytest.mark.asyncio
    async def test_completion_never_asks_model(self, bank):
        client = fake_llm('{"questionId": "1"}')
        answered = [AnsweredQuestion(bank[0], "x", True), AnsweredQuestion(bank[1], "x", False)]

        result = await LLMQuestionSelector(llm_client=client).select_next(bank, answered, 2)

        assert result.is_complete
        assert result.final_score == pytest.approx(33.33)
        client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_input_still_raised(self, bank):
        selector = LLMQuestionSelector(llm_client=fake_llm('{"questionId": "1"}'))
        with pytest.raises(InvalidInputError):
            await selector.select_next(bank, [], 0)

    @pytest.mark.asyncio
    async def test_prompt_lists_only_unanswered(self, bank):
        client = fake_llm('{"questionId": "2"}')
        answered = [AnsweredQuestion(bank[2], "x", False)]

        await LLMQuestionSelector(llm_client=client).select_next(bank, answered, 3)

        prompt = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        available = prompt.split("Unanswered questions")[1]
        assert '"Question 3"' not in available
        assert '"Question 2"' in available
        assert "Question 3 (Difficulty: 3): Incorrect" in prompt


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
