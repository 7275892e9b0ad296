"""
Question Data Models

Defines the Question and AnsweredQuestion dataclasses shared by the adaptive
controller, the grader and the persistence layer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


def parse_flag(value: Any) -> bool:
    """Read a stored or model-produced boolean; accepts True/False or "true"/"false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"Expected a boolean flag, got {value!r}")


@dataclass(frozen=True)
class Question:
    """A single question in an assessment bank."""
    question_id: str
    text: str
    answer: str
    difficulty: int  # 1 (easiest) to 5 (hardest)
    tags: Tuple[str, ...] = field(default_factory=tuple)
    question_type: str = "Short Answer"
    options: Optional[Tuple[str, ...]] = None  # Multiple choice only

    @property
    def is_multiple_choice(self) -> bool:
        return bool(self.options)

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        """
        Convert to the stored document shape.

        Args:
            include_answer: False when the question is served to a student
        """
        data: Dict[str, Any] = {
            "no": self.question_id,
            "text": self.text,
            "difficulty": self.difficulty,
            "tags": list(self.tags),
            "questionType": self.question_type,
        }
        if include_answer:
            data["answer"] = self.answer
        if self.options is not None:
            data["options"] = list(self.options)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        options = data.get("options")
        return cls(
            question_id=str(data["no"]),
            text=data.get("text", ""),
            answer=data.get("answer", ""),
            difficulty=int(data.get("difficulty", 0)),
            tags=tuple(data.get("tags") or ()),
            question_type=data.get("questionType") or "Short Answer",
            options=tuple(options) if options is not None else None,
        )


@dataclass(frozen=True)
class AnsweredQuestion:
    """A question together with the student's graded answer."""
    question: Question
    student_answer: str
    is_correct: bool

    @property
    def question_id(self) -> str:
        return self.question.question_id

    @property
    def difficulty(self) -> int:
        return self.question.difficulty

    def to_dict(self) -> Dict[str, Any]:
        data = self.question.to_dict()
        data["studentAnswer"] = self.student_answer
        data["isCorrect"] = self.is_correct
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnsweredQuestion":
        return cls(
            question=Question.from_dict(data),
            student_answer=data.get("studentAnswer", ""),
            is_correct=parse_flag(data.get("isCorrect", False)),
        )
