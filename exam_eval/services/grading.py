"""Scoring collaborator.

``PlaceholderGrader`` produces plausible random scores until a real model is
wired in behind the ``Grader`` interface.
"""

from __future__ import annotations

import random
import re
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

_QUESTION_RE = re.compile(r"Question \d+:.*?(?=Question \d+:|$)", re.DOTALL)

_QUESTION_FEEDBACK = [
    "Good understanding of the concept. Well explained.",
    "Correct answer but could be more detailed.",
    "Partially correct. Missing some key points.",
    "Shows good analytical thinking.",
    "Needs improvement in explanation clarity.",
]

_IMPROVEMENTS = [
    "Provide more detailed explanations",
    "Include relevant examples",
    "Improve handwriting clarity",
    "Better time management",
    "Review fundamental concepts",
]


class GradingCriteria(BaseModel):
    subject: str
    max_marks: int = Field(gt=0)
    rubric: Dict[str, Any] = Field(default_factory=dict)


class QuestionScore(BaseModel):
    question: str
    score: float
    max_score: float
    feedback: str


class GradingResult(BaseModel):
    score: float
    max_score: float
    percentage: int
    feedback: str
    breakdown: List[QuestionScore] = Field(default_factory=list)
    confidence: float = 0.0
    suggested_improvements: List[str] = Field(default_factory=list)
    model: str


class Grader(Protocol):
    def grade(self, text: str, criteria: GradingCriteria) -> GradingResult: ...


def extract_questions(text: str) -> List[str]:
    return [match.strip() for match in _QUESTION_RE.findall(text)]


def overall_feedback(percentage: float) -> str:
    if percentage >= 90:
        return "Excellent work! Shows strong understanding of all concepts."
    if percentage >= 80:
        return "Good performance. Minor areas for improvement."
    if percentage >= 70:
        return "Satisfactory work. Some concepts need more clarity."
    if percentage >= 60:
        return "Below average. Significant improvement needed."
    return "Poor performance. Requires substantial study and practice."


class PlaceholderGrader:
    def __init__(self, rng: Optional[random.Random] = None, model: str = "placeholder-grader"):
        self.rng = rng or random.Random()
        self.model = model

    def grade(self, text: str, criteria: GradingCriteria) -> GradingResult:
        questions = extract_questions(text) or ["Overall answer"]
        per_question = criteria.max_marks / len(questions)

        breakdown = []
        for index, question in enumerate(questions):
            score = round(per_question * self.rng.uniform(0.3, 1.0), 2)
            breakdown.append(
                QuestionScore(
                    question=f"Question {index + 1}",
                    score=score,
                    max_score=round(per_question, 2),
                    feedback=self.rng.choice(_QUESTION_FEEDBACK),
                )
            )

        total = min(round(sum(item.score for item in breakdown), 2), float(criteria.max_marks))
        percentage = round(total / criteria.max_marks * 100)
        return GradingResult(
            score=total,
            max_score=criteria.max_marks,
            percentage=percentage,
            feedback=overall_feedback(percentage),
            breakdown=breakdown,
            confidence=0.87,
            suggested_improvements=_IMPROVEMENTS[: 3 if percentage < 70 else 2],
            model=self.model,
        )
