"""Quiz scoring.

``score()`` is a pure function of (quiz, answers): no clock, no I/O, no
randomness.  Scoring the same answers twice always yields the same result,
which is what lets a stored attempt be re-scored in a test and compared
with what the learner was shown.

Rules per question type:

  multiple_choice   submitted option == correct option
  multiple_select   submitted set == correct set (no partial credit)
  true_false        submitted bool == correct bool (strings don't count)
  fill_blank        exact, case-sensitive match against the accepted
                    answer (or any of them, when several are accepted).
                    No trimming or case folding: " Paris" and "paris" are
                    wrong when "Paris" is expected.

Unanswered questions are incorrect.  The percentage is points-weighted:
round(100 * correct_points / total_points), halves rounded up.
"""

from __future__ import annotations

import dataclasses
import random
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from progress_engine.models.quiz import Question, QuestionFeedback, Quiz


@dataclass(frozen=True, slots=True)
class ScoreResult:
    correct_count: int
    total_questions: int
    score_percent: int
    is_passed: bool
    feedback: tuple[QuestionFeedback, ...]

    def for_learner(self, show_correct_answers: bool) -> ScoreResult:
        """Copy safe to show the learner: correct answers and explanations
        are withheld when the quiz hides them."""
        if show_correct_answers:
            return self
        hidden = tuple(
            dataclasses.replace(f, correct_answer=None, explanation=None)
            for f in self.feedback
        )
        return dataclasses.replace(self, feedback=hidden)


def score(quiz: Quiz, answers: Mapping[str, Any]) -> ScoreResult:
    feedback: list[QuestionFeedback] = []
    correct_points = 0
    correct_count = 0

    for question in quiz.questions:
        answer = answers.get(question.id)
        is_correct = answer is not None and is_answer_correct(question, answer)
        if is_correct:
            correct_count += 1
            correct_points += question.points
        feedback.append(
            QuestionFeedback(
                question_id=question.id,
                is_correct=is_correct,
                answer=answer,
                correct_answer=question.correct_answer,
                explanation=question.explanation,
            )
        )

    score_percent = percent(correct_points, quiz.total_points)
    return ScoreResult(
        correct_count=correct_count,
        total_questions=len(quiz.questions),
        score_percent=score_percent,
        is_passed=score_percent >= quiz.passing_score_percent,
        feedback=tuple(feedback),
    )


def is_answer_correct(question: Question, answer: Any) -> bool:
    expected = question.correct_answer

    if question.type == "multiple_choice":
        return answer == expected

    if question.type == "true_false":
        return isinstance(answer, bool) and answer is bool(expected)

    if question.type == "multiple_select":
        if isinstance(answer, str) or not isinstance(answer, (list, tuple, set, frozenset)):
            return False
        return set(answer) == set(expected)

    if question.type == "fill_blank":
        if not isinstance(answer, str):
            return False
        accepted = expected if isinstance(expected, (list, tuple)) else (expected,)
        return answer in accepted

    return False


def percent(part: int | float, whole: int | float) -> int:
    """Integer percentage, halves rounded up (Python's round() would go to even)."""
    if whole <= 0:
        return 0
    value = Decimal(100) * Decimal(str(part)) / Decimal(str(whole))
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def question_order(quiz: Quiz, seed: object) -> list[str]:
    """Question ids in the order this attempt presents them.

    Randomized quizzes shuffle with a generator seeded by ``seed`` (the
    attempt id), so reloading an attempt shows the same order again.
    """
    ids = [q.id for q in quiz.questions]
    if quiz.randomize_questions:
        random.Random(str(seed)).shuffle(ids)
    return ids
