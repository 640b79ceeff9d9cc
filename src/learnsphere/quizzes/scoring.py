"""Quiz attempt scoring and reward policies.

Pure functions: no I/O, so the same inputs always give the same score.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, Field, TypeAdapter

from learnsphere.rounding import round_half_up

DEFAULT_PASS_THRESHOLD = 70


class BucketedRewards(BaseModel):
    """Fixed points per attempt number; attempt 4 and later share one bucket."""

    mode: Literal["bucketed"] = "bucketed"
    attempt1: int = Field(10, ge=0)
    attempt2: int = Field(7, ge=0)
    attempt3: int = Field(5, ge=0)
    attempt4_plus: int = Field(3, ge=0)
    require_pass: bool = False

    def points_for(self, attempt_number: int) -> int:
        if attempt_number == 1:
            return self.attempt1
        if attempt_number == 2:
            return self.attempt2
        if attempt_number == 3:
            return self.attempt3
        return self.attempt4_plus


class DecayedRewards(BaseModel):
    """``base * pct/100 * factor^(n-1)``, only for passing attempts."""

    mode: Literal["decayed"] = "decayed"
    base_points: int = Field(20, ge=0)
    decay_factor: float = Field(0.8, gt=0, le=1)


RewardPolicy = Annotated[BucketedRewards | DecayedRewards, Field(discriminator="mode")]

_policy_adapter: TypeAdapter[BucketedRewards | DecayedRewards] = TypeAdapter(RewardPolicy)


def parse_reward_policy(
    raw: Mapping[str, Any] | None, *, default_base_points: int = 20, default_decay: float = 0.8
) -> BucketedRewards | DecayedRewards:
    """Build a policy from a quiz's stored JSON; no policy means default buckets."""
    if not raw:
        return BucketedRewards()
    data = dict(raw)
    if data.get("mode") == "decayed":
        data.setdefault("base_points", default_base_points)
        data.setdefault("decay_factor", default_decay)
    return _policy_adapter.validate_python(data)


class _Question(Protocol):
    id: str
    options: list[dict[str, Any]]


@dataclass(frozen=True)
class AttemptScore:
    raw_score: int
    total_questions: int
    percentage: int
    passed: bool
    points_earned: int
    decay_factor: float
    graded_answers: list[dict[str, Any]] = field(default_factory=list)


def _is_correct(question: _Question, selected: Any) -> bool:
    if not isinstance(selected, int) or isinstance(selected, bool):
        return False
    if selected < 0 or selected >= len(question.options):
        return False
    return bool(question.options[selected].get("is_correct"))


def score_attempt(
    questions: Sequence[_Question],
    answers: Sequence[Mapping[str, Any]],
    attempt_number: int,
    policy: BucketedRewards | DecayedRewards,
    pass_threshold: int = DEFAULT_PASS_THRESHOLD,
) -> AttemptScore:
    """Score one submission.

    ``answers`` items are ``{"question_id": ..., "selected_option": int}``.
    Only the first answer to each question counts; answers to unknown
    questions and out-of-range options are wrong. A quiz with no questions
    scores 0% and fails.
    """
    if attempt_number < 1:
        msg = f"attempt_number must be >= 1, got {attempt_number}"
        raise ValueError(msg)

    by_id = {q.id: q for q in questions}
    seen: set[str] = set()
    graded: list[dict[str, Any]] = []
    raw = 0

    for answer in answers:
        question_id = answer.get("question_id")
        selected = answer.get("selected_option")
        question = by_id.get(question_id)
        if question is None or question_id in seen:
            continue
        seen.add(question_id)
        correct = _is_correct(question, selected)
        raw += correct
        graded.append({"question_id": question_id, "selected_option": selected, "is_correct": correct})

    total = len(questions)
    percentage = round_half_up(raw / total * 100) if total else 0
    passed = total > 0 and percentage >= pass_threshold

    if isinstance(policy, DecayedRewards):
        factor = policy.decay_factor ** (attempt_number - 1)
        points = round_half_up(policy.base_points * (percentage / 100) * factor) if passed else 0
    else:
        factor = 1.0
        points = policy.points_for(attempt_number)
        if policy.require_pass and not passed:
            points = 0

    return AttemptScore(
        raw_score=raw,
        total_questions=total,
        percentage=percentage,
        passed=passed,
        points_earned=points,
        decay_factor=factor,
        graded_answers=graded,
    )
