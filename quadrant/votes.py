"""Vote construction and the one-vote-per-user replacement rule."""
from __future__ import annotations

import math
from datetime import UTC, datetime

from quadrant.types import Initiative, User, Vote

SCORE_MIN = 0
SCORE_MAX = 100


def clamp_score(value: int | float | str) -> int:
    """Coerce a slider value to an int within [0, 100]."""
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Score must be a number, got {value!r}") from exc
    if math.isnan(number):
        raise ValueError(f"Score must be a number, got {value!r}")
    # Clamp before rounding so infinities land on the bounds.
    return round(max(SCORE_MIN, min(SCORE_MAX, number)))


def make_vote(
    user: User, impact: int | float, complexity: int | float, now: datetime | None = None,
) -> Vote:
    return Vote(
        user_id=user.id,
        user_name=user.name,
        user_team=user.team,
        impact=clamp_score(impact),
        complexity=clamp_score(complexity),
        timestamp=now or datetime.now(UTC),
    )


def find_vote(initiative: Initiative, user_id: str) -> Vote | None:
    return next((v for v in initiative.votes if v.user_id == user_id), None)


def replace_vote(votes: tuple[Vote, ...], vote: Vote) -> tuple[Vote, ...]:
    """Drop any vote by the same user and append *vote* at the end."""
    return (*(v for v in votes if v.user_id != vote.user_id), vote)


def submit_vote(
    initiative: Initiative,
    user: User,
    impact: int | float,
    complexity: int | float,
    now: datetime | None = None,
) -> Initiative:
    """Return a copy of *initiative* holding exactly one vote for *user*.

    Last write wins per user; other users' votes keep their order.
    """
    vote = make_vote(user, impact, complexity, now)
    return initiative.model_copy(update={"votes": replace_vote(initiative.votes, vote)})
