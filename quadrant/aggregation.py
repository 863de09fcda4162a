"""Weighted aggregation of votes into plotted matrix coordinates.

Each initiative gets two weighted means:

- **impact**: votes from the oversight team count double.
- **complexity**: votes from the initiative's owning team count double.

Initiatives without votes have no coordinate and are left off the matrix.
The matrix is split at the midpoint of both axes into four quadrants.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from quadrant.types import Initiative, Vote

MIDPOINT = 50.0


class Quadrant(StrEnum):
    QUICK_WINS = "quick_wins"
    MAJOR_PROJECTS = "major_projects"
    FILL_INS = "fill_ins"
    THANKLESS_TASKS = "thankless_tasks"


@dataclass(frozen=True)
class AggregateScore:
    avg_impact: float
    avg_complexity: float
    vote_count: int


@dataclass(frozen=True)
class PlotPoint:
    initiative: Initiative
    score: AggregateScore
    quadrant: Quadrant


def impact_weight(vote: Vote, oversight_team: str) -> int:
    return 2 if vote.user_team == oversight_team else 1


def complexity_weight(vote: Vote, owning_team: str) -> int:
    return 2 if vote.user_team == owning_team else 1


def aggregate(initiative: Initiative, oversight_team: str) -> AggregateScore | None:
    """Weighted mean impact and complexity, or ``None`` without votes."""
    if not initiative.votes:
        return None
    total_impact = total_complexity = 0
    impact_weights = complexity_weights = 0
    for vote in initiative.votes:
        w_impact = impact_weight(vote, oversight_team)
        total_impact += vote.impact * w_impact
        impact_weights += w_impact

        w_complexity = complexity_weight(vote, initiative.team)
        total_complexity += vote.complexity * w_complexity
        complexity_weights += w_complexity
    return AggregateScore(
        avg_impact=total_impact / impact_weights,
        avg_complexity=total_complexity / complexity_weights,
        vote_count=len(initiative.votes),
    )


def classify(score: AggregateScore) -> Quadrant:
    high_impact = score.avg_impact >= MIDPOINT
    high_complexity = score.avg_complexity >= MIDPOINT
    if high_impact:
        return Quadrant.MAJOR_PROJECTS if high_complexity else Quadrant.QUICK_WINS
    return Quadrant.THANKLESS_TASKS if high_complexity else Quadrant.FILL_INS


def plot_points(initiatives: Iterable[Initiative], oversight_team: str) -> list[PlotPoint]:
    points: list[PlotPoint] = []
    for init in initiatives:
        score = aggregate(init, oversight_team)
        if score is None:
            continue
        points.append(PlotPoint(initiative=init, score=score, quadrant=classify(score)))
    return points
