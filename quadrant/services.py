"""Shared business logic for the Quadrant API and CLI."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from quadrant import store
from quadrant.aggregation import PlotPoint, aggregate, classify, plot_points
from quadrant.importer import parse_csv_text, parse_xlsx
from quadrant.priority import Priority
from quadrant.sequencer import build_queue
from quadrant.types import Initiative, Snapshot, User, Vote
from quadrant.votes import find_vote, submit_vote

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def vote_summary(vote: Vote) -> dict[str, Any]:
    return {
        "user_id": vote.user_id, "user_name": vote.user_name, "user_team": vote.user_team,
        "impact": vote.impact, "complexity": vote.complexity,
        "timestamp": vote.timestamp.isoformat(),
    }


def initiative_summary(init: Initiative, user_id: str | None = None) -> dict[str, Any]:
    my_vote = find_vote(init, user_id) if user_id else None
    return {
        "id": init.id, "team": init.team, "metric": init.metric,
        "objective": init.objective, "key_result": init.key_result,
        "priority": init.priority.value, "name": init.name,
        "description": init.description, "vote_count": len(init.votes),
        "my_vote": vote_summary(my_vote) if my_vote else None,
    }


def initiative_detail(init: Initiative, oversight_team: str, user_id: str | None = None) -> dict[str, Any]:
    base = initiative_summary(init, user_id)
    score = aggregate(init, oversight_team)
    base["votes"] = [vote_summary(v) for v in init.votes]
    base["avg_impact"] = score.avg_impact if score else None
    base["avg_complexity"] = score.avg_complexity if score else None
    base["quadrant"] = classify(score).value if score else None
    return base


def plot_point_summary(point: PlotPoint) -> dict[str, Any]:
    init = point.initiative
    return {
        "id": init.id, "name": init.name, "team": init.team,
        "priority": init.priority.value,
        "avg_impact": point.score.avg_impact,
        "avg_complexity": point.score.avg_complexity,
        "vote_count": point.score.vote_count,
        "quadrant": point.quadrant.value,
    }


# ---------------------------------------------------------------------------
# Filtering and stats
# ---------------------------------------------------------------------------


def filter_points(
    points: list[PlotPoint], *, team: str | None = None, priority: str | None = None,
) -> list[PlotPoint]:
    if team:
        points = [p for p in points if p.initiative.team == team]
    if priority:
        points = [p for p in points if p.initiative.priority.value == priority]
    return points


def compute_stats(snapshot: Snapshot, user_id: str | None = None) -> dict[str, Any]:
    by_priority: Counter[str] = Counter({p.value: 0 for p in Priority})
    by_team: Counter[str] = Counter()
    pending = 0
    for init in snapshot:
        by_priority[init.priority.value] += 1
        by_team[init.team] += 1
        if user_id and not init.has_vote_from(user_id):
            pending += 1
    return {
        "total": len(snapshot),
        "by_priority": dict(by_priority),
        "by_team": dict(by_team),
        "pending_votes": pending,
    }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def import_text(session: Session, session_id: str, text: str) -> Snapshot:
    """Parse CSV text and replace the session's initiatives (all or nothing)."""
    records = parse_csv_text(text)
    return store.replace_initiatives(session, session_id, records)


def import_xlsx(session: Session, session_id: str, file_path) -> Snapshot:
    records = parse_xlsx(file_path)
    return store.replace_initiatives(session, session_id, records)


def cast_vote(
    session: Session,
    session_id: str,
    initiative_id: int,
    user: User,
    impact: int,
    complexity: int,
    now: datetime | None = None,
) -> Initiative:
    """Record *user*'s vote, replacing any earlier one. Raises ``InitiativeNotFound``."""
    current = store.get_initiative(session, session_id, initiative_id)
    updated = submit_vote(current, user, impact, complexity, now)
    return store.replace_vote(session, session_id, initiative_id, updated.votes[-1])


def voting_queue(session: Session, session_id: str, user_id: str) -> list[Initiative]:
    return build_queue(store.load_snapshot(session, session_id), user_id)


def matrix(
    session: Session,
    session_id: str,
    oversight_team: str,
    *,
    team: str | None = None,
    priority: str | None = None,
) -> dict[str, Any]:
    points = plot_points(store.load_snapshot(session, session_id), oversight_team)
    shown = filter_points(points, team=team, priority=priority)
    return {
        "points": [plot_point_summary(p) for p in shown],
        "shown": len(shown),
        "plotted": len(points),
    }
