"""SQLAlchemy-backed storage collaborator for scoring sessions.

Operations mirror what the scoring core needs from storage: replace the whole
initiative set of a session, read the current snapshot, replace one user's vote
on one initiative, and get notified of changes. Every successful write commits
and then publishes the fresh full snapshot.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quadrant import models
from quadrant.events import SnapshotHandler, SnapshotHub, hub as default_hub
from quadrant.priority import normalize_priority
from quadrant.types import Initiative, InitiativeFields, Snapshot, Vote

log = logging.getLogger(__name__)


class InitiativeNotFound(LookupError):
    """The initiative does not exist in the given session (e.g. replaced by a new import)."""

    def __init__(self, session_id: str, initiative_id: int):
        super().__init__(f"Initiative {initiative_id} not found in session '{session_id}'")
        self.session_id = session_id
        self.initiative_id = initiative_id


# ---------------------------------------------------------------------------
# Row <-> record conversion
# ---------------------------------------------------------------------------


def _vote_record(row: models.Vote) -> Vote:
    cast_at = row.cast_at
    if cast_at.tzinfo is None:
        cast_at = cast_at.replace(tzinfo=UTC)
    return Vote(
        user_id=row.user_id, user_name=row.user_name, user_team=row.user_team,
        impact=row.impact, complexity=row.complexity, timestamp=cast_at,
    )


def to_record(row: models.Initiative) -> Initiative:
    return Initiative(
        id=row.id, team=row.team, metric=row.metric, objective=row.objective,
        key_result=row.key_result, priority=normalize_priority(row.priority),
        name=row.name, description=row.description,
        votes=tuple(_vote_record(v) for v in row.votes),
    )


def _commit(session: Session) -> None:
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        log.exception("Storage write failed")
        raise
    session.expire_all()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def load_snapshot(session: Session, session_id: str) -> Snapshot:
    rows = session.execute(
        select(models.Initiative)
        .where(models.Initiative.session_id == session_id)
        .order_by(models.Initiative.id)
    ).scalars().all()
    return tuple(to_record(r) for r in rows)


def _get_row(session: Session, session_id: str, initiative_id: int) -> models.Initiative | None:
    return session.execute(
        select(models.Initiative).where(
            models.Initiative.id == initiative_id,
            models.Initiative.session_id == session_id,
        )
    ).scalars().first()


def get_initiative(session: Session, session_id: str, initiative_id: int) -> Initiative:
    row = _get_row(session, session_id, initiative_id)
    if row is None:
        raise InitiativeNotFound(session_id, initiative_id)
    return to_record(row)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _clear_session(session: Session, session_id: str) -> int:
    ids = select(models.Initiative.id).where(models.Initiative.session_id == session_id)
    session.execute(delete(models.Vote).where(models.Vote.initiative_id.in_(ids)))
    result = session.execute(delete(models.Initiative).where(models.Initiative.session_id == session_id))
    return result.rowcount or 0


def replace_initiatives(
    session: Session,
    session_id: str,
    records: Sequence[InitiativeFields],
    hub: SnapshotHub = default_hub,
) -> Snapshot:
    """Swap the session's whole initiative set (and its votes) for *records*."""
    removed = _clear_session(session, session_id)
    for rec in records:
        session.add(models.Initiative(
            session_id=session_id, team=rec.team, metric=rec.metric,
            objective=rec.objective, key_result=rec.key_result,
            priority=rec.priority.value, name=rec.name, description=rec.description,
        ))
    _commit(session)
    log.info("Session %s: replaced %d initiatives with %d", session_id, removed, len(records))
    snapshot = load_snapshot(session, session_id)
    hub.publish(session_id, snapshot)
    return snapshot


def replace_vote(
    session: Session,
    session_id: str,
    initiative_id: int,
    vote: Vote,
    hub: SnapshotHub = default_hub,
) -> Initiative:
    """Store *vote* as the only vote of its user on the initiative.

    Only that user's row is touched, so votes other users cast meanwhile survive.
    """
    row = _get_row(session, session_id, initiative_id)
    if row is None:
        raise InitiativeNotFound(session_id, initiative_id)
    session.execute(delete(models.Vote).where(
        models.Vote.initiative_id == row.id,
        models.Vote.user_id == vote.user_id,
    ))
    session.add(models.Vote(
        initiative_id=row.id, user_id=vote.user_id, user_name=vote.user_name,
        user_team=vote.user_team, impact=vote.impact, complexity=vote.complexity,
        cast_at=vote.timestamp,
    ))
    _commit(session)
    log.info("Session %s: vote by %s on initiative %d", session_id, vote.user_id, initiative_id)
    snapshot = load_snapshot(session, session_id)
    hub.publish(session_id, snapshot)
    return next(i for i in snapshot if i.id == initiative_id)


def delete_session(session: Session, session_id: str, hub: SnapshotHub = default_hub) -> int:
    removed = _clear_session(session, session_id)
    _commit(session)
    hub.publish(session_id, ())
    return removed


# ---------------------------------------------------------------------------
# Change notification
# ---------------------------------------------------------------------------


def watch(
    session: Session,
    session_id: str,
    handler: SnapshotHandler,
    hub: SnapshotHub = default_hub,
) -> Callable[[], None]:
    """Deliver the current snapshot now and every later one; returns a cancel handle."""
    handler(load_snapshot(session, session_id))
    return hub.subscribe(session_id, handler)
