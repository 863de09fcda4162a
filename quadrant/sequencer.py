"""Per-user voting queue: what to score next."""
from __future__ import annotations

from collections.abc import Iterable

from quadrant.priority import priority_rank
from quadrant.types import Initiative


def _queue_key(init: Initiative) -> tuple[int, str, str]:
    # Team names compare case-insensitively; exact spelling breaks ties.
    return -priority_rank(init.priority), init.team.casefold(), init.team


def build_queue(initiatives: Iterable[Initiative], user_id: str) -> list[Initiative]:
    """Initiatives *user_id* has not voted on, highest priority first, then by team.

    Recomputed from the snapshot on every call; an empty list means the user
    has scored everything.
    """
    pending = [i for i in initiatives if not i.has_vote_from(user_id)]
    pending.sort(key=_queue_key)
    return pending


def next_initiative(initiatives: Iterable[Initiative], user_id: str) -> Initiative | None:
    queue = build_queue(initiatives, user_id)
    return queue[0] if queue else None
