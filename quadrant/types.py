"""Immutable domain records shared by the scoring core and the store."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from quadrant.priority import Priority


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class User(_Frozen):
    id: str
    name: str
    team: str


class Vote(_Frozen):
    user_id: str
    user_name: str
    user_team: str
    impact: int = Field(ge=0, le=100)
    complexity: int = Field(ge=0, le=100)
    timestamp: datetime


class InitiativeFields(_Frozen):
    """One parsed ingestion row, before the store assigns an id."""
    team: str
    metric: str
    objective: str
    key_result: str
    priority: Priority
    name: str
    description: str = ""


class Initiative(InitiativeFields):
    id: int
    votes: tuple[Vote, ...] = ()

    def has_vote_from(self, user_id: str) -> bool:
        return any(v.user_id == user_id for v in self.votes)


# Full working set of one scoring session, in store order
Snapshot = tuple[Initiative, ...]
