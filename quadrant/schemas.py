"""Pydantic request/response schemas for the Quadrant API."""
from __future__ import annotations

from pydantic import BaseModel, Field


class UserIn(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    team: str


class VoteIn(BaseModel):
    user: UserIn
    impact: int = Field(ge=0, le=100)
    complexity: int = Field(ge=0, le=100)


class VoteOut(BaseModel):
    user_id: str
    user_name: str
    user_team: str
    impact: int
    complexity: int
    timestamp: str


class InitiativeOut(BaseModel):
    id: int
    team: str
    metric: str
    objective: str
    key_result: str
    priority: str
    name: str
    description: str
    vote_count: int
    my_vote: VoteOut | None = None


class InitiativeDetail(InitiativeOut):
    votes: list[VoteOut] = []
    avg_impact: float | None = None
    avg_complexity: float | None = None
    quadrant: str | None = None


class ImportResult(BaseModel):
    session_id: str
    total_imported: int


class QueueOut(BaseModel):
    current: InitiativeOut | None = None
    remaining: int
    items: list[InitiativeOut]


class PlotPointOut(BaseModel):
    id: int
    name: str
    team: str
    priority: str
    avg_impact: float
    avg_complexity: float
    vote_count: int
    quadrant: str


class MatrixOut(BaseModel):
    points: list[PlotPointOut]
    shown: int
    plotted: int


class StatsOut(BaseModel):
    total: int
    by_priority: dict[str, int]
    by_team: dict[str, int]
    pending_votes: int


class TeamsOut(BaseModel):
    teams: list[str]
    oversight_team: str
