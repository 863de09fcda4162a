from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

# Last entry is the oversight team whose impact votes count double
DEFAULT_TEAMS: tuple[str, ...] = ("Ops", "Product Marketing", "Product", "BizDev", "Board")


def _resolve_project_root() -> Path:
    override = os.getenv("QUADRANT_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    return Path(value).expanduser() if value else default


def load_teams(path: Path) -> list[str]:
    """Read a ``teams:`` list from YAML; defaults when missing or malformed."""
    if not path.exists():
        return list(DEFAULT_TEAMS)
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    teams = data.get("teams") if isinstance(data, dict) else None
    if not isinstance(teams, list):
        log.warning("Ignoring %s: expected a 'teams' list", path)
        return list(DEFAULT_TEAMS)
    cleaned = [str(t).strip() for t in teams if str(t).strip()]
    return cleaned or list(DEFAULT_TEAMS)


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    database_path: Path = Field(
        default_factory=lambda: _env_path("QUADRANT_DB_PATH", _resolve_project_root() / "data" / "quadrant.db")
    )
    teams_file: Path = Field(
        default_factory=lambda: _env_path("QUADRANT_TEAMS_FILE", _resolve_project_root() / "config" / "teams.yaml")
    )
    teams: list[str] = Field(default_factory=list)

    def model_post_init(self, context: Any) -> None:
        if not self.teams:
            self.teams = load_teams(self.teams_file)

    @property
    def oversight_team(self) -> str:
        return self.teams[-1]

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
