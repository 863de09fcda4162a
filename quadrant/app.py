from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from quadrant import services, store
from quadrant.config import Settings, get_settings
from quadrant.db import clean_session_id, get_session, init_db
from quadrant.importer import CsvImportError
from quadrant.schemas import (
    ImportResult,
    InitiativeDetail,
    InitiativeOut,
    MatrixOut,
    QueueOut,
    StatsOut,
    TeamsOut,
    VoteIn,
)
from quadrant.sequencer import build_queue
from quadrant.store import InitiativeNotFound
from quadrant.types import User

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Quadrant",
    version="0.1.0",
    description=(
        "Collaborative Impact x Complexity scoring for a shared initiative backlog. "
        "Teams import initiatives, score them one by one, and read the weighted "
        "priority matrix. All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Import", "description": "Replace a session's initiatives from CSV or XLSX."},
        {"name": "Initiatives", "description": "Browse initiatives and their votes."},
        {"name": "Voting", "description": "Per-user voting queue and vote submission."},
        {"name": "Matrix", "description": "Weighted Impact x Complexity coordinates."},
        {"name": "Stats", "description": "Dashboard counts."},
        {"name": "Admin", "description": "Configuration and session management."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def app_settings() -> Settings:
    return get_settings()


def _session_id(raw: str) -> str:
    try:
        return clean_session_id(raw)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/sessions/{session_id}/import", response_model=ImportResult,
          tags=["Import"], summary="Replace the session's initiatives from a CSV or XLSX upload")
async def import_file(
    session_id: str, file: UploadFile = File(...), session: Session = Depends(db_session),
):
    sid = _session_id(session_id)
    filename = (file.filename or "").lower()
    content = await file.read()
    try:
        if filename.endswith(".csv"):
            try:
                text = content.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise HTTPException(400, "CSV files must be UTF-8 encoded") from exc
            snapshot = services.import_text(session, sid, text)
        elif filename.endswith(".xlsx"):
            tmp_path = None
            try:
                with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
                    tmp_path = Path(f.name)
                    f.write(content)
                snapshot = services.import_xlsx(session, sid, tmp_path)
            finally:
                if tmp_path:
                    tmp_path.unlink(missing_ok=True)
        else:
            raise HTTPException(400, "Only .csv and .xlsx files are supported")
    except CsvImportError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {"session_id": sid, "total_imported": len(snapshot)}


# ---------------------------------------------------------------------------
# Routes: Initiatives
# ---------------------------------------------------------------------------


@app.get("/api/sessions/{session_id}/initiatives", response_model=list[InitiativeOut],
         tags=["Initiatives"], summary="List the session's initiatives")
async def list_initiatives(
    session_id: str,
    user_id: str | None = Query(None, description="Include this user's own vote as my_vote"),
    session: Session = Depends(db_session),
):
    snapshot = store.load_snapshot(session, _session_id(session_id))
    return [services.initiative_summary(i, user_id) for i in snapshot]


@app.get("/api/sessions/{session_id}/initiatives/{initiative_id}", response_model=InitiativeDetail,
         tags=["Initiatives"], summary="Initiative detail with votes and weighted averages")
async def get_initiative(
    session_id: str,
    initiative_id: int,
    user_id: str | None = Query(None),
    session: Session = Depends(db_session),
    settings: Settings = Depends(app_settings),
):
    try:
        init = store.get_initiative(session, _session_id(session_id), initiative_id)
    except InitiativeNotFound as exc:
        raise HTTPException(404, str(exc)) from exc
    return services.initiative_detail(init, settings.oversight_team, user_id)


# ---------------------------------------------------------------------------
# Routes: Voting
# ---------------------------------------------------------------------------


@app.get("/api/sessions/{session_id}/queue", response_model=QueueOut,
         tags=["Voting"], summary="Initiatives the user still has to score, in voting order")
async def get_queue(session_id: str, user_id: str = Query(...), session: Session = Depends(db_session)):
    queue = services.voting_queue(session, _session_id(session_id), user_id)
    items = [services.initiative_summary(i) for i in queue]
    return {"current": items[0] if items else None, "remaining": len(items), "items": items}


@app.put("/api/sessions/{session_id}/initiatives/{initiative_id}/vote", response_model=InitiativeDetail,
         tags=["Voting"], summary="Submit or replace the user's vote on an initiative")
async def put_vote(
    session_id: str,
    initiative_id: int,
    body: VoteIn,
    session: Session = Depends(db_session),
    settings: Settings = Depends(app_settings),
):
    if body.user.team not in settings.teams:
        raise HTTPException(422, f"Unknown team '{body.user.team}'")
    user = User(id=body.user.id, name=body.user.name, team=body.user.team)
    try:
        init = services.cast_vote(
            session, _session_id(session_id), initiative_id, user, body.impact, body.complexity,
        )
    except InitiativeNotFound as exc:
        raise HTTPException(404, str(exc)) from exc
    return services.initiative_detail(init, settings.oversight_team, user.id)


# ---------------------------------------------------------------------------
# Routes: Matrix & Stats
# ---------------------------------------------------------------------------


@app.get("/api/sessions/{session_id}/matrix", response_model=MatrixOut,
         tags=["Matrix"], summary="Weighted coordinates of every voted initiative")
async def get_matrix(
    session_id: str,
    team: str | None = Query(None, description="Only initiatives owned by this team"),
    priority: str | None = Query(None, description="High, Medium or Low"),
    session: Session = Depends(db_session),
    settings: Settings = Depends(app_settings),
):
    return services.matrix(
        session, _session_id(session_id), settings.oversight_team, team=team, priority=priority,
    )


@app.get("/api/sessions/{session_id}/stats", response_model=StatsOut,
         tags=["Stats"], summary="Counts by priority and team, plus the user's pending votes")
async def get_stats(
    session_id: str, user_id: str | None = Query(None), session: Session = Depends(db_session),
):
    return services.compute_stats(store.load_snapshot(session, _session_id(session_id)), user_id)


# ---------------------------------------------------------------------------
# Routes: Live snapshots
# ---------------------------------------------------------------------------


@app.get("/api/sessions/{session_id}/stream", tags=["Initiatives"],
         summary="Server-sent events: the full initiative set on connect and after every change")
async def stream_snapshots(
    session_id: str, user_id: str | None = Query(None), session: Session = Depends(db_session),
):
    sid = _session_id(session_id)
    loop = asyncio.get_running_loop()
    pending: asyncio.Queue = asyncio.Queue()

    def on_snapshot(snapshot) -> None:
        loop.call_soon_threadsafe(pending.put_nowait, snapshot)

    async def stream():
        # Subscribe only once the body is iterated; the finally then always cancels.
        cancel = store.watch(session, sid, on_snapshot)
        try:
            while True:
                snapshot = await pending.get()
                payload = {
                    "type": "snapshot",
                    "initiatives": [services.initiative_summary(i, user_id) for i in snapshot],
                    "remaining": len(build_queue(snapshot, user_id)) if user_id else None,
                }
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            cancel()

    return StreamingResponse(stream(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.get("/api/teams", response_model=TeamsOut, tags=["Admin"], summary="Configured teams")
async def list_teams(settings: Settings = Depends(app_settings)):
    return {"teams": settings.teams, "oversight_team": settings.oversight_team}


@app.delete("/api/sessions/{session_id}", tags=["Admin"],
            summary="Delete all initiatives and votes of a session")
async def reset_session(session_id: str, session: Session = Depends(db_session)):
    removed = store.delete_session(session, _session_id(session_id))
    return {"ok": True, "removed": removed}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("quadrant.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
