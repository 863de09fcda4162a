"""Tests for the SQLAlchemy store, snapshot delivery, services and settings."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from quadrant import services, store
from quadrant.config import DEFAULT_TEAMS, Settings, load_teams
from quadrant.db import clean_session_id
from quadrant.events import SnapshotHub
from quadrant.models import Base, Vote as VoteRow
from quadrant.priority import Priority
from quadrant.store import InitiativeNotFound
from quadrant.types import InitiativeFields, User
from quadrant.votes import make_vote

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
T1 = datetime(2025, 3, 1, 12, 5, tzinfo=UTC)

CSV = """team;metric;objective;kr;priority;name
Ops;Lead time;Ship faster;KR1;Alta;Automate deploys
BizDev;Revenue;Expand;KR2;Média;Partner program
Product;NPS;Delight;KR3;Baixa;Dark mode
"""

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def hub() -> SnapshotHub:
    return SnapshotHub()


@pytest.fixture()
def seeded(session: Session, hub: SnapshotHub):
    records = [
        InitiativeFields(team="Ops", metric="m", objective="o", key_result="k",
                         priority=Priority.HIGH, name="Automate deploys"),
        InitiativeFields(team="BizDev", metric="m", objective="o", key_result="k",
                         priority=Priority.LOW, name="Partner program"),
    ]
    return store.replace_initiatives(session, "q1", records, hub=hub)


alice = User(id="u1", name="Alice", team="Ops")
bob = User(id="u2", name="Bob", team="Board")


# =========================================================================
# Store
# =========================================================================


class TestReplaceInitiatives:
    def test_assigns_ids_and_empty_votes(self, seeded):
        assert len(seeded) == 2
        assert all(i.id for i in seeded)
        assert all(i.votes == () for i in seeded)
        assert [i.name for i in seeded] == ["Automate deploys", "Partner program"]

    def test_replaces_prior_set_and_votes(self, session, seeded, hub):
        store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 50, 50, T0), hub=hub)
        new = [InitiativeFields(team="Ops", metric="m", objective="o", key_result="k",
                                priority=Priority.MEDIUM, name="Only one")]
        snapshot = store.replace_initiatives(session, "q1", new, hub=hub)
        assert [i.name for i in snapshot] == ["Only one"]
        assert session.execute(select(VoteRow)).scalars().all() == []

    def test_sessions_are_isolated(self, session, seeded, hub):
        other = [InitiativeFields(team="Ops", metric="m", objective="o", key_result="k",
                                  priority=Priority.LOW, name="Elsewhere")]
        store.replace_initiatives(session, "q2", other, hub=hub)
        assert len(store.load_snapshot(session, "q1")) == 2
        assert [i.name for i in store.load_snapshot(session, "q2")] == ["Elsewhere"]


class TestReplaceVote:
    def test_stores_vote(self, session, seeded, hub):
        init = store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 70, 30, T0), hub=hub)
        (vote,) = init.votes
        assert (vote.user_id, vote.impact, vote.complexity) == ("u1", 70, 30)
        assert vote.timestamp == T0

    def test_same_user_replaced(self, session, seeded, hub):
        store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 10, 10, T0), hub=hub)
        store.replace_vote(session, "q1", seeded[0].id, make_vote(bob, 90, 90, T0), hub=hub)
        init = store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 60, 40, T1), hub=hub)
        assert [v.user_id for v in init.votes] == ["u2", "u1"]
        assert init.votes[-1].impact == 60
        rows = session.execute(select(VoteRow).where(VoteRow.user_id == "u1")).scalars().all()
        assert len(rows) == 1

    def test_missing_initiative(self, session, seeded, hub):
        with pytest.raises(InitiativeNotFound):
            store.replace_vote(session, "q1", 9999, make_vote(alice, 1, 1, T0), hub=hub)
        assert session.execute(select(VoteRow)).scalars().all() == []

    def test_wrong_session_is_not_found(self, session, seeded, hub):
        with pytest.raises(InitiativeNotFound):
            store.replace_vote(session, "other", seeded[0].id, make_vote(alice, 1, 1, T0), hub=hub)

    def test_failed_commit_rolls_back_and_propagates(self, session, seeded, hub):
        received = []
        store.watch(session, "q1", received.append, hub=hub)
        # A pending row for the same user collides with the new one on flush.
        session.add(VoteRow(initiative_id=seeded[0].id, user_id="u1", user_name="Alice",
                            user_team="Ops", impact=1, complexity=1, cast_at=T0))
        with pytest.raises(SQLAlchemyError):
            store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 70, 30, T1), hub=hub)
        assert len(received) == 1

        assert all(i.votes == () for i in store.load_snapshot(session, "q1"))
        init = store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 70, 30, T1), hub=hub)
        assert [(v.user_id, v.impact) for v in init.votes] == [("u1", 70)]
        assert len(received) == 2

    def test_delete_session(self, session, seeded, hub):
        store.replace_vote(session, "q1", seeded[0].id, make_vote(alice, 1, 1, T0), hub=hub)
        assert store.delete_session(session, "q1", hub=hub) == 2
        assert store.load_snapshot(session, "q1") == ()


class TestWatch:
    def test_initial_and_change_snapshots(self, session, seeded, hub):
        received = []
        cancel = store.watch(session, "q1", received.append, hub=hub)
        assert len(received) == 1
        assert len(received[0]) == 2

        store.replace_vote(session, "q1", seeded[1].id, make_vote(bob, 80, 20, T0), hub=hub)
        assert len(received) == 2
        latest = {i.id: i for i in received[-1]}
        assert len(latest[seeded[1].id].votes) == 1
        assert len(received[-1]) == 2

        cancel()
        store.replace_vote(session, "q1", seeded[1].id, make_vote(alice, 1, 1, T0), hub=hub)
        assert len(received) == 2

    def test_other_session_not_delivered(self, session, seeded, hub):
        received = []
        store.watch(session, "q2", received.append, hub=hub)
        store.replace_vote(session, "q1", seeded[0].id, make_vote(bob, 5, 5, T0), hub=hub)
        assert received == [()]


class TestSnapshotHub:
    def test_failing_handler_does_not_block_others(self):
        hub = SnapshotHub()
        seen = []

        def broken(snapshot):
            raise RuntimeError("boom")

        hub.subscribe("s", broken)
        hub.subscribe("s", seen.append)
        hub.publish("s", ())
        assert seen == [()]

    def test_cancel_is_idempotent(self):
        hub = SnapshotHub()
        cancel = hub.subscribe("s", lambda snap: None)
        assert hub.subscriber_count("s") == 1
        cancel()
        cancel()
        assert hub.subscriber_count("s") == 0


# =========================================================================
# Services
# =========================================================================


class TestServices:
    def test_import_text(self, session):
        snapshot = services.import_text(session, "demo", CSV)
        assert [i.priority for i in snapshot] == [Priority.HIGH, Priority.MEDIUM, Priority.LOW]

    def test_import_rejection_keeps_existing(self, session):
        from quadrant.importer import CsvImportError
        services.import_text(session, "demo", CSV)
        with pytest.raises(CsvImportError):
            services.import_text(session, "demo", "team;metric\n")
        assert len(store.load_snapshot(session, "demo")) == 3

    def test_cast_vote_round(self, session):
        snapshot = services.import_text(session, "demo", CSV)
        target = snapshot[1].id
        services.cast_vote(session, "demo", target, alice, 20, 30, now=T0)
        init = services.cast_vote(session, "demo", target, alice, 150, -10, now=T1)
        (vote,) = init.votes
        assert (vote.impact, vote.complexity) == (100, 0)

    def test_cast_vote_not_found(self, session):
        services.import_text(session, "demo", CSV)
        with pytest.raises(InitiativeNotFound):
            services.cast_vote(session, "demo", 424242, alice, 20, 30)

    def test_queue_advances(self, session):
        snapshot = services.import_text(session, "demo", CSV)
        queue = services.voting_queue(session, "demo", "u1")
        assert [i.name for i in queue] == ["Automate deploys", "Partner program", "Dark mode"]
        services.cast_vote(session, "demo", queue[0].id, alice, 50, 50)
        assert services.voting_queue(session, "demo", "u1")[0].name == "Partner program"
        assert len(services.voting_queue(session, "demo", "u2")) == len(snapshot)

    def test_matrix_weighting_and_filters(self, session):
        snapshot = services.import_text(session, "demo", CSV)
        ops_item = snapshot[0]
        services.cast_vote(session, "demo", ops_item.id, alice, 80, 60)
        services.cast_vote(session, "demo", ops_item.id, bob, 40, 20)
        services.cast_vote(session, "demo", snapshot[2].id, bob, 10, 90)

        result = services.matrix(session, "demo", "Board")
        assert result["plotted"] == 2
        point = next(p for p in result["points"] if p["id"] == ops_item.id)
        assert point["avg_impact"] == pytest.approx(160 / 3)
        assert point["avg_complexity"] == pytest.approx(140 / 3)
        assert point["quadrant"] == "quick_wins"

        filtered = services.matrix(session, "demo", "Board", priority="Low")
        assert filtered["shown"] == 1
        assert filtered["points"][0]["quadrant"] == "thankless_tasks"
        assert services.matrix(session, "demo", "Board", team="BizDev")["shown"] == 0

    def test_compute_stats(self, session):
        snapshot = services.import_text(session, "demo", CSV)
        services.cast_vote(session, "demo", snapshot[0].id, alice, 50, 50)
        stats = services.compute_stats(store.load_snapshot(session, "demo"), "u1")
        assert stats["total"] == 3
        assert stats["by_priority"] == {"High": 1, "Medium": 1, "Low": 1}
        assert stats["by_team"] == {"Ops": 1, "BizDev": 1, "Product": 1}
        assert stats["pending_votes"] == 2

    def test_stats_on_empty_session(self):
        stats = services.compute_stats(())
        assert stats["total"] == 0
        assert stats["by_priority"] == {"High": 0, "Medium": 0, "Low": 0}

    def test_initiative_detail_without_votes(self, session):
        snapshot = services.import_text(session, "demo", CSV)
        detail = services.initiative_detail(snapshot[0], "Board", "u1")
        assert detail["avg_impact"] is None
        assert detail["quadrant"] is None
        assert detail["my_vote"] is None


# =========================================================================
# Session ids and settings
# =========================================================================


class TestCleanSessionId:
    @pytest.mark.parametrize("raw,expected", [
        ("planning-q1", "planning-q1"),
        ("  Planning Q1 ", "planning-q1"),
        ("Team/Board:2025", "team-board-2025"),
        ("under_score", "under_score"),
    ])
    def test_cleans(self, raw, expected):
        assert clean_session_id(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   "])
    def test_rejects_empty(self, raw):
        with pytest.raises(ValueError):
            clean_session_id(raw)


class TestSettings:
    def test_defaults_when_file_missing(self, tmp_path):
        settings = Settings(teams_file=tmp_path / "missing.yaml")
        assert settings.teams == list(DEFAULT_TEAMS)
        assert settings.oversight_team == "Board"

    def test_yaml_teams(self, tmp_path):
        path = tmp_path / "teams.yaml"
        path.write_text("teams:\n  - Engineering\n  - Design\n  - Leadership\n", encoding="utf-8")
        settings = Settings(teams_file=path)
        assert settings.teams == ["Engineering", "Design", "Leadership"]
        assert settings.oversight_team == "Leadership"

    def test_malformed_yaml_falls_back(self, tmp_path):
        path = tmp_path / "teams.yaml"
        path.write_text("teams: not-a-list\n", encoding="utf-8")
        assert load_teams(path) == list(DEFAULT_TEAMS)

    def test_env_db_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUADRANT_DB_PATH", str(tmp_path / "x.db"))
        assert Settings(teams=["A"]).database_path == tmp_path / "x.db"
