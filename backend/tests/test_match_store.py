import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from livescore import db
from livescore.exceptions import MatchNotFound, PersistenceFailure
from livescore.models import Match, ScoreEvent
from livescore.scoring import rally
from livescore.services.live_session import LiveMatchSession
from livescore.services.match_store import SqlMatchStore


async def _seed(session, mid="m1", **kwargs):
  session.add(Match(id=mid, status=rally.SCHEDULED, **kwargs))
  await session.commit()


@pytest.mark.anyio
async def test_fetch_scheduled_match_has_no_score():
  db.get_engine()
  async with db.AsyncSessionLocal() as session:
    await _seed(session, points_to_win=15, sets=3, golden_point=True)
    state = await SqlMatchStore(session).fetch_match("m1")

  assert state["status"] == rally.SCHEDULED
  assert state["points"] is None
  assert state["completedSets"] is None
  assert state["config"] == {"pointsToWin": 15, "sets": 3, "goldenPoint": True}


@pytest.mark.anyio
async def test_fetch_missing_match_raises():
  db.get_engine()
  async with db.AsyncSessionLocal() as session:
    with pytest.raises(MatchNotFound):
      await SqlMatchStore(session).fetch_match("nope")


@pytest.mark.anyio
async def test_session_round_trip_through_store():
  db.get_engine()
  async with db.AsyncSessionLocal() as session:
    await _seed(session, sets=3, points_to_win=2, golden_point=True)
    store = SqlMatchStore(session)
    live = await LiveMatchSession.hydrate("m1", store)
    live.start()
    live.score_point("A")
    live.score_point("A")
    live.score_point("B")

    async def publish(mid, message):
      return None

    assert await live.flush(store, publish) == []

  async with db.AsyncSessionLocal() as session:
    m = (await session.execute(select(Match).where(Match.id == "m1"))).scalar_one()
    events = (
      await session.execute(
        select(ScoreEvent).where(ScoreEvent.match_id == "m1").order_by(ScoreEvent.seq)
      )
    ).scalars().all()
    restored = await SqlMatchStore(session).fetch_match("m1")

  assert m.status == rally.IN_PROGRESS
  assert m.current_set == 2
  assert (m.score_a, m.score_b) == (0, 1)
  assert m.completed_sets == [{"A": 2, "B": 0}]
  assert m.started_at is not None
  assert m.ended_at is None
  assert [e.seq for e in events] == [1, 2, 3, 4]
  assert [e.type for e in events] == ["START", "POINT", "POINT", "POINT"]
  assert events[3].payload == {"type": "POINT", "by": "B"}
  assert rally.summary(restored) == live.snapshot()


@pytest.mark.anyio
async def test_terminal_status_stamps_end_time():
  db.get_engine()
  async with db.AsyncSessionLocal() as session:
    await _seed(session)
    store = SqlMatchStore(session)
    await store.persist_match("m1", {"status": rally.CANCELLED, "winner": None})
    m = (await session.execute(select(Match).where(Match.id == "m1"))).scalar_one()

  assert m.status == rally.CANCELLED
  assert m.ended_at is not None
  assert m.started_at is None


@pytest.mark.anyio
async def test_persist_to_missing_match_is_persistence_failure():
  db.get_engine()
  async with db.AsyncSessionLocal() as session:
    with pytest.raises(PersistenceFailure) as exc:
      await SqlMatchStore(session).persist_match("gone", {"status": rally.IN_PROGRESS})

  assert exc.value.match_id == "gone"
  assert exc.value.status_code == 503


@pytest.mark.anyio
async def test_database_error_becomes_persistence_failure(monkeypatch):
  db.get_engine()
  async with db.AsyncSessionLocal() as session:
    await _seed(session)
    store = SqlMatchStore(session)

    async def broken_commit():
      raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(PersistenceFailure) as exc:
      await store.persist_match("m1", {"status": rally.IN_PROGRESS}, event={"type": "START"})

  assert exc.value.code == "persistence_failure"
  assert "disk I/O error" in exc.value.detail
