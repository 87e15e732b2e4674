import json

import pytest
import redis.asyncio as redis
from fastapi.testclient import TestClient
from pydantic import ValidationError

from livescore.main import app
from livescore.routers import streams
from livescore.services import live_sessions

BASE = "/api/v0/matches"


@pytest.fixture
def client():
  with TestClient(app) as c:
    yield c


def _create(client, headers, **overrides):
  body = {
    "tournamentId": "t1",
    "round": "Final",
    "courtNumber": 1,
    "scheduledAt": "2026-05-01T09:00:00Z",
    "participants": [
      {"side": "A", "name": "Alex"},
      {"side": "B", "name": "Bea"},
    ],
    "config": {"pointsToWin": 11, "sets": 1, "goldenPoint": True},
  }
  body.update(overrides)
  resp = client.post(BASE, json=body, headers=headers)
  assert resp.status_code == 200, resp.text
  return resp.json()["id"]


def _event(client, mid, headers, **event):
  return client.post(f"{BASE}/{mid}/events", json=event, headers=headers)


def test_match_create_normalizes_sides():
  from livescore.schemas import MatchCreate

  body = MatchCreate(
    participants=[
      {"side": "a", "playerIds": ["p1"]},
      {"side": "B", "name": "Bea"},
    ],
  )

  assert [p.side for p in body.participants] == ["A", "B"]
  assert body.config.pointsToWin == 11
  assert body.config.sets == 1
  assert body.config.goldenPoint is False


def test_match_create_rejects_duplicate_sides():
  from livescore.schemas import MatchCreate

  with pytest.raises(ValidationError) as exc:
    MatchCreate(
      participants=[
        {"side": "A", "name": "Alex"},
        {"side": "a", "name": "Bea"},
      ],
    )

  assert "unique sides" in str(exc.value)


def test_match_create_rejects_even_sets_and_naive_times():
  from livescore.schemas import MatchCreate

  parts = [{"side": "A", "name": "Alex"}, {"side": "B", "name": "Bea"}]
  with pytest.raises(ValidationError):
    MatchCreate(participants=parts, config={"sets": 2})
  with pytest.raises(ValidationError):
    MatchCreate(participants=parts, scheduledAt="2026-05-01T09:00:00")


def test_event_schema_requires_side_for_points():
  from livescore.schemas import EventIn

  with pytest.raises(ValidationError):
    EventIn(type="POINT")
  with pytest.raises(ValidationError):
    EventIn(type="START", delta=1)
  assert EventIn(type="ADJUST", by="b").to_event() == {
    "type": "ADJUST",
    "by": "B",
    "delta": -1,
  }


def test_create_requires_token(client):
  resp = client.post(
    BASE,
    json={"participants": [{"side": "A", "name": "Alex"}, {"side": "B", "name": "Bea"}]},
  )

  assert resp.status_code == 401
  assert resp.json()["code"] == "auth_missing_token"


def test_create_and_get_scheduled_match(client, auth_headers):
  mid = _create(client, auth_headers())

  resp = client.get(f"{BASE}/{mid}")

  assert resp.status_code == 200
  data = resp.json()
  assert data["refereeId"] == "ref-1"
  assert [p["side"] for p in data["participants"]] == ["A", "B"]
  assert data["state"]["status"] == "SCHEDULED"
  assert data["state"]["points"] is None
  assert data["state"]["config"] == {
    "pointsToWin": 11,
    "sets": 1,
    "goldenPoint": True,
  }
  assert data["events"] == []


def test_only_admin_assigns_other_referee(client, auth_headers):
  body = {
    "refereeId": "ref-2",
    "participants": [{"side": "A", "name": "Alex"}, {"side": "B", "name": "Bea"}],
  }

  denied = client.post(BASE, json=body, headers=auth_headers("ref-1"))
  allowed = client.post(BASE, json=body, headers=auth_headers("admin", is_admin=True))

  assert denied.status_code == 403
  assert denied.json()["code"] == "match_referee_forbidden"
  assert allowed.status_code == 200


def test_golden_point_match_runs_to_completion(client, auth_headers):
  headers = auth_headers()
  mid = _create(client, headers)

  assert _event(client, mid, headers, type="START").status_code == 200
  for _ in range(11):
    resp = _event(client, mid, headers, type="POINT", by="A")
    assert resp.status_code == 200

  result = resp.json()
  assert result["errors"] == []
  assert result["state"]["status"] == "COMPLETED"
  assert result["state"]["winner"] == "A"
  assert result["state"]["completedSets"] == [{"A": 11, "B": 0}]
  assert mid not in live_sessions

  data = client.get(f"{BASE}/{mid}").json()
  assert data["state"]["status"] == "COMPLETED"
  assert data["startedAt"] is not None
  assert data["endedAt"] is not None
  assert [e["seq"] for e in data["events"]] == list(range(1, 13))

  again = _event(client, mid, headers, type="POINT", by="B")
  assert again.status_code == 409
  assert again.json()["code"] == "match_invalid_transition"


def test_adjust_and_end_early(client, auth_headers):
  headers = auth_headers()
  mid = _create(client, headers, config={"pointsToWin": 11, "sets": 3})
  _event(client, mid, headers, type="START")

  resp = _event(client, mid, headers, type="ADJUST", by="A")
  assert resp.json()["state"]["points"] == {"A": 0, "B": 0}

  for side in ["A"] * 7 + ["B"] * 5:
    _event(client, mid, headers, type="POINT", by=side)

  resp = _event(client, mid, headers, type="END_EARLY")
  state = resp.json()["state"]
  assert state["status"] == "COMPLETED"
  assert state["winner"] == "A"
  assert state["completedSets"] == []


def test_cancel_scheduled_match(client, auth_headers):
  headers = auth_headers()
  mid = _create(client, headers)

  resp = _event(client, mid, headers, type="CANCEL")

  assert resp.status_code == 200
  state = resp.json()["state"]
  assert state["status"] == "CANCELLED"
  assert state["points"] is None
  assert state["completedSets"] is None


def test_scoring_requires_referee(client, auth_headers):
  mid = _create(client, auth_headers("ref-1"))

  other = _event(client, mid, auth_headers("fan"), type="START")
  admin = _event(client, mid, auth_headers("boss", is_admin=True), type="START")

  assert other.status_code == 403
  assert other.json()["code"] == "match_forbidden"
  assert admin.status_code == 200


def test_unknown_match_returns_404(client, auth_headers):
  assert client.get(f"{BASE}/missing").status_code == 404
  resp = _event(client, "missing", auth_headers(), type="START")
  assert resp.status_code == 404
  assert resp.json()["code"] == "match_not_found"


def test_malformed_event_is_validation_error(client, auth_headers):
  headers = auth_headers()
  mid = _create(client, headers)

  resp = _event(client, mid, headers, type="POINT")

  assert resp.status_code == 422
  assert resp.json()["code"] == "validation_error"


def test_live_listing_and_filters(client, auth_headers):
  headers = auth_headers()
  first = _create(client, headers)
  second = _create(client, headers, tournamentId="t2")
  _create(client, headers)
  _event(client, first, headers, type="START")
  _event(client, second, headers, type="START")

  live = client.get(f"{BASE}/live").json()
  assert sorted(m["id"] for m in live) == sorted([first, second])

  only_t2 = client.get(f"{BASE}/live", params={"tournamentId": "t2"}).json()
  assert [m["id"] for m in only_t2] == [second]

  scheduled = client.get(BASE, params={"status": "SCHEDULED"})
  assert len(scheduled.json()) == 1

  page = client.get(BASE, params={"limit": 2})
  assert len(page.json()) == 2
  assert page.headers["X-Has-More"] == "true"
  assert page.headers["X-Next-Offset"] == "2"


def test_broadcast_failure_is_reported_not_rolled_back(client, auth_headers, monkeypatch):
  headers = auth_headers()
  mid = _create(client, headers)

  async def down(channel, message):
    raise redis.ConnectionError("unavailable")

  monkeypatch.setattr(streams.redis_client, "publish", down)
  resp = _event(client, mid, headers, type="START")

  assert resp.status_code == 200
  body = resp.json()
  assert body["state"]["status"] == "IN_PROGRESS"
  assert [e["code"] for e in body["errors"]] == ["broadcast_failure"]
  assert client.get(f"{BASE}/{mid}").json()["state"]["status"] == "IN_PROGRESS"


def test_score_updates_published_to_match_channel(client, auth_headers):
  headers = auth_headers()
  mid = _create(client, headers)

  received = []
  original = streams.redis_client.publish

  async def spy(channel, message):
    received.append((channel, json.loads(message)))
    return await original(channel, message)

  streams.redis_client.publish = spy
  _event(client, mid, headers, type="START")
  _event(client, mid, headers, type="POINT", by="B")

  assert [c for c, _ in received] == [f"match-{mid}"] * 2
  assert received[1][1] == {
    "matchId": mid,
    "type": "score",
    "setNumber": 1,
    "scoreA": 0,
    "scoreB": 1,
  }


def test_refresh_discards_unsynced_local_state(client, auth_headers, monkeypatch):
  headers = auth_headers()
  mid = _create(client, headers)
  _event(client, mid, headers, type="START")

  async def offline(self, match_id, fields, event=None):
    from livescore.exceptions import PersistenceFailure

    raise PersistenceFailure(match_id, "store offline")

  from livescore.services.match_store import SqlMatchStore

  with monkeypatch.context() as m:
    m.setattr(SqlMatchStore, "persist_match", offline)
    resp = _event(client, mid, headers, type="POINT", by="A")
  assert resp.json()["state"]["points"] == {"A": 1, "B": 0}
  assert resp.json()["errors"][0]["code"] == "persistence_failure"

  refreshed = client.post(f"{BASE}/{mid}/refresh", headers=headers)
  assert refreshed.status_code == 200
  assert refreshed.json()["state"]["points"] == {"A": 0, "B": 0}


def test_sync_rewrites_unsynced_local_state(client, auth_headers, monkeypatch):
  headers = auth_headers()
  mid = _create(client, headers)
  _event(client, mid, headers, type="START")

  async def offline(self, match_id, fields, event=None):
    from livescore.exceptions import PersistenceFailure

    raise PersistenceFailure(match_id, "store offline")

  from livescore.services.match_store import SqlMatchStore

  with monkeypatch.context() as m:
    m.setattr(SqlMatchStore, "persist_match", offline)
    _event(client, mid, headers, type="POINT", by="A")
  assert client.get(f"{BASE}/{mid}").json()["state"]["points"] == {"A": 0, "B": 0}

  synced = client.post(f"{BASE}/{mid}/sync", headers=headers)

  assert synced.status_code == 200
  assert synced.json()["errors"] == []
  assert client.get(f"{BASE}/{mid}").json()["state"]["points"] == {"A": 1, "B": 0}
