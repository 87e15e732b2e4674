"""Optimistic live scoring sessions.

A ``LiveMatchSession`` is the single owner of one match's in-memory scoring
state. Operations are applied synchronously through the rally engine and the
resulting persistence writes and spectator broadcasts are queued in an outbox.
``flush`` drains that outbox to the collaborators; delivery failures are
returned to the caller and never undo a transition that was already applied.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol

from ..exceptions import BroadcastFailure, DomainException, PersistenceFailure
from ..scoring import rally

logger = logging.getLogger(__name__)

PERSIST = "persist"
BROADCAST = "broadcast"

# Engine summary keys mirrored in the match resource.
PERSISTED_FIELDS = ("status", "currentSet", "points", "completedSets", "winner")

Publisher = Callable[[str, Dict[str, Any]], Awaitable[None]]


class MatchStore(Protocol):
    async def fetch_match(self, match_id: str) -> Dict[str, Any]: ...

    async def persist_match(
        self,
        match_id: str,
        fields: Dict[str, Any],
        event: Optional[Dict[str, Any]] = None,
    ) -> None: ...


@dataclass
class Outbound:
    """A message waiting to leave the session."""

    kind: str
    payload: Dict[str, Any]
    event: Optional[Dict[str, Any]] = None


def _last_point_score(event: Dict[str, Any], before: Dict, after: Dict) -> Dict[str, int]:
    # A closing point resets the running score, so report the set it closed.
    completed_before = before["completedSets"] or []
    completed_after = after["completedSets"] or []
    if event["type"] == "POINT" and len(completed_after) > len(completed_before):
        return completed_after[-1]
    return after["points"]


def outbound_messages(
    match_id: str, event: Dict[str, Any], before: Dict, after: Dict
) -> List[Outbound]:
    """Derive the persistence write and broadcasts for one applied event."""

    changed = {
        key: after[key] for key in PERSISTED_FIELDS if after[key] != before[key]
    }
    if not changed:
        return []

    messages = [Outbound(PERSIST, changed, dict(event))]
    etype = event["type"]

    def broadcast(payload: Dict[str, Any]) -> None:
        messages.append(Outbound(BROADCAST, {"matchId": match_id, **payload}))

    if etype == "START":
        broadcast({"type": "match_start", "status": after["status"]})

    if etype == "POINT" or (etype == "ADJUST" and "points" in changed):
        score = _last_point_score(event, before, after)
        broadcast(
            {
                "type": "score",
                "setNumber": before["currentSet"],
                "scoreA": score["A"],
                "scoreB": score["B"],
            }
        )

    set_closed = len(after["completedSets"] or []) > len(before["completedSets"] or [])
    if set_closed and after["status"] == rally.IN_PROGRESS:
        broadcast(
            {
                "type": "set_complete",
                "setNumber": before["currentSet"],
                "completedSets": after["completedSets"],
                "setsWon": after["setsWon"],
            }
        )

    if after["status"] == rally.COMPLETED and before["status"] != rally.COMPLETED:
        broadcast(
            {
                "type": "match_end",
                "completedSets": after["completedSets"],
                "setsWon": after["setsWon"],
                "winnerSide": after["winner"],
            }
        )

    if after["status"] == rally.CANCELLED and before["status"] != rally.CANCELLED:
        broadcast({"type": "match_cancelled", "status": rally.CANCELLED})

    return messages


class LiveMatchSession:
    def __init__(self, match_id: str, state: Dict[str, Any]) -> None:
        self.match_id = match_id
        self.state = state
        self._outbox: Deque[Outbound] = deque()

    @classmethod
    async def hydrate(cls, match_id: str, store: MatchStore) -> "LiveMatchSession":
        return cls(match_id, await store.fetch_match(match_id))

    @property
    def status(self) -> str:
        return self.state["status"]

    @property
    def pending(self) -> List[Outbound]:
        return list(self._outbox)

    def snapshot(self) -> Dict[str, Any]:
        return rally.summary(self.state)

    # -- operations ---------------------------------------------------------

    def start(self) -> Dict[str, Any]:
        return self.apply({"type": "START"})

    def score_point(self, side: str) -> Dict[str, Any]:
        return self.apply({"type": "POINT", "by": side})

    def adjust_score(self, side: str, delta: int = -1) -> Dict[str, Any]:
        """Correct a side's running score without evaluating set completion."""
        return self.apply({"type": "ADJUST", "by": side, "delta": delta})

    def end_early(self) -> Dict[str, Any]:
        return self.apply({"type": "END_EARLY"})

    def cancel(self) -> Dict[str, Any]:
        return self.apply({"type": "CANCEL"})

    def apply(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``event`` locally and queue its outbound messages.

        Raises ``rally.InvalidTransition`` or ``ValueError`` without touching
        state or outbox when the engine rejects the event.
        """
        before = rally.summary(self.state)
        rally.apply(event, self.state)
        after = rally.summary(self.state)
        self._outbox.extend(outbound_messages(self.match_id, event, before, after))
        return after

    # -- synchronisation ----------------------------------------------------

    def queue_snapshot(self) -> None:
        """Queue a write of the full current state, e.g. after a failed flush."""
        snap = self.snapshot()
        self._outbox.append(
            Outbound(PERSIST, {key: snap[key] for key in PERSISTED_FIELDS})
        )

    async def flush(
        self, store: MatchStore, publish: Publisher
    ) -> List[DomainException]:
        failures: List[DomainException] = []
        while self._outbox:
            msg = self._outbox.popleft()
            try:
                if msg.kind == PERSIST:
                    await store.persist_match(self.match_id, msg.payload, event=msg.event)
                else:
                    await publish(self.match_id, msg.payload)
            except (PersistenceFailure, BroadcastFailure) as exc:
                logger.warning(
                    "Dropping %s message for match %s: %s",
                    msg.kind,
                    self.match_id,
                    exc.detail,
                )
                failures.append(exc)
        return failures

    async def refresh(self, store: MatchStore) -> Dict[str, Any]:
        """Overwrite local state with the stored match (last fetch wins)."""
        self.state = await store.fetch_match(self.match_id)
        self._outbox.clear()
        return self.snapshot()


class SessionRegistry:
    """In-process owner of live sessions, one per match."""

    def __init__(self) -> None:
        self._sessions: Dict[str, LiveMatchSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, match_id: str) -> asyncio.Lock:
        return self._locks.setdefault(match_id, asyncio.Lock())

    async def get(self, match_id: str, store: MatchStore) -> LiveMatchSession:
        live = self._sessions.get(match_id)
        if live is None:
            live = await LiveMatchSession.hydrate(match_id, store)
            self._sessions[match_id] = live
        return live

    def release_if_settled(self, live: LiveMatchSession) -> None:
        """Forget a finished session once nothing is left to deliver."""
        if live.status in rally.TERMINAL_STATUSES and not live.pending:
            self._sessions.pop(live.match_id, None)
            self._locks.pop(live.match_id, None)

    def discard(self, match_id: str) -> None:
        self._sessions.pop(match_id, None)

    def clear(self) -> None:
        self._sessions.clear()
        self._locks.clear()

    def __contains__(self, match_id: str) -> bool:
        return match_id in self._sessions


live_sessions = SessionRegistry()
