"""SQL-backed match resource used to hydrate and persist live sessions."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import MatchNotFound, PersistenceFailure
from ..models import Match, ScoreEvent
from ..scoring import rally
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


def config_from_row(m: Match) -> Dict[str, Any]:
    return {
        "pointsToWin": m.points_to_win,
        "sets": m.sets,
        "goldenPoint": bool(m.golden_point),
    }


def state_from_row(m: Match) -> Dict[str, Any]:
    """Rebuild engine state from the persisted match columns."""

    state = rally.init_state(config_from_row(m))
    state["status"] = m.status
    state["currentSet"] = m.current_set
    if m.score_a is not None and m.score_b is not None:
        state["points"] = {"A": m.score_a, "B": m.score_b}
    if m.completed_sets is not None:
        state["completedSets"] = [
            {"A": int(s["A"]), "B": int(s["B"])} for s in m.completed_sets
        ]
    state["winner"] = m.winner_side
    return state


class SqlMatchStore:
    """Match resource API over an ``AsyncSession``.

    ``persist_match`` receives only the engine fields that changed and commits
    them together with the accepted event, so the operation log and the match
    row never drift apart.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get(self, match_id: str) -> Match:
        m = (
            await self.session.execute(
                select(Match).where(Match.id == match_id, Match.deleted_at.is_(None))
            )
        ).scalar_one_or_none()
        if m is None:
            raise MatchNotFound(match_id)
        return m

    async def fetch_match(self, match_id: str) -> Dict[str, Any]:
        m = await self._get(match_id)
        # Always read what is committed, not what this session cached.
        await self.session.refresh(m)
        return state_from_row(m)

    async def persist_match(
        self,
        match_id: str,
        fields: Dict[str, Any],
        event: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            m = await self._get(match_id)
            _apply_fields(m, fields)
            if event is not None:
                last_seq = (
                    await self.session.execute(
                        select(func.max(ScoreEvent.seq)).where(
                            ScoreEvent.match_id == match_id
                        )
                    )
                ).scalar()
                self.session.add(
                    ScoreEvent(
                        id=uuid.uuid4().hex,
                        match_id=match_id,
                        seq=(last_seq or 0) + 1,
                        type=event["type"],
                        payload=dict(event),
                    )
                )
            await self.session.commit()
        except MatchNotFound as exc:
            raise PersistenceFailure(match_id, "match no longer exists") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.warning("Persisting match %s failed", match_id, exc_info=True)
            raise PersistenceFailure(match_id, str(exc)) from exc


def _apply_fields(m: Match, fields: Dict[str, Any]) -> None:
    if "status" in fields:
        status = fields["status"]
        if status == rally.IN_PROGRESS and m.started_at is None:
            m.started_at = utcnow()
        if status in rally.TERMINAL_STATUSES and m.ended_at is None:
            m.ended_at = utcnow()
        m.status = status
    if "currentSet" in fields:
        m.current_set = fields["currentSet"]
    if "points" in fields:
        points = fields["points"] or {}
        m.score_a = points.get("A")
        m.score_b = points.get("B")
    if "completedSets" in fields:
        completed = fields["completedSets"]
        m.completed_sets = (
            [dict(s) for s in completed] if completed is not None else None
        )
    if "winner" in fields:
        m.winner_side = fields["winner"]
