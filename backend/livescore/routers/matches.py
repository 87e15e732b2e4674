# backend/livescore/routers/matches.py
import logging
import uuid
from typing import Sequence

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Match, MatchParticipant, ScoreEvent
from ..schemas import (
    EventIn,
    MatchCreate,
    MatchIdOut,
    MatchOut,
    MatchStateOut,
    MatchStatus,
    MatchSummaryOut,
    ParticipantOut,
    ScoreEventOut,
    ScoringResultOut,
)
from .streams import broadcast
from ..scoring import rally
from ..services.live_session import LiveMatchSession, live_sessions
from ..services.match_store import SqlMatchStore, state_from_row
from ..exceptions import DomainException, MatchTransitionRejected, http_problem
from .auth import CurrentUser, get_current_user, limiter, scoring_rate_limit
from ..time_utils import coerce_utc

logger = logging.getLogger(__name__)

# Resource-only prefix; versioning is added in main.py
router = APIRouter(prefix="/matches", tags=["matches"])


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
        if parts:
            return parts[-1]
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def _state_out(summary: dict) -> MatchStateOut:
    return MatchStateOut(**summary)


def _summary_out(
    m: Match, parts: Sequence[MatchParticipant], out_cls=MatchSummaryOut, **extra
):
    return out_cls(
        id=m.id,
        tournamentId=m.tournament_id,
        round=m.round,
        courtNumber=m.court_number,
        refereeId=m.referee_id,
        scheduledAt=coerce_utc(m.scheduled_at),
        startedAt=coerce_utc(m.started_at),
        endedAt=coerce_utc(m.ended_at),
        participants=[
            ParticipantOut(
                id=p.id, side=p.side, name=p.name, playerIds=p.player_ids or []
            )
            for p in sorted(parts, key=lambda part: part.side)
        ],
        state=_state_out(rally.summary(state_from_row(m))),
        **extra,
    )


async def _participants_by_match(
    session: AsyncSession, match_ids: Sequence[str]
) -> dict[str, list[MatchParticipant]]:
    grouped: dict[str, list[MatchParticipant]] = {mid: [] for mid in match_ids}
    if not match_ids:
        return grouped
    rows = (
        await session.execute(
            select(MatchParticipant).where(MatchParticipant.match_id.in_(match_ids))
        )
    ).scalars().all()
    for part in rows:
        grouped.setdefault(part.match_id, []).append(part)
    return grouped


async def _load_match(session: AsyncSession, mid: str) -> Match:
    m = (
        await session.execute(
            select(Match).where(Match.id == mid, Match.deleted_at.is_(None))
        )
    ).scalar_one_or_none()
    if not m:
        raise http_problem(
            status_code=404,
            detail="match not found",
            code="match_not_found",
        )
    return m


def _require_referee(m: Match, user: CurrentUser) -> None:
    if not user.can_referee(m.referee_id):
        raise http_problem(
            status_code=403,
            detail="forbidden",
            code="match_forbidden",
        )


def _result(live: LiveMatchSession, failures: list[DomainException]) -> ScoringResultOut:
    return ScoringResultOut(
        matchId=live.match_id,
        state=_state_out(live.snapshot()),
        errors=[f.to_problem() for f in failures],
    )


# GET /api/v0/matches
@router.get("", response_model=list[MatchSummaryOut])
async def list_matches(
    response: Response,
    status: MatchStatus | None = None,
    tournamentId: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Match).where(Match.deleted_at.is_(None))
    if status:
        stmt = stmt.where(Match.status == status)
    if tournamentId:
        stmt = stmt.where(Match.tournament_id == tournamentId)

    stmt = stmt.order_by(Match.scheduled_at.desc().nullsfirst(), Match.created_at.desc())
    stmt = stmt.offset(offset).limit(limit + 1)
    result = (await session.execute(stmt)).scalars().all()

    has_more = len(result) > limit
    matches = result[:limit]
    next_offset = offset + limit if has_more else None
    parts = await _participants_by_match(session, [m.id for m in matches])

    response.headers["X-Limit"] = str(limit)
    response.headers["X-Offset"] = str(offset)
    response.headers["X-Has-More"] = "true" if has_more else "false"
    if next_offset is not None:
        response.headers["X-Next-Offset"] = str(next_offset)

    return [_summary_out(m, parts.get(m.id, [])) for m in matches]


# GET /api/v0/matches/live
@router.get("/live", response_model=list[MatchSummaryOut])
async def list_live_matches(
    tournamentId: str | None = None,
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Match).where(
        Match.deleted_at.is_(None), Match.status == rally.IN_PROGRESS
    )
    if tournamentId:
        stmt = stmt.where(Match.tournament_id == tournamentId)
    matches = (
        await session.execute(stmt.order_by(Match.started_at.asc()))
    ).scalars().all()
    parts = await _participants_by_match(session, [m.id for m in matches])
    return [_summary_out(m, parts.get(m.id, [])) for m in matches]


# POST /api/v0/matches
@router.post("", response_model=MatchIdOut)
async def create_match(
    body: MatchCreate,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
) -> MatchIdOut:
    referee_id = body.refereeId or user.id
    if referee_id != user.id and not user.is_admin:
        raise http_problem(
            status_code=403,
            detail="only admins can assign another referee",
            code="match_referee_forbidden",
        )

    cfg = rally.normalize_config(body.config.model_dump())
    mid = uuid.uuid4().hex
    m = Match(
        id=mid,
        tournament_id=body.tournamentId,
        round=body.round,
        court_number=body.courtNumber,
        referee_id=referee_id,
        points_to_win=cfg["pointsToWin"],
        sets=cfg["sets"],
        golden_point=cfg["goldenPoint"],
        status=rally.SCHEDULED,
        scheduled_at=(
            body.scheduledAt.replace(tzinfo=None) if body.scheduledAt else None
        ),
    )
    session.add(m)
    # Flush the match first so participant foreign keys resolve.
    await session.flush()
    for part in body.participants:
        session.add(
            MatchParticipant(
                id=uuid.uuid4().hex,
                match_id=mid,
                side=part.side,
                name=part.name,
                player_ids=list(part.playerIds),
            )
        )
    await session.commit()
    logger.info("Created match %s refereed by %s", mid, referee_id)
    return MatchIdOut(id=mid)


# GET /api/v0/matches/{mid}
@router.get("/{mid}", response_model=MatchOut)
async def get_match(mid: str, session: AsyncSession = Depends(get_session)):
    m = await _load_match(session, mid)
    parts = await _participants_by_match(session, [mid])
    events = (
        await session.execute(
            select(ScoreEvent)
            .where(ScoreEvent.match_id == mid)
            .order_by(ScoreEvent.seq)
        )
    ).scalars().all()

    return _summary_out(
        m,
        parts.get(mid, []),
        out_cls=MatchOut,
        events=[
            ScoreEventOut(
                id=e.id,
                seq=e.seq,
                type=e.type,
                payload=e.payload,
                createdAt=coerce_utc(e.created_at),
            )
            for e in events
        ],
    )


# POST /api/v0/matches/{mid}/events
async def append_event(
    mid: str,
    ev: EventIn,
    session: AsyncSession,
    user: CurrentUser,
) -> ScoringResultOut:
    m = await _load_match(session, mid)
    _require_referee(m, user)
    store = SqlMatchStore(session)

    async with live_sessions.lock(mid):
        live = await live_sessions.get(mid, store)
        previous = live.status
        try:
            live.apply(ev.to_event())
        except rally.InvalidTransition as exc:
            raise MatchTransitionRejected(str(exc))
        except ValueError as exc:
            raise http_problem(
                status_code=400,
                detail=str(exc),
                code="match_event_invalid",
            )
        failures = await live.flush(store, broadcast)
        if not failures:
            live_sessions.release_if_settled(live)

    if live.status != previous:
        logger.info("Match %s moved %s -> %s", mid, previous, live.status)
    return _result(live, failures)


@router.post("/{mid}/events", response_model=ScoringResultOut)
@limiter.limit(scoring_rate_limit, key_func=_client_ip)
async def append_event_route(
    request: Request,
    mid: str,
    ev: EventIn,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
):
    return await append_event(mid, ev, session, user)


# POST /api/v0/matches/{mid}/refresh
@router.post("/{mid}/refresh", response_model=ScoringResultOut)
async def refresh_match(
    mid: str,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
):
    """Replace the referee's live state with what storage holds."""
    m = await _load_match(session, mid)
    _require_referee(m, user)
    store = SqlMatchStore(session)
    async with live_sessions.lock(mid):
        live = await live_sessions.get(mid, store)
        await live.refresh(store)
    return _result(live, [])


# POST /api/v0/matches/{mid}/sync
@router.post("/{mid}/sync", response_model=ScoringResultOut)
async def sync_match(
    mid: str,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
):
    """Write the referee's full live state again after a failed delivery."""
    m = await _load_match(session, mid)
    _require_referee(m, user)
    store = SqlMatchStore(session)
    async with live_sessions.lock(mid):
        live = await live_sessions.get(mid, store)
        live.queue_snapshot()
        failures = await live.flush(store, broadcast)
        if not failures:
            live_sessions.release_if_settled(live)
    return _result(live, failures)
