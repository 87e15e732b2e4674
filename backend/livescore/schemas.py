from typing import Any, Dict, List, Literal, Optional
from collections.abc import Sequence
from datetime import datetime
from pydantic import BaseModel, Field, model_validator, field_validator, ConfigDict

from .exceptions import ProblemDetail
from .time_utils import require_utc

Side = Literal["A", "B"]
MatchStatus = Literal["SCHEDULED", "IN_PROGRESS", "COMPLETED", "CANCELLED"]


class ScoringConfigIn(BaseModel):
    pointsToWin: int = Field(default=11, ge=1, le=99)
    sets: int = Field(default=1, ge=1, le=7)
    goldenPoint: bool = False

    model_config = ConfigDict(extra="forbid")

    @field_validator("sets")
    @classmethod
    def _odd_sets(cls, value: int) -> int:
        if value % 2 == 0:
            raise ValueError("sets must be an odd number")
        return value


class Participant(BaseModel):
    side: Side
    name: Optional[str] = Field(default=None, max_length=200)
    playerIds: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("name must be a string")
        return value.strip() or None


def _normalize_participants_payload(data: Any) -> Any:
    if not isinstance(data, dict) or "participants" not in data:
        return data

    raw_parts = data["participants"]
    if raw_parts is None:
        return data

    if not isinstance(raw_parts, list):
        raw_parts = list(raw_parts)

    seen_sides: set[str] = set()
    normalized_parts: list[dict[str, Any]] = []

    for part in raw_parts:
        if isinstance(part, BaseModel):
            part_data = part.model_dump()
        elif isinstance(part, dict):
            part_data = dict(part)
        else:
            raise ValueError(
                "participants must be provided as mappings or Pydantic models"
            )

        side = part_data.get("side")
        normalized_side = side.upper() if isinstance(side, str) else side
        side_key = normalized_side if isinstance(normalized_side, str) else str(normalized_side)

        if side_key in seen_sides:
            raise ValueError("participants must have unique sides")
        seen_sides.add(side_key)

        players = part_data.get("playerIds")
        if isinstance(players, Sequence) and not isinstance(players, (str, bytes, list)):
            players = list(players)
        name = part_data.get("name")
        if not players and not (isinstance(name, str) and name.strip()):
            raise ValueError("participants must include a name or at least one player")

        part_data["side"] = normalized_side
        if players is not None:
            part_data["playerIds"] = players
        normalized_parts.append(part_data)

    if seen_sides != {"A", "B"}:
        raise ValueError("participants must cover exactly sides A and B")

    return {**data, "participants": normalized_parts}


class MatchCreate(BaseModel):
    tournamentId: Optional[str] = None
    round: Optional[str] = Field(default=None, max_length=100)
    courtNumber: Optional[int] = Field(default=None, ge=1)
    refereeId: Optional[str] = None
    scheduledAt: Optional[datetime] = None
    participants: List[Participant]
    config: ScoringConfigIn = Field(default_factory=ScoringConfigIn)

    @field_validator("scheduledAt")
    def _normalize_scheduled_at(cls, v: datetime | None) -> datetime | None:
        return require_utc(v, field_name="scheduledAt")

    @model_validator(mode="before")
    def _validate_participants(cls, data: Any) -> Any:
        return _normalize_participants_payload(data)


class EventIn(BaseModel):
    """A referee action from the scoring console."""

    type: Literal["START", "POINT", "ADJUST", "END_EARLY", "CANCEL"]
    by: Optional[Side] = None
    delta: Optional[int] = None

    @field_validator("by", mode="before")
    @classmethod
    def _upper_side(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _validate_side(cls, values):
        if values.type in ("POINT", "ADJUST") and values.by is None:
            raise ValueError(f"by is required for {values.type} events")
        if values.type == "ADJUST" and values.delta is None:
            values.delta = -1
        if values.type != "ADJUST" and values.delta is not None:
            raise ValueError("delta is only allowed for ADJUST events")
        return values

    def to_event(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class MatchIdOut(BaseModel):
    """Schema returned after creating a match."""

    id: str


class ScoreOut(BaseModel):
    A: int
    B: int


class ScoringConfigOut(BaseModel):
    pointsToWin: int
    sets: int
    goldenPoint: bool


class MatchStateOut(BaseModel):
    """Live scoring state of a match."""

    status: MatchStatus
    currentSet: Optional[int] = None
    points: Optional[ScoreOut] = None
    completedSets: Optional[List[ScoreOut]] = None
    setsWon: Optional[ScoreOut] = None
    winner: Optional[Side] = None
    config: ScoringConfigOut


class ParticipantOut(BaseModel):
    """Participant information for a match."""

    id: str
    side: Side
    name: Optional[str] = None
    playerIds: List[str]


class ScoreEventOut(BaseModel):
    """An accepted referee action within a match."""

    id: str
    seq: int
    type: str
    payload: Dict[str, Any]
    createdAt: datetime


class MatchSummaryOut(BaseModel):
    """Lightweight representation of a match used in listings."""

    id: str
    tournamentId: Optional[str] = None
    round: Optional[str] = None
    courtNumber: Optional[int] = None
    refereeId: Optional[str] = None
    scheduledAt: Optional[datetime] = None
    startedAt: Optional[datetime] = None
    endedAt: Optional[datetime] = None
    participants: List[ParticipantOut] = Field(default_factory=list)
    state: MatchStateOut


class MatchOut(MatchSummaryOut):
    """Detailed match information returned by the API."""

    events: List[ScoreEventOut] = Field(default_factory=list)


class ScoringResultOut(BaseModel):
    """State after a referee action plus any delivery problems.

    ``errors`` lists persistence or broadcast failures; the state shown has
    already been applied and is kept for the referee either way.
    """

    matchId: str
    state: MatchStateOut
    errors: List[ProblemDetail] = Field(default_factory=list)
