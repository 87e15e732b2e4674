from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Boolean,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    tournament_id = Column(String, nullable=True)
    round = Column(String, nullable=True)
    court_number = Column(Integer, nullable=True)
    referee_id = Column(String, nullable=True)  # user id from the auth token

    # scoring config
    points_to_win = Column(Integer, nullable=False, default=11)
    sets = Column(Integer, nullable=False, default=1)
    golden_point = Column(Boolean, nullable=False, default=False)

    # live state
    status = Column(String, nullable=False, default="SCHEDULED")
    current_set = Column(Integer, nullable=True)
    score_a = Column(Integer, nullable=True)
    score_b = Column(Integer, nullable=True)
    completed_sets = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    winner_side = Column(String, nullable=True)  # "A" | "B"

    scheduled_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_match_status", "status"),
        Index("ix_match_tournament_id", "tournament_id"),
    )


class MatchParticipant(Base):
    __tablename__ = "match_participant"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id"), nullable=False)
    side = Column(String, nullable=False)  # "A" | "B"
    name = Column(String, nullable=True)
    player_ids = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("match_id", "side", name="uq_match_participant_side"),
    )


class ScoreEvent(Base):
    __tablename__ = "score_event"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id"), nullable=False)
    seq = Column(Integer, nullable=False)  # 1-based position in the match log
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("match_id", "seq", name="uq_score_event_match_seq"),
    )
