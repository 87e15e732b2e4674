"""Live scoring services: in-memory sessions and the match store."""

from .live_session import (
    LiveMatchSession,
    Outbound,
    SessionRegistry,
    live_sessions,
    outbound_messages,
)
from .match_store import SqlMatchStore, state_from_row

__all__ = [
    "LiveMatchSession",
    "Outbound",
    "SessionRegistry",
    "live_sessions",
    "outbound_messages",
    "SqlMatchStore",
    "state_from_row",
]
