"""Rally-point scoring engine for live refereed matches.

Every rally scores a point for one side. A set is won on reaching
``pointsToWin`` either with any lead (golden point) or with a two point
margin (deuce rule). Matches are played over an odd number of sets and end as
soon as one side holds a strict majority of them.

State is a plain dict driven by events:

- ``START``: begin live scoring of a scheduled match
- ``POINT``: rally won by side ``by``
- ``ADJUST``: referee correction of side ``by`` by ``delta`` (no set logic)
- ``END_EARLY``: close the match on the in-progress set's score
- ``CANCEL``: abandon a scheduled or running match
"""
from typing import Dict, List, Optional

SCHEDULED = "SCHEDULED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

STATUSES = (SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)
SIDES = ("A", "B")
EVENT_TYPES = ("START", "POINT", "ADJUST", "END_EARLY", "CANCEL")

# Statuses each event may be applied in.
_ALLOWED_FROM = {
    "START": (SCHEDULED,),
    "POINT": (IN_PROGRESS,),
    "ADJUST": (IN_PROGRESS,),
    "END_EARLY": (IN_PROGRESS,),
    "CANCEL": (SCHEDULED, IN_PROGRESS),
}


class InvalidTransition(ValueError):
    """Raised when an event is not allowed in the match's current status."""

    def __init__(self, event_type: str, status: str) -> None:
        super().__init__(f"cannot apply {event_type} while match is {status}")
        self.event_type = event_type
        self.status = status


def normalize_config(config: Dict) -> Dict:
    """Return a validated scoring config with defaults applied.

    Config keys:
    - pointsToWin: points required to win a set (default 11)
    - sets: odd number of sets the match is played over (default 1)
    - goldenPoint: ``True`` for next-point-wins, ``False`` for win-by-2
    """
    points_to_win = config.get("pointsToWin", 11)
    sets = config.get("sets", 1)
    golden_point = config.get("goldenPoint", False)

    if isinstance(points_to_win, bool) or not isinstance(points_to_win, int):
        raise ValueError("pointsToWin must be an integer")
    if points_to_win < 1:
        raise ValueError("pointsToWin must be >= 1")
    if isinstance(sets, bool) or not isinstance(sets, int):
        raise ValueError("sets must be an integer")
    if sets < 1 or sets % 2 == 0:
        raise ValueError("sets must be a positive odd number")
    if not isinstance(golden_point, bool):
        raise ValueError("goldenPoint must be a boolean")

    return {
        "pointsToWin": points_to_win,
        "sets": sets,
        "goldenPoint": golden_point,
    }


def init_state(config: Dict) -> Dict:
    """Initialise a scheduled match. Score fields stay empty until ``START``."""
    return {
        "config": normalize_config(config),
        "status": SCHEDULED,
        "currentSet": None,
        "points": None,
        "completedSets": None,
        "winner": None,
    }


def _other(side: str) -> str:
    return "B" if side == "A" else "A"


def set_winner(points: Dict[str, int], config: Dict) -> Optional[str]:
    """Return the side that has won the set with ``points``, if any."""
    to_win = config["pointsToWin"]
    for side in SIDES:
        own, opp = points[side], points[_other(side)]
        if own < to_win:
            continue
        if config["goldenPoint"] and own > opp:
            return side
        if not config["goldenPoint"] and own - opp >= 2:
            return side
    return None


def sets_won(completed_sets: List[Dict[str, int]]) -> Dict[str, int]:
    """Count sets won per side by scanning the completed set log."""
    won = {"A": 0, "B": 0}
    for s in completed_sets or []:
        if s["A"] > s["B"]:
            won["A"] += 1
        elif s["B"] > s["A"]:
            won["B"] += 1
    return won


def _validate(event: Dict, state: Dict) -> str:
    etype = event.get("type")
    if etype not in EVENT_TYPES:
        raise ValueError("invalid scoring event")
    if etype in ("POINT", "ADJUST") and event.get("by") not in SIDES:
        raise ValueError(f"{etype} requires side A or B")
    if etype == "ADJUST":
        delta = event.get("delta", -1)
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValueError("ADJUST delta must be an integer")

    status = state["status"]
    if status not in _ALLOWED_FROM[etype]:
        raise InvalidTransition(etype, status)
    return etype


def _score_point(side: str, state: Dict) -> None:
    cfg = state["config"]
    points = state["points"]
    points[side] += 1

    won_by = set_winner(points, cfg)
    if won_by is None:
        return

    state["completedSets"].append({"A": points["A"], "B": points["B"]})
    won = sets_won(state["completedSets"])
    needed = cfg["sets"] // 2 + 1

    if (
        won["A"] >= needed
        or won["B"] >= needed
        or state["currentSet"] == cfg["sets"]
    ):
        state["status"] = COMPLETED
        state["winner"] = "A" if won["A"] > won["B"] else "B"
        return

    state["currentSet"] += 1
    state["points"] = {"A": 0, "B": 0}


def apply(event: Dict, state: Dict) -> Dict:
    """Apply a scoring event to ``state`` in place and return it.

    Raises ``ValueError`` for malformed events and ``InvalidTransition`` when
    the match status forbids the event. In both cases ``state`` is untouched.
    """
    etype = _validate(event, state)

    if etype == "START":
        state["status"] = IN_PROGRESS
        state["currentSet"] = 1
        state["points"] = {"A": 0, "B": 0}
        state["completedSets"] = []
    elif etype == "POINT":
        _score_point(event["by"], state)
    elif etype == "ADJUST":
        side = event["by"]
        delta = event.get("delta", -1)
        state["points"][side] = max(0, state["points"][side] + delta)
    elif etype == "END_EARLY":
        a, b = state["points"]["A"], state["points"]["B"]
        state["status"] = COMPLETED
        # Level scores close the match without a winner.
        state["winner"] = "A" if a > b else "B" if b > a else None
    elif etype == "CANCEL":
        state["status"] = CANCELLED
        state["winner"] = None

    return state


def summary(state: Dict) -> Dict:
    completed = state["completedSets"]
    return {
        "status": state["status"],
        "currentSet": state["currentSet"],
        "points": dict(state["points"]) if state["points"] is not None else None,
        "completedSets": [dict(s) for s in completed] if completed is not None else None,
        "setsWon": sets_won(completed) if completed is not None else None,
        "winner": state["winner"],
        "config": dict(state["config"]),
    }
