import os

def _canon_prefix(val):
    """
    Normalize API prefix to always be exactly like '/api':
      - defaults to '/api' when unset/empty
      - ensures a single leading slash
      - removes any trailing slash (except for root)
    """
    val = (val or "/api").strip()
    if not val.startswith("/"):
        val = "/" + val
    if len(val) > 1 and val.endswith("/"):
        val = val[:-1]
    return val

API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Pub/sub channel naming shared by publishers and the spectator stream.
MATCH_CHANNEL_PREFIX = "match-"


def match_channel(match_id: str) -> str:
    return f"{MATCH_CHANNEL_PREFIX}{match_id}"


def rate_limits_disabled() -> bool:
    return (os.getenv("DISABLE_RATE_LIMITS") or "").lower() == "true"
