import asyncio
import os
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from livescore.models import Match, MatchParticipant

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

# Referee user id the demo matches are assigned to (the token "sub" claim).
DEMO_REFEREE_ID = os.getenv("DEMO_REFEREE_ID", "demo-referee")

engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

DEMO_MATCHES = [
    # id, court, round, config, side A, side B
    ("demo-singles", 1, "Round of 16", (11, 1, False), "Alex Ruiz", "Bella Fernandez"),
    ("demo-doubles", 2, "Quarter final", (11, 3, False), "Carlos / Diana", "Eli / Fiona"),
    ("demo-golden", 3, "Exhibition", (15, 1, True), "Team North", "Team South"),
]


async def main():
    async with Session() as s:
        existing = {x.id for x in (await s.execute(select(Match))).scalars().all()}
        for mid, court, round_label, (to_win, sets, golden), side_a, side_b in DEMO_MATCHES:
            if mid in existing:
                continue
            s.add(
                Match(
                    id=mid,
                    tournament_id="demo-tournament",
                    round=round_label,
                    court_number=court,
                    referee_id=DEMO_REFEREE_ID,
                    points_to_win=to_win,
                    sets=sets,
                    golden_point=golden,
                    status="SCHEDULED",
                )
            )
            await s.flush()
            for side, name in (("A", side_a), ("B", side_b)):
                s.add(
                    MatchParticipant(
                        id=f"{mid}-{side.lower()}",
                        match_id=mid,
                        side=side,
                        name=name,
                        player_ids=[],
                    )
                )
        await s.commit()

if __name__ == "__main__":
    asyncio.run(main())
