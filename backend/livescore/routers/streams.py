import asyncio
import json
import logging
from contextlib import suppress

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import redis.asyncio as redis

from ..config import REDIS_URL, match_channel
from ..exceptions import BroadcastFailure


router = APIRouter()
logger = logging.getLogger(__name__)

redis_client = redis.from_url(REDIS_URL, decode_responses=True)


async def broadcast(mid: str, message: dict) -> None:
    """Publish a live update for a match to all subscribers.

    Raises ``BroadcastFailure`` when Redis is unreachable so the caller can
    surface the problem without touching its own state.
    """
    try:
        await redis_client.publish(match_channel(mid), json.dumps(message))
    except redis.RedisError as exc:
        raise BroadcastFailure(mid, str(exc) or exc.__class__.__name__) from exc


@router.websocket("/matches/{mid}/stream")
async def match_stream(ws: WebSocket, mid: str) -> None:
    """Read-only spectator stream of a match's live updates."""
    try:
        async with redis_client.pubsub() as pubsub:
            # Subscribed before the handshake completes.
            await pubsub.subscribe(match_channel(mid))
            await ws.accept()

            async def sender() -> None:
                try:
                    async for msg in pubsub.listen():
                        if msg.get("type") == "message":
                            await ws.send_json(json.loads(msg["data"]))
                except redis.ConnectionError:
                    logger.warning("Lost pub/sub connection for match %s", mid)
                    await ws.close()

            send_task = asyncio.create_task(sender())
            try:
                # Spectators never write; incoming frames only keep the socket alive.
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                send_task.cancel()
                with suppress(asyncio.CancelledError):
                    await send_task
                await pubsub.unsubscribe(match_channel(mid))
    except redis.ConnectionError:
        logger.warning("Pub/sub unavailable for match %s", mid)
        await ws.close()
