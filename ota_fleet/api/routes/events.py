"""Live job progress feed over WebSocket."""
import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from ota_fleet.api.deps import decode_token_or_401
from ota_fleet.services.broadcaster import Subscription

router = APIRouter(tags=["events"])

logger = logging.getLogger(__name__)


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for message in subscription:
        await websocket.send_text(message.model_dump_json())


def _forward_done(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Event feed stopped: %s", task.exception())


@router.websocket("/ws/updates")
async def job_updates(websocket: WebSocket, token: str | None = None) -> None:
    """Push every job update to the client until it disconnects; token passed as a query parameter."""
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        decode_token_or_401(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    broadcaster = websocket.app.state.services.broadcaster
    async with broadcaster.subscribe() as subscription:
        await websocket.accept()
        forwarder = asyncio.create_task(_forward(websocket, subscription))
        forwarder.add_done_callback(_forward_done)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Event subscriber %s disconnected", subscription.uid)
        finally:
            forwarder.cancel()
