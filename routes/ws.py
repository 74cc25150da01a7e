import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from models import utcnow
from schemas import EchoOut

router = APIRouter(tags=["Realtime"])


def _message(**fields) -> dict:
    return EchoOut(timestamp=utcnow().isoformat(), **fields).model_dump(exclude_none=True)


@router.websocket("/ws")
async def echo(websocket: WebSocket):
    await websocket.accept()
    logger.info("WebSocket connected")
    await websocket.send_json(_message(type="welcome", message="Подключено к серверу уведомлений"))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed WebSocket message")
                continue
            await websocket.send_json(_message(type="echo", data=data))
    except WebSocketDisconnect:
        logger.info("WebSocket closed")
