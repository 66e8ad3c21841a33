"""
Overlay: WebSocket /ws para los viewers y endpoints para publicar overlays.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket

from errors import ResourceExhausted, SerializationFailure
from overlay import OverlayData, sample_overlay
from state import TankState, get_tank

logger = logging.getLogger(__name__)

router = APIRouter(tags=["overlay"])


@router.websocket("/ws")
async def websocket_overlay(websocket: WebSocket, tank: TankState = Depends(get_tank)) -> None:
    """Viewers del overlay. Solo reciben; los mensajes de texto se loguean y el resto se ignora."""
    client_host = websocket.client.host if websocket.client else "unknown"
    try:
        handle = tank.hub.attach(websocket)
    except ResourceExhausted:
        logger.warning("Sin lugar para WebSocket de %s, se rechaza", client_host)
        await websocket.close(code=1013)
        return

    try:
        await websocket.accept()
        logger.info("WebSocket de overlay conectado desde %s (handle=%d)", client_host, handle)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is not None:
                logger.info("Mensaje WebSocket de %s: %s", client_host, text[:100])
    finally:
        tank.hub.detach(handle)
        logger.info("WebSocket de overlay desconectado desde %s (handle=%d)", client_host, handle)


async def _broadcast(tank: TankState, overlay: Any) -> dict[str, int]:
    try:
        clients = await tank.overlay.broadcast(overlay)
    except SerializationFailure as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"clients": clients}


@router.post("/overlay")
async def overlay_update(overlay: OverlayData, tank: TankState = Depends(get_tank)) -> dict[str, int]:
    """Envía el overlay a todos los viewers conectados."""
    return await _broadcast(tank, overlay)


@router.post("/overlay/sample")
async def overlay_sample(tank: TankState = Depends(get_tank)) -> dict[str, int]:
    """Envía el overlay de prueba."""
    return await _broadcast(tank, sample_overlay())


@router.get("/overlay/status")
async def overlay_status(tank: TankState = Depends(get_tank)) -> dict[str, int]:
    return {
        "clients": tank.overlay.client_count(),
        "capacity": tank.overlay.registry.capacity,
    }
