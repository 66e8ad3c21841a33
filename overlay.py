"""
Overlay de video por WebSocket.

El navegador dibuja textos y formas sobre el stream MJPEG. Cada broadcast
serializa el overlay una sola vez y manda el mismo texto JSON a todos los
WebSocket vivos.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from enum import Enum
from typing import Annotated, Any

from fastapi import WebSocket
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState

from errors import ResourceExhausted, SerializationFailure
from registry import ConnectionRegistry

logger = logging.getLogger(__name__)

OVERLAY_MAX_TEXT = 10
OVERLAY_MAX_SHAPES = 20
OVERLAY_MAX_TEXT_LENGTH = 63
OVERLAY_MAX_COLOR_LENGTH = 15

Coord = Annotated[int, Field(ge=-32768, le=32767)]
Color = Annotated[str, Field(max_length=OVERLAY_MAX_COLOR_LENGTH)]


class ShapeType(str, Enum):
    LINE = "line"
    RECT = "rect"
    CIRCLE = "circle"


class OverlayText(BaseModel):
    content: str = Field(max_length=OVERLAY_MAX_TEXT_LENGTH)
    x: Coord = 0
    y: Coord = 0
    color: Color = "white"
    size: int = Field(16, ge=0, le=255)


class OverlayShape(BaseModel):
    """
    Línea: (x1, y1) -> (x2, y2).
    Rectángulo: esquina (x1, y1), ancho x2, alto y2.
    Círculo: centro (x1, y1) y radius.
    """

    type: ShapeType
    x1: Coord = 0
    y1: Coord = 0
    x2: Coord = 0
    y2: Coord = 0
    radius: Coord = 0
    color: Color = "white"
    width: int = Field(1, ge=0, le=255)
    fill: bool = False


class OverlayData(BaseModel):
    text: list[OverlayText] = Field(default_factory=list, max_length=OVERLAY_MAX_TEXT)
    shapes: list[OverlayShape] = Field(default_factory=list, max_length=OVERLAY_MAX_SHAPES)


def _shape_to_dict(shape: OverlayShape) -> dict[str, Any]:
    out: dict[str, Any] = {"type": shape.type.value}
    if shape.type is ShapeType.LINE:
        out.update(x1=shape.x1, y1=shape.y1, x2=shape.x2, y2=shape.y2, width=shape.width)
    elif shape.type is ShapeType.RECT:
        out.update(x=shape.x1, y=shape.y1, w=shape.x2, h=shape.y2, fill=shape.fill)
    else:
        out.update(x=shape.x1, y=shape.y1, r=shape.radius, fill=shape.fill)
    out["color"] = shape.color
    return out


def overlay_to_json(overlay: OverlayData | None) -> str:
    """JSON compacto que espera el frontend. Cadena vacía si no hay overlay."""
    if overlay is None:
        return ""
    payload = {
        "text": [
            {"content": t.content, "x": t.x, "y": t.y, "color": t.color, "size": t.size}
            for t in overlay.text[:OVERLAY_MAX_TEXT]
        ],
        "shapes": [_shape_to_dict(s) for s in overlay.shapes[:OVERLAY_MAX_SHAPES]],
    }
    return json.dumps(payload, separators=(",", ":"))


def sample_overlay() -> OverlayData:
    """Overlay de prueba: título, velocidad, batería, mira y objetivo."""
    return OverlayData(
        text=[
            OverlayText(content="ESP32 WiFi Tank", x=10, y=30, color="white", size=20),
            OverlayText(content="Speed: 50%", x=10, y=60, color="lime", size=16),
            OverlayText(content="Battery: 85%", x=10, y=85, color="cyan", size=16),
        ],
        shapes=[
            # Mira en el centro de 1280x720
            OverlayShape(type=ShapeType.LINE, x1=640, y1=0, x2=640, y2=720, color="red", width=2),
            OverlayShape(type=ShapeType.LINE, x1=0, y1=360, x2=1280, y2=360, color="red", width=2),
            OverlayShape(type=ShapeType.RECT, x1=500, y1=250, x2=100, y2=80, color="yellow"),
            OverlayShape(type=ShapeType.CIRCLE, x1=1250, y1=30, radius=15, color="lime", fill=True),
        ],
    )


class ClientInfo(str, Enum):
    INVALID = "invalid"
    HTTP = "http"
    WEBSOCKET = "websocket"


class WebSocketHub:
    """
    Lado del framework: asigna un handle entero (el menor libre) a cada
    WebSocket aceptado y responde si un handle sigue siendo un WebSocket vivo.
    """

    def __init__(self, max_sockets: int = 16) -> None:
        self.max_sockets = max_sockets
        self._sockets: dict[int, WebSocket] = {}

    def attach(self, websocket: WebSocket) -> int:
        for handle in range(self.max_sockets):
            if handle not in self._sockets:
                self._sockets[handle] = websocket
                return handle
        raise ResourceExhausted(f"sin handles libres ({self.max_sockets})")

    def detach(self, handle: int) -> None:
        self._sockets.pop(handle, None)

    def client_info(self, handle: int) -> ClientInfo:
        websocket = self._sockets.get(handle)
        if websocket is None:
            return ClientInfo.INVALID
        if (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        ):
            return ClientInfo.WEBSOCKET
        return ClientInfo.HTTP

    async def send_text(self, handle: int, text: str) -> None:
        websocket = self._sockets.get(handle)
        if websocket is None:
            raise ConnectionError(f"handle {handle} no existe")
        await websocket.send_text(text)


class OverlayChannel:
    """Registro de WebSockets de overlay + broadcast del overlay serializado."""

    def __init__(
        self,
        hub: WebSocketHub,
        capacity: int = 8,
        serializer: Callable[[Any], str] = overlay_to_json,
        send_timeout: float = 1.0,
    ) -> None:
        self.hub = hub
        self.registry = ConnectionRegistry(capacity, name="overlay")
        self.serializer = serializer
        self.send_timeout = send_timeout

    def reconcile(self) -> list[int]:
        """Sincroniza el registro con los WebSocket que el hub reporta vivos."""
        with self.registry.hold():
            for handle in range(self.hub.max_sockets):
                live = self.hub.client_info(handle) is ClientInfo.WEBSOCKET
                slot = self.registry.find_locked(handle)
                if live and slot is None:
                    try:
                        slot = self.registry.occupy_locked(handle)
                    except ResourceExhausted:
                        logger.warning("Registro de overlay lleno, handle=%d sin seguimiento", handle)
                        continue
                    logger.info("Nuevo cliente WebSocket: handle=%d (slot %d)", handle, slot.index)
                elif not live and slot is not None:
                    self.registry.evict_locked(slot.index)
                    logger.info("Cliente WebSocket desconectado: handle=%d", handle)
            return [slot.handle for slot in self.registry.connected_locked()]

    async def _send(self, handle: int, message: str) -> bool:
        try:
            await asyncio.wait_for(self.hub.send_text(handle, message), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Cliente WebSocket handle=%d lento, se pierde este overlay", handle)
            return False
        except Exception as e:
            logger.warning("Error enviando overlay a handle=%d: %s", handle, e)
            with self.registry.hold():
                slot = self.registry.find_locked(handle)
                if slot is not None:
                    self.registry.evict_locked(slot.index)
            return False
        return True

    async def broadcast(self, overlay: Any) -> int:
        """Devuelve a cuántos clientes llegó. 0 si no hay nadie conectado."""
        message = self.serializer(overlay)
        if not message:
            logger.error("No se pudo serializar el overlay")
            raise SerializationFailure("el overlay no produjo salida")
        logger.debug("Overlay JSON: %s", message)

        handles = self.reconcile()
        if not handles:
            logger.warning("No hay clientes WebSocket conectados")
            return 0

        results = await asyncio.gather(*(self._send(h, message) for h in handles))
        sent = sum(results)
        logger.info("Overlay enviado a %d/%d clientes WebSocket", sent, len(handles))
        return sent

    def client_count(self) -> int:
        return self.registry.count()
