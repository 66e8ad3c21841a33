"""
Endpoints de video: upload (dispositivo), stream MJPEG, info y status.
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, StreamingResponse

from camera import MultipartFrameParser
from state import TankState, get_tank
from stream import STREAM_CONTENT_TYPE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/video", tags=["video"])


def _upload_boundary(content_type: str) -> bytes:
    """boundary del multipart que sube la ESP; "frame" si no viene."""
    for param in content_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.lower() == "boundary" and value:
            return b"--" + value.strip('"').encode()
    return b"--frame"


@router.post("/upload")
async def video_upload(request: Request, tank: TankState = Depends(get_tank)) -> dict[str, str]:
    """
    Recibe stream MJPEG del dispositivo (multipart/x-mixed-replace).
    El dispositivo mantiene la conexión abierta y envía frames continuamente;
    cada frame completo se publica en la cámara.
    """
    client_host = request.client.host if request.client else "unknown"
    logger.info("Video del dispositivo conectado desde %s", client_host)

    parser = MultipartFrameParser(_upload_boundary(request.headers.get("content-type", "")))
    frame_count = 0

    try:
        async for chunk in request.stream():
            tank.throughput.add_rx(len(chunk))
            for jpeg in parser.feed(chunk):
                tank.camera.publish(jpeg)
                frame_count += 1
                if frame_count % 100 == 0:
                    logger.info("Video: %d frames recibidos", frame_count)
    except Exception as e:
        logger.warning("Error en video upload: %s", e)
    finally:
        logger.info("Video del dispositivo desconectado desde %s (frames: %d)", client_host, frame_count)

    return {"status": "ok", "frames": str(frame_count)}


@router.get("/stream")
async def video_stream(tank: TankState = Depends(get_tank)):
    """Sirve el stream MJPEG, una sesión por request."""
    if not tank.video.streaming:
        raise HTTPException(status_code=503, detail="Stream detenido")
    return StreamingResponse(
        tank.video.session().chunks(),
        media_type=STREAM_CONTENT_TYPE,
        headers={"Access-Control-Allow-Origin": "*"},
    )


@router.post("/start")
async def video_start(tank: TankState = Depends(get_tank)) -> dict[str, bool]:
    tank.video.start()
    return {"streaming": True}


@router.post("/stop")
async def video_stop(tank: TankState = Depends(get_tank)) -> dict[str, bool]:
    tank.video.stop()
    return {"streaming": False}


@router.get("/status")
async def video_status(tank: TankState = Depends(get_tank)) -> dict[str, Any]:
    """Estado del video streaming."""
    camera = tank.camera
    return {
        "streaming": tank.video.streaming,
        "active": tank.video.is_active(),
        "has_frame": camera.has_frame,
        "frame_size": camera.latest_size,
        "frame_age_ms": int((time.time() - camera.latest_timestamp) * 1000)
        if camera.has_frame
        else None,
        "frames_sent": tank.video.frame_count,
        "fps": round(tank.video.fps(), 1),
        "viewers": tank.video.client_count(),
    }


@router.get("/", response_class=HTMLResponse)
async def video_info(tank: TankState = Depends(get_tank)) -> str:
    """Página de info con el stream embebido."""
    return (
        "<!DOCTYPE html><html><head><title>WiFi Tank Stream</title></head>"
        "<body><h1>WiFi Tank Video Stream</h1>"
        f"<p>Estado: {'activo' if tank.video.streaming else 'detenido'}</p>"
        f"<p>Clientes: {tank.video.client_count()}</p>"
        f"<p>Frames: {tank.video.frame_count}</p>"
        '<p><a href="/video/stream">Ver stream</a></p>'
        '<img src="/video/stream" width="640" height="480">'
        "</body></html>"
    )
