"""
Servidor del tanque WiFi con cámara.
- TCP (TCP_PORT): telemetría/control, hasta TCP_MAX_CLIENTS clientes, broadcast best-effort.
- GET /video/stream: stream MJPEG (~10 fps) para el frontend.
- POST /video/upload: recibe frames MJPEG de la cámara.
- WS /ws: overlay (textos y formas) sobre el video.
- POST /overlay: publica un overlay a todos los viewers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from errors import TcpServerError
from routers import overlay, system, video
from state import build_state

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def create_app(tcp_port: int = config.TCP_PORT) -> FastAPI:
    """tcp_port=0 deshabilita el servidor TCP."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tank = build_state()
        app.state.tank = tank
        tasks = []

        if tcp_port > 0:
            try:
                tank.tcp.start(tcp_port)
                logger.info("TCP payload size: %d bytes", tank.tcp.payload_size())
            except TcpServerError as e:
                logger.error("No se pudo crear el servidor TCP: %s", e)
        else:
            logger.info("Servidor TCP deshabilitado (puerto = 0)")

        if tank.tcp.running:
            tasks.append(asyncio.create_task(tank.sweeper.run(), name="system_task"))
            tasks.append(asyncio.create_task(tank.telemetry.run(), name="telemetry"))
        tasks.append(
            asyncio.create_task(
                tank.throughput.run(config.TELEMETRY_INTERVAL_S), name="throughput_mon"
            )
        )
        tank.video.start()
        logger.info("Sistema inicializado")
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            tank.video.stop()
            tank.tcp.close()

    app = FastAPI(title="WiFi Tank", lifespan=lifespan)

    # CORS - permitir requests desde cualquier origen
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(video.router)
    app.include_router(overlay.router)
    app.include_router(system.router)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "service": "WiFi Tank",
            "tcp": f"tcp://<host>:{tcp_port}" if tcp_port else "deshabilitado",
            "video_stream": f"GET http://<host>:{config.HTTP_PORT}/video/stream",
            "video_upload": f"POST http://<host>:{config.HTTP_PORT}/video/upload",
            "overlay_ws": f"ws://<host>:{config.HTTP_PORT}/ws",
            "overlay": f"POST http://<host>:{config.HTTP_PORT}/overlay",
            "status": f"GET http://<host>:{config.HTTP_PORT}/system/status",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HTTP_HOST, port=config.HTTP_PORT)
