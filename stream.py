"""
Stream MJPEG: una `StreamSession` por request HTTP activo.

Por cada frame se escriben tres chunks (boundary, header, JPEG) y después se
espera `frame_interval` (tope blando de fps). El frame vuelve a la cámara
apenas se escribió, siempre antes del siguiente acquire.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import AsyncIterator
from enum import Enum

from camera import Camera, Frame
from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

STREAM_BOUNDARY = "123456789000000000000987654321"
STREAM_CONTENT_TYPE = f"multipart/x-mixed-replace;boundary={STREAM_BOUNDARY}"
STREAM_PART_BOUNDARY = f"\r\n--{STREAM_BOUNDARY}\r\n".encode()
STREAM_PART_HEADER = "Content-Type: image/jpeg\r\nContent-Length: {}\r\n\r\n"


def part_header(length: int) -> bytes:
    return STREAM_PART_HEADER.format(length).encode()


class StreamState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    STREAMING = "streaming"
    CLIENT_CLOSED = "client_closed"
    UPSTREAM_FAILED = "upstream_failed"
    TERMINATED = "terminated"


class LiveCounter:
    """Contador de clientes compartido entre sesiones."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            self._value -= 1
            return self._value


class VideoStream:
    """Estado global del video: habilitado, viewers y estadísticas de frames."""

    def __init__(self, camera: Camera, frame_interval: float = 0.1, throughput=None) -> None:
        self.camera = camera
        self.frame_interval = frame_interval
        self.throughput = throughput
        self.clients = LiveCounter()
        self.streaming = False
        self.frame_count = 0
        self.last_frame_time = 0.0
        self._frame_times: deque[float] = deque(maxlen=30)

    def start(self) -> None:
        self.streaming = True
        logger.info("Video streaming iniciado")

    def stop(self) -> None:
        self.streaming = False
        logger.info("Video streaming detenido")

    def is_active(self) -> bool:
        return self.streaming and self.clients.value > 0

    def client_count(self) -> int:
        return self.clients.value

    def record_frame(self, size: int) -> None:
        now = time.monotonic()
        self.frame_count += 1
        self.last_frame_time = now
        self._frame_times.append(now)
        if self.throughput is not None:
            self.throughput.add_tx(size)

    def fps(self) -> float:
        """Frames por segundo sumando todas las sesiones, sobre los últimos frames."""
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed

    def session(self) -> "StreamSession":
        return StreamSession(self.camera, self, frame_interval=self.frame_interval)


class StreamSession:
    """Vive lo que dura la conexión HTTP. No se comparte entre requests."""

    def __init__(self, camera: Camera, video: VideoStream, frame_interval: float = 0.1) -> None:
        self.camera = camera
        self.video = video
        self.frame_interval = frame_interval
        self.state = StreamState.IDLE
        self.exit_state: StreamState | None = None
        self.frame_count = 0
        self.last_frame_time: float | None = None
        self._counted = False

    def _enter(self) -> None:
        self.state = StreamState.CONNECTED
        self._counted = True
        total = self.video.clients.increment()
        logger.info("Cliente video conectado (total: %d)", total)

    def _leave(self) -> None:
        self.exit_state = self.state
        self.state = StreamState.TERMINATED
        if self._counted:
            self._counted = False
            total = self.video.clients.decrement()
            logger.info(
                "Cliente video desconectado: %s tras %d frames (total: %d)",
                self.exit_state.value,
                self.frame_count,
                total,
            )

    async def _acquire(self) -> Frame:
        # acquire puede bloquear: va en un thread. Si cancelan la sesión mientras
        # espera, el frame que llegue tarde se devuelve igual al pool.
        task = asyncio.ensure_future(asyncio.to_thread(self.camera.acquire))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(self._release_late)
            raise

    def _release_late(self, task: asyncio.Future) -> None:
        if not task.cancelled() and task.exception() is None:
            self.camera.release(task.result())

    async def chunks(self) -> AsyncIterator[bytes]:
        """Cuerpo del StreamingResponse: boundary, header y JPEG por cada frame."""
        self._enter()
        frame: Frame | None = None
        try:
            self.state = StreamState.STREAMING
            while True:
                try:
                    frame = await self._acquire()
                except UpstreamUnavailable as e:
                    logger.error("Falló la captura de cámara: %s", e)
                    self.state = StreamState.UPSTREAM_FAILED
                    return

                yield STREAM_PART_BOUNDARY
                yield part_header(frame.length)
                yield frame.data

                size = frame.length
                self.camera.release(frame)
                frame = None

                self.frame_count += 1
                self.last_frame_time = time.monotonic()
                self.video.record_frame(size)

                await asyncio.sleep(self.frame_interval)
        except (GeneratorExit, asyncio.CancelledError):
            # StreamingResponse no llama aclose(); con el cliente caído el GeneratorExit llega por el finalizador de asyncio.
            self.state = StreamState.CLIENT_CLOSED
            raise
        finally:
            if frame is not None:
                self.camera.release(frame)
            self._leave()
