"""
Cámara: frames JPEG con pares estrictos acquire/release.

La cámara real queda del otro lado (ESP32-CAM u otro dispositivo que sube un
stream MJPEG a /video/upload). Acá solo se administra el pool de buffers.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

MIN_JPEG_SIZE = 100


@dataclass
class Frame:
    data: bytes
    seq: int = 0
    timestamp: float = field(default_factory=time.time)
    released: bool = False

    @property
    def length(self) -> int:
        return len(self.data)


class Camera(Protocol):
    def acquire(self) -> Frame:
        """Bloquea hasta el límite interno del driver; UpstreamUnavailable si falla."""
        ...

    def release(self, frame: Frame) -> None:
        ...


class PushCamera:
    """
    Cámara alimentada desde afuera con `publish(jpeg)`.

    Tiene `fb_count` buffers: cada acquire toma uno y solo vuelve con release.
    Si los consumidores no liberan, el siguiente acquire falla por timeout.
    """

    def __init__(self, fb_count: int = 2, timeout: float = 5.0, max_age: float = 5.0) -> None:
        self.fb_count = fb_count
        self.timeout = timeout
        self.max_age = max_age
        self._pool = threading.BoundedSemaphore(fb_count)
        self._cond = threading.Condition()
        self._latest: bytes | None = None
        self._latest_at = 0.0
        self._seq = 0

    @property
    def has_frame(self) -> bool:
        return self._latest is not None

    @property
    def latest_size(self) -> int:
        return len(self._latest) if self._latest else 0

    @property
    def latest_timestamp(self) -> float:
        return self._latest_at

    def publish(self, jpeg: bytes) -> int:
        with self._cond:
            self._latest = jpeg
            self._latest_at = time.time()
            self._seq += 1
            self._cond.notify_all()
            return self._seq

    def _fresh(self) -> bool:
        return self._latest is not None and time.time() - self._latest_at <= self.max_age

    def acquire(self) -> Frame:
        if not self._pool.acquire(timeout=self.timeout):
            raise UpstreamUnavailable(f"sin buffers libres ({self.fb_count} en uso)")
        with self._cond:
            if not self._cond.wait_for(self._fresh, timeout=self.timeout):
                self._pool.release()
                raise UpstreamUnavailable(f"sin frames nuevos en {self.timeout:.1f} s")
            return Frame(data=self._latest, seq=self._seq, timestamp=self._latest_at)

    def release(self, frame: Frame) -> None:
        if frame.released:
            logger.warning("Frame %d liberado dos veces", frame.seq)
            return
        frame.released = True
        self._pool.release()


class MultipartFrameParser:
    """Parser incremental de un stream multipart de JPEGs (lo que sube la ESP)."""

    def __init__(self, boundary: bytes = b"--frame") -> None:
        self.boundary = boundary
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[bytes]:
        """Agrega bytes y devuelve los JPEG completos encontrados."""
        self._buffer += chunk
        frames = []
        while True:
            start_idx = self._buffer.find(self.boundary)
            if start_idx == -1:
                break

            next_idx = self._buffer.find(self.boundary, start_idx + len(self.boundary))
            if next_idx == -1:
                # Frame incompleto, esperar más datos
                break

            part = self._buffer[start_idx:next_idx]
            self._buffer = self._buffer[next_idx:]

            jpeg_start = part.find(b"\r\n\r\n")
            if jpeg_start != -1:
                jpeg = part[jpeg_start + 4 :].rstrip(b"\r\n")
                if len(jpeg) > MIN_JPEG_SIZE:
                    frames.append(jpeg)
        return frames
