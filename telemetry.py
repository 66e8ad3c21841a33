"""
Telemetría: contadores de throughput y publicación periódica por TCP.
"""

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ThroughputSample:
    rx_kbps: float
    tx_kbps: float
    total_rx_bytes: int
    total_tx_bytes: int


class ThroughputMonitor:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.total_rx_bytes = 0
        self.total_tx_bytes = 0
        self._last_rx = 0
        self._last_tx = 0
        self._last_at = time.monotonic()
        self.last = ThroughputSample(0.0, 0.0, 0, 0)

    def add_rx(self, n: int) -> None:
        with self._lock:
            self.total_rx_bytes += n

    def add_tx(self, n: int) -> None:
        with self._lock:
            self.total_tx_bytes += n

    def sample(self) -> ThroughputSample:
        """kbps desde la muestra anterior."""
        now = time.monotonic()
        with self._lock:
            elapsed = max(now - self._last_at, 1e-6)
            rx = self.total_rx_bytes - self._last_rx
            tx = self.total_tx_bytes - self._last_tx
            self._last_rx = self.total_rx_bytes
            self._last_tx = self.total_tx_bytes
            self._last_at = now
            self.last = ThroughputSample(
                rx_kbps=rx * 8 / 1000 / elapsed,
                tx_kbps=tx * 8 / 1000 / elapsed,
                total_rx_bytes=self.total_rx_bytes,
                total_tx_bytes=self.total_tx_bytes,
            )
        return self.last

    async def run(self, interval: float = 1.0) -> None:
        logger.info("Monitoreo de throughput iniciado")
        while True:
            await asyncio.sleep(interval)
            s = self.sample()
            if s.rx_kbps or s.tx_kbps:
                logger.info(
                    "Throughput - RX: %.0f kbps | TX: %.0f kbps | Total: RX %.2f MB / TX %.2f MB",
                    s.rx_kbps,
                    s.tx_kbps,
                    s.total_rx_bytes / (1024 * 1024),
                    s.total_tx_bytes / (1024 * 1024),
                )


class TelemetryPublisher:
    """
    Productor de telemetría: una línea JSON terminada en "\\n" por intervalo
    a todos los clientes TCP. El framing es de este productor, no del servidor TCP.
    """

    def __init__(self, tcp: Any, video: Any, overlay: Any, throughput: ThroughputMonitor, interval: float = 1.0) -> None:
        self.tcp = tcp
        self.video = video
        self.overlay = overlay
        self.throughput = throughput
        self.interval = interval
        self.started_at = time.monotonic()
        self.seq = 0

    def snapshot(self) -> dict[str, Any]:
        self.seq += 1
        t = self.throughput.last
        return {
            "type": "telemetry",
            "seq": self.seq,
            "uptime_s": round(time.monotonic() - self.started_at, 1),
            "tcp_clients": self.tcp.client_count(),
            "stream_clients": self.video.client_count(),
            "stream_fps": round(self.video.fps(), 1),
            "frames": self.video.frame_count,
            "overlay_clients": self.overlay.client_count(),
            "rx_kbps": round(t.rx_kbps, 1),
            "tx_kbps": round(t.tx_kbps, 1),
        }

    def publish_once(self) -> int:
        if self.tcp.client_count() == 0:
            return 0
        line = json.dumps(self.snapshot(), separators=(",", ":")) + "\n"
        return self.tcp.broadcast(line.encode())

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.publish_once()
            except Exception:
                logger.exception("Error publicando telemetría")
