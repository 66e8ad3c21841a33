"""
Servidor TCP de telemetría/control: registro acotado de clientes, accept y
barrido de desconectados periódicos, y envío best-effort a todos.

Todo es no bloqueante: un "would block" no es error (se ignora y el resto
del buffer se descarta), cualquier otro error de socket expulsa solo a ese
cliente.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Any

from errors import BindFailed, ListenFailed, ResourceExhausted
from registry import ClientSlot, ConnectionRegistry

logger = logging.getLogger(__name__)

# MTU(1500) - IP(20) - TCP(20) = 1460, con algo de margen
TCP_PAYLOAD_SIZE = 1400

_WOULD_BLOCK = (BlockingIOError, InterruptedError)
_PEEK_FLAGS = socket.MSG_PEEK | getattr(socket, "MSG_DONTWAIT", 0)


@dataclass(frozen=True)
class KeepAlive:
    idle: int = 5
    interval: int = 5
    count: int = 3


def configure_keepalive(sock: socket.socket, keepalive: KeepAlive) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    for name, value in (
        ("TCP_KEEPIDLE", keepalive.idle),
        ("TCP_KEEPINTVL", keepalive.interval),
        ("TCP_KEEPCNT", keepalive.count),
    ):
        option = getattr(socket, name, None)
        if option is not None:
            sock.setsockopt(socket.IPPROTO_TCP, option, value)


def _close_quietly(sock: Any) -> None:
    try:
        sock.close()
    except OSError as e:
        logger.debug("Error cerrando socket: %s", e)


class TcpBroadcastServer:
    """Dueño del registro de clientes TCP y del socket de escucha."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        host: str = "0.0.0.0",
        keepalive: KeepAlive = KeepAlive(),
        throughput: Any = None,
    ) -> None:
        self.registry = registry
        self.host = host
        self.keepalive = keepalive
        self.throughput = throughput
        self._sock: socket.socket | None = None

    @property
    def running(self) -> bool:
        return self._sock is not None

    @property
    def port(self) -> int | None:
        if self._sock is None:
            return None
        return self._sock.getsockname()[1]

    def start(self, port: int) -> bool:
        """Crea el socket de escucha no bloqueante. False si ya estaba corriendo."""
        if self._sock is not None:
            logger.warning("Servidor TCP ya está corriendo en el puerto %s", self.port)
            return False

        logger.info("Creando servidor TCP en el puerto %d", port)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, port))
        except OSError as e:
            sock.close()
            logger.error("Falló bind en %s:%d: %s", self.host, port, e)
            raise BindFailed(f"bind {self.host}:{port}: {e}") from e
        try:
            sock.listen(self.registry.capacity)
        except OSError as e:
            sock.close()
            logger.error("Falló listen en %s:%d: %s", self.host, port, e)
            raise ListenFailed(f"listen {self.host}:{port}: {e}") from e

        self._sock = sock
        logger.info("Servidor TCP escuchando en %s:%d", self.host, self.port)
        return True

    def accept_pending(self) -> ClientSlot | None:
        """Acepta como mucho una conexión pendiente."""
        if self._sock is None:
            return None
        try:
            conn, addr = self._sock.accept()
        except _WOULD_BLOCK:
            return None
        except OSError as e:
            logger.error("accept() falló: %s", e)
            return None

        conn.setblocking(False)
        try:
            configure_keepalive(conn, self.keepalive)
        except OSError as e:
            logger.warning("No se pudo configurar keepalive para %s: %s", addr, e)

        try:
            slot = self.registry.occupy(conn, addr)
        except ResourceExhausted:
            logger.warning(
                "Máximo de clientes alcanzado (%d), rechazando %s",
                self.registry.capacity,
                addr,
            )
            _close_quietly(conn)
            return None

        logger.info("Cliente TCP conectado desde %s:%d (slot %d)", addr[0], addr[1], slot.index)
        return slot

    def sweep_disconnected(self) -> list[int]:
        """Expulsa los clientes cuyo socket está cerrado o roto. Devuelve los slots liberados."""
        evicted = []
        with self.registry.hold():
            for slot in self.registry.connected_locked():
                try:
                    data = slot.handle.recv(1, _PEEK_FLAGS)
                except _WOULD_BLOCK:
                    continue
                except OSError as e:
                    logger.info("Cliente TCP %d con error: %s", slot.index, e)
                else:
                    if data:
                        continue
                    logger.info("Cliente TCP %d desconectado", slot.index)
                _close_quietly(self.registry.evict_locked(slot.index))
                evicted.append(slot.index)
        return evicted

    def broadcast(self, data: bytes) -> int:
        """
        Envía `data` a todos los clientes conectados. Devuelve el total de bytes
        escritos sumando todos los clientes.

        Sin buffer de salida: si un socket da "would block" ese cliente se pierde
        el mensaje (o el resto de él) y sigue conectado.
        """
        if not data:
            raise ValueError("buffer vacío")

        total = 0
        with self.registry.hold():
            for slot in self.registry.connected_locked():
                try:
                    sent = slot.handle.send(data)
                except _WOULD_BLOCK:
                    continue
                except OSError as e:
                    logger.warning("Envío al cliente TCP %d falló: %s", slot.index, e)
                    _close_quietly(self.registry.evict_locked(slot.index))
                    continue
                total += sent
                if sent < len(data):
                    logger.warning(
                        "Envío parcial al cliente TCP %d: %d/%d bytes",
                        slot.index,
                        sent,
                        len(data),
                    )

        if self.throughput is not None and total:
            self.throughput.add_tx(total)
        return total

    def client_count(self) -> int:
        return self.registry.count()

    def payload_size(self) -> int:
        return TCP_PAYLOAD_SIZE

    def close(self) -> None:
        with self.registry.hold():
            for slot in self.registry.connected_locked():
                _close_quietly(self.registry.evict_locked(slot.index))
        if self._sock is not None:
            _close_quietly(self._sock)
            self._sock = None
            logger.info("Servidor TCP cerrado")


class Sweeper:
    """Tarea periódica: aceptar clientes nuevos y barrer desconectados."""

    def __init__(self, server: TcpBroadcastServer, interval: float = 0.1) -> None:
        self.server = server
        self.interval = interval
        self.cycles = 0

    def cycle(self) -> None:
        self.server.accept_pending()
        self.server.sweep_disconnected()
        self.cycles += 1

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info("Tarea de sistema iniciada (cada %.0f ms)", self.interval * 1000)
        try:
            while True:
                started = loop.time()
                try:
                    self.cycle()
                except Exception:
                    logger.exception("Error en el ciclo accept/sweep, se sigue")
                await asyncio.sleep(max(0.0, self.interval - (loop.time() - started)))
        finally:
            logger.info("Tarea de sistema detenida")
