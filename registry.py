"""
Registro acotado de conexiones: tabla de slots con un único lock.

Lo usan el servidor TCP (handles = sockets) y el canal de overlay
(handles = ids de WebSocket). Los métodos `*_locked` asumen que el llamador
ya tiene el lock (`with registry.hold(): ...`); el resto lo toma solo.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

from errors import ResourceExhausted


class SlotState(str, Enum):
    FREE = "free"
    CONNECTED = "connected"


@dataclass
class ClientSlot:
    index: int
    handle: Any = None
    state: SlotState = SlotState.FREE
    address: Any = None

    @property
    def connected(self) -> bool:
        return self.state is SlotState.CONNECTED


class ConnectionRegistry:
    """Tabla de `capacity` slots. Siempre ocupa el slot libre de menor índice."""

    def __init__(self, capacity: int, name: str = "registry") -> None:
        if capacity < 1:
            raise ValueError("capacity debe ser >= 1")
        self.capacity = capacity
        self.name = name
        self._slots = [ClientSlot(index=i) for i in range(capacity)]
        self._lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[list[ClientSlot]]:
        with self._lock:
            yield self._slots

    # --- con el lock tomado ---

    def find_locked(self, handle: Any) -> ClientSlot | None:
        for slot in self._slots:
            if slot.connected and slot.handle == handle:
                return slot
        return None

    def occupy_locked(self, handle: Any, address: Any = None) -> ClientSlot:
        existing = self.find_locked(handle)
        if existing is not None:
            return existing
        for slot in self._slots:
            if not slot.connected:
                slot.handle = handle
                slot.address = address
                slot.state = SlotState.CONNECTED
                return slot
        raise ResourceExhausted(f"{self.name}: {self.capacity} slots ocupados")

    def evict_locked(self, index: int) -> Any:
        """Libera el slot `index` y devuelve el handle que tenía."""
        slot = self._slots[index]
        handle = slot.handle
        slot.handle = None
        slot.address = None
        slot.state = SlotState.FREE
        return handle

    def connected_locked(self) -> list[ClientSlot]:
        return [slot for slot in self._slots if slot.connected]

    # --- toman el lock ---

    def occupy(self, handle: Any, address: Any = None) -> ClientSlot:
        with self._lock:
            return self.occupy_locked(handle, address)

    def evict(self, index: int) -> Any:
        with self._lock:
            return self.evict_locked(index)

    def count(self) -> int:
        with self._lock:
            return sum(1 for slot in self._slots if slot.connected)

    def snapshot(self) -> list[ClientSlot]:
        """Copia de los slots ocupados, para leer sin tener el lock."""
        with self._lock:
            return [
                ClientSlot(s.index, s.handle, s.state, s.address)
                for s in self._slots
                if s.connected
            ]
