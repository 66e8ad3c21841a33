"""
Estado del sistema: servidor TCP y throughput.
"""

import time
from typing import Any

from fastapi import APIRouter, Depends

from state import TankState, get_tank

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status")
async def system_status(tank: TankState = Depends(get_tank)) -> dict[str, Any]:
    t = tank.throughput.last
    return {
        "uptime_s": int(time.time() - tank.started_at),
        "tcp": {
            "running": tank.tcp.running,
            "port": tank.tcp.port,
            "clients": tank.tcp.client_count(),
            "capacity": tank.tcp.registry.capacity,
            "payload_size": tank.tcp.payload_size(),
        },
        "throughput": {
            "rx_kbps": round(t.rx_kbps, 1),
            "tx_kbps": round(t.tx_kbps, 1),
            "total_rx_bytes": t.total_rx_bytes,
            "total_tx_bytes": t.total_tx_bytes,
        },
    }
