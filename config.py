"""
Configuración: variables de entorno (.env.local) con valores por defecto.
"""

import os

from dotenv import load_dotenv

load_dotenv(".env.local")


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Servidor HTTP (stream MJPEG, overlay WebSocket, estado)
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
HTTP_PORT = _int("HTTP_PORT", 8080)

# Servidor TCP de telemetría/control (0 = deshabilitado)
TCP_HOST = os.getenv("TCP_HOST", "0.0.0.0")
TCP_PORT = _int("TCP_PORT", 8090)
TCP_MAX_CLIENTS = _int("TCP_MAX_CLIENTS", 4)
TCP_KEEPALIVE_IDLE = _int("TCP_KEEPALIVE_IDLE", 5)
TCP_KEEPALIVE_INTERVAL = _int("TCP_KEEPALIVE_INTERVAL", 5)
TCP_KEEPALIVE_COUNT = _int("TCP_KEEPALIVE_COUNT", 3)
SWEEP_INTERVAL_S = _float("SWEEP_INTERVAL_S", 0.1)

# Video: ~10 fps como máximo para no recalentar la cámara ni saturar la red
STREAM_FRAME_INTERVAL_S = _float("STREAM_FRAME_INTERVAL_S", 0.1)
CAMERA_FB_COUNT = _int("CAMERA_FB_COUNT", 2)
CAMERA_TIMEOUT_S = _float("CAMERA_TIMEOUT_S", 5.0)

# Overlay
OVERLAY_MAX_CLIENTS = _int("OVERLAY_MAX_CLIENTS", 8)
WS_MAX_SOCKETS = _int("WS_MAX_SOCKETS", 16)
OVERLAY_SEND_TIMEOUT_S = _float("OVERLAY_SEND_TIMEOUT_S", 1.0)

TELEMETRY_INTERVAL_S = _float("TELEMETRY_INTERVAL_S", 1.0)
