"""
Estado de la aplicación: las instancias dueñas de cada registro.

No hay registros globales; `build_state` crea todo y queda en `app.state.tank`.
Los routers lo reciben con `Depends(get_tank)`.
"""

import time
from dataclasses import dataclass, field

from fastapi.requests import HTTPConnection

import config
from camera import PushCamera
from overlay import OverlayChannel, WebSocketHub
from registry import ConnectionRegistry
from stream import VideoStream
from tcp_server import KeepAlive, Sweeper, TcpBroadcastServer
from telemetry import TelemetryPublisher, ThroughputMonitor


@dataclass
class TankState:
    tcp: TcpBroadcastServer
    sweeper: Sweeper
    camera: PushCamera
    video: VideoStream
    hub: WebSocketHub
    overlay: OverlayChannel
    throughput: ThroughputMonitor
    telemetry: TelemetryPublisher
    started_at: float = field(default_factory=time.time)


def build_state() -> TankState:
    throughput = ThroughputMonitor()
    tcp = TcpBroadcastServer(
        ConnectionRegistry(config.TCP_MAX_CLIENTS, name="tcp"),
        host=config.TCP_HOST,
        keepalive=KeepAlive(
            config.TCP_KEEPALIVE_IDLE,
            config.TCP_KEEPALIVE_INTERVAL,
            config.TCP_KEEPALIVE_COUNT,
        ),
        throughput=throughput,
    )
    camera = PushCamera(fb_count=config.CAMERA_FB_COUNT, timeout=config.CAMERA_TIMEOUT_S)
    video = VideoStream(camera, frame_interval=config.STREAM_FRAME_INTERVAL_S, throughput=throughput)
    hub = WebSocketHub(max_sockets=config.WS_MAX_SOCKETS)
    overlay = OverlayChannel(
        hub,
        capacity=config.OVERLAY_MAX_CLIENTS,
        send_timeout=config.OVERLAY_SEND_TIMEOUT_S,
    )
    return TankState(
        tcp=tcp,
        sweeper=Sweeper(tcp, interval=config.SWEEP_INTERVAL_S),
        camera=camera,
        video=video,
        hub=hub,
        overlay=overlay,
        throughput=throughput,
        telemetry=TelemetryPublisher(
            tcp, video, overlay, throughput, interval=config.TELEMETRY_INTERVAL_S
        ),
    )


def get_tank(conn: HTTPConnection) -> TankState:
    return conn.app.state.tank
