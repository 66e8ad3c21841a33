#!/usr/bin/env python3
"""
Monitor de consola para el tanque.
Se conecta al canal TCP de telemetría y al WebSocket de overlay, valida lo
que llega (mismas reglas que el frontend) y lo muestra por consola.
No envía nada: los dos canales son solo de bajada.
"""

import argparse
import asyncio
import json
import logging
import sys

import websockets

from protocol import parse_telemetry_line, validate_overlay_message

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)

RECONNECT_DELAY_S = 10
DEFAULT_HOST = "localhost"
DEFAULT_TCP_PORT = 8090
DEFAULT_WS_URI = "ws://localhost:8080/ws"


def describe_overlay(raw: str) -> str | None:
    """Resumen de un overlay válido, o None si no cumple el formato."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Overlay con JSON inválido: %s", e)
        return None
    ok, err = validate_overlay_message(data)
    if not ok:
        logger.warning("Overlay inválido: %s", err)
        return None
    kinds = [s["type"] for s in data["shapes"]]
    texts = [t["content"] for t in data["text"]]
    return f"textos={texts} formas={kinds}"


async def watch_telemetry(host: str, port: int, reconnect: bool) -> None:
    while True:
        try:
            logger.info("Conectando a tcp://%s:%d ...", host, port)
            reader, writer = await asyncio.open_connection(host, port)
            logger.info("Conectado al canal de telemetría")
            try:
                while line := await reader.readline():
                    ok, data, err = parse_telemetry_line(line)
                    if not ok:
                        logger.warning("Telemetría descartada: %s", err)
                        continue
                    assert data is not None
                    logger.info(
                        "[tcp #%s] tcp=%s video=%s (%.1f fps) overlay=%s tx=%.0f kbps",
                        data.get("seq"),
                        data.get("tcp_clients"),
                        data.get("stream_clients"),
                        data.get("stream_fps", 0.0),
                        data.get("overlay_clients"),
                        data.get("tx_kbps", 0.0),
                    )
                logger.warning("El servidor cerró el canal TCP")
            finally:
                writer.close()
        except OSError as e:
            logger.warning("Error de conexión TCP: %s", e)
        if not reconnect:
            break
        logger.info("Reconectando TCP en %s s...", RECONNECT_DELAY_S)
        await asyncio.sleep(RECONNECT_DELAY_S)


async def watch_overlay(uri: str, reconnect: bool) -> None:
    total = 0
    while True:
        try:
            logger.info("Conectando a %s ...", uri)
            async with websockets.connect(uri) as ws:
                logger.info("Conectado al overlay. Esperando actualizaciones...")
                async for raw in ws:
                    if not raw or not isinstance(raw, str):
                        continue
                    summary = describe_overlay(raw)
                    if summary is None:
                        continue
                    total += 1
                    logger.info("[overlay #%d] %s", total, summary)
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning("Conexión WebSocket cerrada: %s", e)
        except OSError as e:
            logger.warning("Error de conexión WebSocket: %s", e)
        if not reconnect:
            break
        logger.info("Reconectando WebSocket en %s s...", RECONNECT_DELAY_S)
        await asyncio.sleep(RECONNECT_DELAY_S)


async def run_monitor(args: argparse.Namespace) -> None:
    reconnect = not args.no_reconnect
    tasks = []
    if not args.no_tcp:
        tasks.append(watch_telemetry(args.host, args.tcp_port, reconnect))
    if not args.no_overlay:
        tasks.append(watch_overlay(args.ws_uri, reconnect))
    await asyncio.gather(*tasks)


def main() -> None:
    parser = argparse.ArgumentParser(description="Monitor de telemetría y overlay del tanque WiFi.")
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"Host del canal TCP (default: {DEFAULT_HOST})")
    parser.add_argument(
        "--tcp-port",
        type=int,
        default=DEFAULT_TCP_PORT,
        help=f"Puerto del canal TCP (default: {DEFAULT_TCP_PORT})",
    )
    parser.add_argument(
        "--ws-uri",
        default=DEFAULT_WS_URI,
        help=f"URI del WebSocket de overlay (default: {DEFAULT_WS_URI})",
    )
    parser.add_argument("--no-tcp", action="store_true", help="No escuchar telemetría TCP")
    parser.add_argument("--no-overlay", action="store_true", help="No escuchar el overlay")
    parser.add_argument(
        "--no-reconnect",
        action="store_true",
        help="No reconectar tras desconexión (por defecto reconecta a los 10 s)",
    )
    args = parser.parse_args()
    asyncio.run(run_monitor(args))


if __name__ == "__main__":
    main()
    sys.exit(0)
