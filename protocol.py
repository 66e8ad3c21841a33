"""
Validación de lo que llega a los clientes: mensajes de overlay (WS) y líneas
de telemetría (TCP).
"""

import json
import math
from typing import Any

SHAPE_FIELDS = {
    "line": ("x1", "y1", "x2", "y2", "width"),
    "rect": ("x", "y", "w", "h"),
    "circle": ("x", "y", "r"),
}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


def validate_overlay_message(data: Any) -> tuple[bool, str | None]:
    """Valida un overlay: {"text": [...] <= 10, "shapes": [...] <= 20}."""
    if not isinstance(data, dict):
        return False, "el overlay debe ser un objeto"
    texts = data.get("text")
    shapes = data.get("shapes")
    if not isinstance(texts, list):
        return False, "text debe ser un array"
    if not isinstance(shapes, list):
        return False, "shapes debe ser un array"
    if len(texts) > 10:
        return False, "text tiene más de 10 elementos"
    if len(shapes) > 20:
        return False, "shapes tiene más de 20 elementos"
    for i, t in enumerate(texts):
        if not isinstance(t, dict) or not isinstance(t.get("content"), str):
            return False, f"text[{i}].content debe ser un string"
        for key in ("x", "y", "size"):
            if not _is_number(t.get(key)):
                return False, f"text[{i}].{key} debe ser un número"
    for i, s in enumerate(shapes):
        if not isinstance(s, dict):
            return False, f"shapes[{i}] debe ser un objeto"
        fields = SHAPE_FIELDS.get(s.get("type"))
        if fields is None:
            return False, f"shapes[{i}].type inválido: {s.get('type')!r}"
        for key in fields:
            if not _is_number(s.get(key)):
                return False, f"shapes[{i}].{key} debe ser un número"
        if not isinstance(s.get("color"), str):
            return False, f"shapes[{i}].color debe ser un string"
    return True, None


def parse_telemetry_line(line: bytes | str) -> tuple[bool, dict[str, Any] | None, str | None]:
    """Una línea JSON del canal TCP. Devuelve (ok, datos, error)."""
    if isinstance(line, bytes):
        try:
            line = line.decode()
        except UnicodeDecodeError:
            return False, None, "la línea no es UTF-8"
    line = line.strip()
    if not line:
        return False, None, "línea vacía"
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        return False, None, f"JSON inválido: {e}"
    if not isinstance(data, dict):
        return False, None, "el mensaje debe ser un objeto JSON"
    if data.get("type") != "telemetry":
        return False, None, f"type desconocido: {data.get('type')!r}"
    return True, data, None
