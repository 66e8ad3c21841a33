"""
Excepciones del servidor del tanque.
"""


class TankError(Exception):
    """Base de todos los errores propios del servidor."""


class TcpServerError(TankError):
    """El servidor TCP no pudo inicializarse."""


class BindFailed(TcpServerError):
    """bind() rechazado por el stack de red (puerto ocupado, permisos...)."""


class ListenFailed(TcpServerError):
    """listen() rechazado por el stack de red."""


class ResourceExhausted(TankError):
    """
    Registro lleno. No es fatal: la conexión nueva se rechaza y se cierra,
    las existentes siguen igual.
    """


class UpstreamUnavailable(TankError):
    """La cámara no entregó un frame. Termina solo la sesión afectada."""


class SerializationFailure(TankError):
    """El overlay no produjo salida; no se envía nada a ningún cliente."""
