# oilstock/core/logging.py
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """
    Configura el logger raiz una sola vez al arrancar la API.
    Los modulos usan logging.getLogger(__name__) y heredan esta salida.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
    # Motor/pymongo son muy verbosos en DEBUG
    logging.getLogger("pymongo").setLevel(logging.WARNING)
