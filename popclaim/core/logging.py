# popclaim/core/logging.py
import logging
import sys

from popclaim.core.config import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configura el logger raíz del paquete una sola vez (idempotente)."""
    root = logging.getLogger("popclaim")
    root.setLevel((level or settings.log_level).upper())
    if any(getattr(h, "_popclaim", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._popclaim = True
    root.addHandler(handler)
