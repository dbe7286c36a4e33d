"""
Logging con rich: un RichHandler sobre el logger 'reposync'.

Los módulos piden su logger con get_logger("componente"); la CLI llama a
setup_logging una sola vez con el nivel de Settings. El handler enmascara los
secretos del recurso que se está reconciliando.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from reposync.core.runtime.secrets import redact

ROOT_LOGGER = "reposync"


class RedactingFilter(logging.Filter):
    """Reemplaza los secretos activos en el mensaje ya formateado."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg, record.args = masked, ()
        return True


def setup_logging(level: str = "info", console: Optional[Console] = None) -> logging.Logger:
    """Configura el logger raíz del paquete (idempotente)."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(component: str) -> logging.Logger:
    """Logger hijo de 'reposync' para un componente (ej: engine, providers.sshd)."""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
