"""Server entry point: ``python -m facehealth.core.server.main``.

The server has no authentication layer, so it only listens on loopback
addresses unless ``FACEHEALTH_ALLOW_INSECURE_BIND`` is set.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address

from facehealth.core.config.settings import Settings, get_settings
from facehealth.core.server.app import create_app

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOOPBACK_NAMES = frozenset({"localhost", "localhost.localdomain"})


class InsecureBindError(RuntimeError):
    """Raised when asked to listen on a non-loopback address."""


def _is_loopback_host(host: str) -> bool:
    if host.lower() in _LOOPBACK_NAMES:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind_address(settings: Settings) -> None:
    """Refuse non-loopback hosts unless insecure binding is explicitly allowed."""
    host = settings.facehealth_host
    if _is_loopback_host(host):
        return
    if settings.facehealth_allow_insecure_bind:
        logger.warning("Binding to non-loopback host %s with no authentication", host)
        return
    raise InsecureBindError(
        f"Refusing to serve face models on {host!r}: the server has no auth layer. "
        "Set FACEHEALTH_ALLOW_INSECURE_BIND=true to override (unsafe)."
    )


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT)


def run() -> None:
    """Start the Face Health MCP server over Streamable HTTP."""
    settings = get_settings()
    configure_logging(settings.facehealth_log_level)
    check_bind_address(settings)

    server = create_app()
    logger.info(
        "Face Health server listening on %s:%d",
        settings.facehealth_host,
        settings.facehealth_port,
    )
    server.run(
        transport="streamable-http",
        host=settings.facehealth_host,
        port=settings.facehealth_port,
    )


if __name__ == "__main__":
    run()
