"""CyclePath server entry point — ``python -m cyclepath.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from cyclepath.core.config.settings import Settings, get_settings
from cyclepath.core.server.app import create_app

logger = logging.getLogger(__name__)

LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain"})


def is_loopback_host(host: str) -> bool:
    """True for names and addresses that only accept local connections."""
    if host.lower() in LOCAL_HOSTNAMES:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind_address(settings: Settings) -> None:
    """Refuse a public bind unless it was explicitly allowed.

    The tools read and write patient cycles without authentication, so the
    server listens on loopback unless CYCLEPATH_ALLOW_INSECURE_BIND is set.
    """
    if settings.cyclepath_allow_insecure_bind or is_loopback_host(settings.cyclepath_host):
        return
    raise RuntimeError(
        f"Refusing to serve patient cycles on {settings.cyclepath_host}: no auth layer in front "
        "of the tools. Bind to a loopback address or set CYCLEPATH_ALLOW_INSECURE_BIND=true."
    )


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.cyclepath_log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)


def run() -> None:
    settings = get_settings()
    configure_logging(settings)
    check_bind_address(settings)

    mcp = create_app()
    logger.info("CyclePath listening on %s:%d", settings.cyclepath_host, settings.cyclepath_port)
    mcp.run(
        transport="streamable-http",
        host=settings.cyclepath_host,
        port=settings.cyclepath_port,
    )


if __name__ == "__main__":
    run()
