from __future__ import annotations

import logging

from domainpilot.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure root logging once per process; later calls only adjust the level.
    global _configured
    resolved = (level or get_settings().log_level or "INFO").upper()
    if not _configured:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT)
        # Keep per-request client logs out of monitor output unless debugging.
        logging.getLogger("httpx").setLevel(logging.WARNING)
        _configured = True
    logging.getLogger().setLevel(resolved)
