from __future__ import annotations

import logging
import sys

from dgat.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure the root handler once per process; later calls only adjust the level.
    global _configured
    resolved = (level or _settings_level()).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, resolved, logging.INFO))
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    root.addHandler(handler)
    # SQLAlchemy echoes every statement at INFO; keep it at WARNING unless asked.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True


def _settings_level() -> str:
    try:
        return get_settings().log_level
    except ValueError:
        # Settings validation fails without DATABASE_URL; logging must still come up.
        return "INFO"
