from __future__ import annotations

import logging
import os

from services.api.app.db.database import get_engine
from services.api.app.db.models import Base

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "y"}


def auto_create_enabled() -> bool:
    return os.getenv("TABLEFRONT_DB_AUTO_CREATE", "true").strip().lower() in _TRUTHY


def init_db() -> None:
    """Create the checkout tables on startup.

    Deployments that manage the schema themselves set TABLEFRONT_DB_AUTO_CREATE=false.
    """

    if not auto_create_enabled():
        logger.info("db.init skipped auto_create=false")
        return

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("db.init tables=%s", ",".join(sorted(Base.metadata.tables)))
