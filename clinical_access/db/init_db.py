"""Database initialization utilities."""

import logging

from clinical_access import models  # noqa: F401  (registers tables)
from clinical_access.db.base import Base
from clinical_access.db.session import engine

logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
