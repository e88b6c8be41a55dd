"""Scheduled task expiring overdue access requests.

Reads already expire overdue requests lazily; this sweep makes sure
requests nobody looks at are closed too, and their expiry is audited.

Usage:
    # Run directly
    python -m clinical_access.tasks.expiration_sweep

    # Or via cron (every 5 minutes)
    */5 * * * * cd /path/to/project && python -m clinical_access.tasks.expiration_sweep

    # Environment variables:
    DATABASE_URL - async SQLAlchemy URL
"""

import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinical_access.core.config import settings
from clinical_access.db.session import AsyncSessionLocal
from clinical_access.repositories.sql import SqlAccessRequestRepository
from clinical_access.services.access_requests import AccessRequestService
from clinical_access.services.audit import DatabaseAuditTrail
from clinical_access.services.notifications import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


async def expire_with_session(
    session: AsyncSession,
    notifier: Notifier | None = None,
    limit: int | None = None,
) -> int:
    """Expire overdue requests using an open session.

    Returns:
        Number of requests moved to EXPIRED
    """
    service = AccessRequestService(
        requests=SqlAccessRequestRepository(session),
        audit=DatabaseAuditTrail(session),
        notifier=notifier or LoggingNotifier(),
    )
    return await service.expire_overdue(limit=limit)


async def run_expiration_sweep_task(
    database_url: str | None = None,
    limit: int | None = None,
) -> dict:
    """Run the expiration sweep once.

    Args:
        database_url: Database URL. If not provided, uses the configured one.
        limit: Maximum requests to expire in this run

    Returns:
        Job results summary
    """
    db_url = database_url or settings.database_url
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    logger.info("Starting access request expiration sweep")

    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_factory() as session:
            expired = await expire_with_session(session, limit=limit)
            logger.info("Expiration sweep complete: %d expired", expired)
            return {"expired": expired}
    finally:
        await engine.dispose()


async def sweep_loop(interval_seconds: int | None = None) -> None:
    """Run the sweep forever inside the API process.

    A failed run is logged and retried on the next tick.
    """
    interval = (
        interval_seconds
        if interval_seconds is not None
        else settings.expiration_sweep_interval_seconds
    )
    logger.info("Expiration sweep loop started (every %ds)", interval)
    while True:
        try:
            async with AsyncSessionLocal() as session:
                await expire_with_session(session)
        except Exception:
            logger.exception("Expiration sweep failed")
        await asyncio.sleep(interval)


def main():
    """CLI entry point."""
    import argparse

    from clinical_access.core.logging import setup_logging

    parser = argparse.ArgumentParser(description="Expire overdue access requests")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (overrides DATABASE_URL env var)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum requests to expire in this run",
    )
    args = parser.parse_args()

    setup_logging()
    try:
        results = asyncio.run(
            run_expiration_sweep_task(database_url=args.database_url, limit=args.limit)
        )
        print(f"Job completed successfully: {results}")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
