"""
backend/agenda/services/recurrence_extender.py

Rolling generation of INDEFINITE series.

Periodically materializes the next window of every active INDEFINITE
recurrence whose last generated date is close enough to today.
Exception dates and conflicting dates are skipped, never fatal.

Runs as an asyncio task in backend lifespan.
Uses synchronous DB and Redis (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime

from ..config import settings
from ..database import SessionLocal
from .agenda import extend_indefinite_series

logger = logging.getLogger(__name__)


async def recurrence_extender_loop() -> None:
    """Extend due INDEFINITE series every recurrence_extender_interval_seconds."""
    logger.info("recurrence_extender_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(run_extension)
            except asyncio.CancelledError:
                logger.info("recurrence_extender_loop cancelled")
                raise
            except Exception:
                logger.exception("recurrence_extender_loop error")

            await asyncio.sleep(settings.recurrence_extender_interval_seconds)
    except asyncio.CancelledError:
        pass


def run_extension(now: datetime | None = None) -> int:
    """One extension pass (synchronous). Returns the number of appointments created."""
    db = SessionLocal()
    try:
        created = extend_indefinite_series(db, now or datetime.now())
    finally:
        db.close()

    if created:
        logger.info(f"recurrence_extender created {created} appointment(s)")
    return created
