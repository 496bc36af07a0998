"""
Refund Tasks - compensating refunds for cancelled bookings
"""
from celery import shared_task
from typing import Dict, Optional
import asyncio
import logging

from travelagent.config import settings
from travelagent.services.booking_service import BookingService
from travelagent.services.notifications import NotificationDispatcher
from travelagent.services.payments import build_payment_gateway
from travelagent.utils.database import create_engine, create_session_factory

logger = logging.getLogger(__name__)


async def run_refund_retry(limit: int, database_url: str = settings.DATABASE_URL) -> Dict[str, int]:
    """One retry pass on a short-lived engine (each task runs its own event loop)"""
    engine = create_engine(database_url)
    try:
        session_factory = create_session_factory(engine)
        service = BookingService(
            session_factory,
            build_payment_gateway(),
            NotificationDispatcher(session_factory),
        )
        return await service.retry_failed_refunds(limit)
    finally:
        await engine.dispose()


@shared_task(bind=True, max_retries=3)
def retry_failed_refunds(self, limit: Optional[int] = None):
    """
    Re-attempt refunds for cancelled bookings whose refund failed or never
    completed. Runs every 15 minutes.
    """
    logger.info("Retrying failed refunds...")

    try:
        stats = asyncio.run(run_refund_retry(limit or settings.REFUND_RETRY_BATCH))
    except Exception as e:
        logger.error(f"Refund retry pass failed: {e}")
        raise self.retry(exc=e, countdown=60)

    logger.info(f"Refund retry complete: {stats['completed']} completed, {stats['failed']} failed")
    return stats
