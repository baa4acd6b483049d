"""
Expiry sweep: periodically moves APPROVED grants past their expiry to EXPIRED.

Runs inside the API process as an asyncio task, or once per invocation from
``accesshub sweep`` for cron-style deployments. Each transition is its own
compare-and-set, so several sweepers may run at once.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from models.database import get_session
from .workflow import AccessWorkflow

logger = logging.getLogger(__name__)


def sweep_once(now: Optional[datetime] = None) -> int:
    """Run one sweep in its own transaction and return the number expired."""
    with get_session() as session:
        return AccessWorkflow(session).expire_due(now)


async def run_expiry_sweeper(interval_seconds: int):
    """
    Sweep every ``interval_seconds`` until cancelled.

    A failed sweep is logged and retried on the next tick.
    """
    logger.info(f"Expiry sweeper started (every {interval_seconds}s)")
    while True:
        try:
            await asyncio.to_thread(sweep_once)
        except Exception:
            logger.exception("Expiry sweep failed")
        await asyncio.sleep(interval_seconds)
