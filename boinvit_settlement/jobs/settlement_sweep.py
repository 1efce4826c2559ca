"""
Settlement Sweep Worker
Finishes settlements left partial, or stuck in processing, by replaying the
stored event through the dispatcher. Completed steps are skipped.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import SETTLEMENT_STALE_SECONDS, SETTLEMENT_SWEEP_INTERVAL_SECONDS
from ..database import SessionLocal
from ..domain.webhooks.dispatcher import SettlementDispatcher
from ..domain.webhooks.reconciler import SettlementError, SettlementReconciler
from ..domain.webhooks.repository import SettlementRepository
from ..security_events import SecurityEventLogger

logger = logging.getLogger(__name__)


def sweep_settlements(
    session_factory: Callable[[], Session] = SessionLocal,
    security_logger: Optional[SecurityEventLogger] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
    stale_after_seconds: int = SETTLEMENT_STALE_SECONDS,
    limit: int = 100,
) -> dict:
    """
    Resume every resumable settlement once.

    Returns counts of records found, completed, still partial and rejected.
    """
    security_logger = security_logger or SecurityEventLogger(session_factory)
    summary = {"found": 0, "completed": 0, "partial": 0, "rejected": 0}

    db = session_factory()
    try:
        stale_before = clock() - timedelta(seconds=stale_after_seconds)
        records = SettlementRepository.list_resumable(db, stale_before, limit=limit)

        if not records:
            logger.info("✅ No settlements to resume")
            return summary

        logger.info(f"🔄 Resuming {len(records)} settlements")
        summary["found"] = len(records)

        reconciler = SettlementReconciler(
            db, security_logger, clock=clock, stale_after_seconds=stale_after_seconds
        )
        dispatcher = SettlementDispatcher(db, security_logger, reconciler=reconciler)

        for record in records:
            reference = record.reference
            if not record.payload:
                logger.warning(f"⚠️ Settlement {reference} has no stored event, skipping")
                summary["rejected"] += 1
                continue

            try:
                result = dispatcher.dispatch(record.payload)
            except SettlementError as e:
                db.rollback()
                logger.warning(f"⚠️ Settlement {reference} cannot be resumed: {e.message}")
                summary["rejected"] += 1
                continue
            except Exception as e:
                db.rollback()
                logger.error(f"❌ Error resuming settlement {reference}: {e}")
                summary["rejected"] += 1
                continue

            if result.is_partial:
                summary["partial"] += 1
            else:
                summary["completed"] += 1

        logger.info(f"✅ Settlement sweep done: {summary}")
        return summary
    finally:
        db.close()


async def run_settlement_sweep(interval_seconds: int = SETTLEMENT_SWEEP_INTERVAL_SECONDS):
    """
    Main worker loop - runs every interval
    """
    logger.info("🚀 Starting settlement sweep worker...")

    while True:
        try:
            await asyncio.to_thread(sweep_settlements)
            await asyncio.sleep(interval_seconds)

        except Exception as e:
            logger.error(f"❌ Error in settlement sweep loop: {e}")
            await asyncio.sleep(interval_seconds)


if __name__ == "__main__":
    # Run worker
    asyncio.run(run_settlement_sweep())
