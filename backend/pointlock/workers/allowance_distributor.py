"""Allowance distributor: credits the weekly allowance to every wallet whose cooldown has expired.

Safe to re-run at any time; the per-week idempotency key stops double credits.
"""

import logging
from datetime import timedelta
from typing import Optional

import pointlock.database as _db
from pointlock.config import settings
from pointlock.errors import AppError
from pointlock.services.allowance_service import credit_allowance
from pointlock.utils import utcnow

logger = logging.getLogger("pointlock.allowance_distributor")


async def distribute_allowances(batch_size: Optional[int] = None, dry_run: bool = False) -> dict:
    """Walk due wallets in user_id order, one page at a time."""
    batch_size = batch_size or settings.ALLOWANCE_BATCH_SIZE
    cutoff = utcnow() - timedelta(days=settings.ALLOWANCE_COOLDOWN_DAYS)
    stats = {"processed": 0, "skipped": 0, "errors": 0}
    last_user_id: Optional[str] = None

    while True:
        query: dict = {
            "$or": [
                {"last_allowance_at": None},
                {"last_allowance_at": {"$lte": cutoff}},
            ]
        }
        if last_user_id is not None:
            query["user_id"] = {"$gt": last_user_id}

        wallets = await _db.db.wallets.find(query, {"user_id": 1}).sort(
            "user_id", 1
        ).limit(batch_size).to_list(length=batch_size)
        if not wallets:
            break

        for wallet in wallets:
            user_id = wallet["user_id"]
            try:
                result = await credit_allowance(user_id, dry_run=dry_run)
            except AppError as exc:
                stats["errors"] += 1
                logger.warning("Allowance distribution failed: user=%s code=%s", user_id, exc.code)
                continue
            if result.credited or result.dry_run:
                stats["processed"] += 1
            else:
                stats["skipped"] += 1

        last_user_id = wallets[-1]["user_id"]
        if len(wallets) < batch_size:
            break

    logger.info(
        "Allowance distribution complete: processed=%d skipped=%d errors=%d dry_run=%s",
        stats["processed"], stats["skipped"], stats["errors"], dry_run,
    )
    return stats


async def run_allowance_distribution() -> None:
    """Scheduler entry point."""
    await distribute_allowances()
