"""
backend/pointlock/database.py

Purpose:
    MongoDB connection bootstrap, multi-document transaction helper and
    index management for slips, wallets and the wallet ledger.

Dependencies:
    - motor.motor_asyncio
    - pointlock.config
"""

import logging
from contextlib import asynccontextmanager

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from pointlock.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("pointlock.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


@asynccontextmanager
async def transaction():
    """Yield a session with an open multi-document transaction.

    Commits when the block exits cleanly, aborts when it raises.
    Requires a replica set (Mongo transactions are unavailable on standalone).
    """
    async with await client.start_session() as session:
        async with session.start_transaction():
            yield session


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Slips ----

    await db.slips.create_index([("user_id", 1), ("created_at", -1)])
    await db.slips.create_index([("user_id", 1), ("status", 1), ("updated_at", -1)])
    await db.slips.create_index("picks.event_id")
    await db.slips.create_index("picks.id")

    # ---- Sports events (external feed, read-only here) ----

    await db.sports_events.create_index([("status", 1), ("scheduled_at", 1)])

    # ---- Wallets ----

    await db.wallets.create_index("user_id", unique=True)
    await db.wallets.create_index([("last_allowance_at", 1), ("user_id", 1)])

    # ---- Wallet ledger ----

    await db.wallet_transactions.create_index("idempotency_key", unique=True, sparse=True)
    await db.wallet_transactions.create_index([("wallet_id", 1), ("created_at", -1)])
    await db.wallet_transactions.create_index([("user_id", 1), ("created_at", -1)])
    await db.wallet_transactions.create_index(
        [("type", 1), ("metadata.original_transaction_id", 1)], sparse=True
    )

    logger.info("Indexes ensured for db=%s", settings.MONGO_DB)
