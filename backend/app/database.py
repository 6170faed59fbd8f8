"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for all collections.
    Storage-level uniqueness (leg order per betslip, package slugs, user
    emails) is enforced here rather than in the services.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("vipslips.database")


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


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Users ----
    await db.users.create_index("email", unique=True)
    await db.users.create_index("role")

    # ---- Packages ----
    await db.packages.create_index("slug", unique=True)
    await db.packages.create_index([("is_active", ASCENDING), ("sort_order", ASCENDING)])

    # ---- Subscriptions ----
    await db.subscriptions.create_index([("user_id", ASCENDING), ("status", ASCENDING)])
    # End-date sweep scans active rows by end_at
    await db.subscriptions.create_index([("status", ASCENDING), ("end_at", ASCENDING)])
    await db.subscription_events.create_index(
        [("subscription_id", ASCENDING), ("created_at", ASCENDING)]
    )
    await db.payment_receipts.create_index(
        [("subscription_id", ASCENDING), ("submitted_at", DESCENDING)]
    )

    # ---- Betslips ----
    await db.betslips.create_index([("status", ASCENDING), ("posted_at", DESCENDING)])
    await db.betslips.create_index("min_tier")
    # Two concurrent add-leg calls must not both claim the same leg_order
    await db.betslip_legs.create_index(
        [("betslip_id", ASCENDING), ("leg_order", ASCENDING)],
        unique=True,
    )

    # ---- Audit ----
    await db.audit_logs.create_index([("timestamp", DESCENDING)])
    await db.audit_logs.create_index([("target_id", ASCENDING), ("timestamp", DESCENDING)])

    logger.info("Database indexes ensured for db=%s", settings.MONGO_DB)
