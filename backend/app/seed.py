import logging

from pymongo import ReturnDocument

import app.database as _db
from app.config import settings
from app.models.package import PackageTier
from app.utils import utcnow

logger = logging.getLogger("vipslips.seed")

DEFAULT_PACKAGES = [
    {"name": "Monthly VIP", "slug": "monthly", "tier": PackageTier.monthly.value,
     "duration_days": 30, "price_cents": 2500, "sort_order": 1},
    {"name": "Half Season VIP", "slug": "half-season", "tier": PackageTier.half_season.value,
     "duration_days": 150, "price_cents": 10000, "sort_order": 2},
    {"name": "Full Season VIP", "slug": "full-season", "tier": PackageTier.full_season.value,
     "duration_days": 300, "price_cents": 18000, "sort_order": 3},
]


async def seed_admin_user() -> None:
    """Promote (or create) the SEED_ADMIN_EMAIL user to superadmin."""
    if not settings.SEED_ADMIN_EMAIL:
        logger.debug("SEED_ADMIN_EMAIL not set, skipping seed")
        return

    now = utcnow()
    user = await _db.db.users.find_one_and_update(
        {"email": settings.SEED_ADMIN_EMAIL},
        {
            "$set": {"role": "superadmin", "updated_at": now},
            "$setOnInsert": {
                "display_name": None,
                "is_deleted": False,
                "created_at": now,
            },
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Seed admin ensured: %s", user["_id"])


async def seed_default_packages() -> int:
    """Insert the default package catalogue when no packages exist yet."""
    if await _db.db.packages.count_documents({}) > 0:
        logger.debug("Packages present, skipping package seed")
        return 0

    now = utcnow()
    docs = [
        {**pkg, "original_price_cents": None, "is_active": True, "created_at": now, "updated_at": now}
        for pkg in DEFAULT_PACKAGES
    ]
    await _db.db.packages.insert_many(docs)
    logger.info("Seeded %d default packages", len(docs))
    return len(docs)
