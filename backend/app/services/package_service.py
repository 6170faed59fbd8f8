"""
backend/app/services/package_service.py

Purpose:
    Subscription package catalogue: creation with unique slugs, active
    listing and slug availability checks.

Dependencies:
    - app.database
"""

import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.models.package import PackageCreate
from app.models.user import Actor
from app.services.audit_service import log_audit
from app.services.errors import ConflictError, ValidationError
from app.utils import as_utc, to_object_id, utcnow

logger = logging.getLogger("vipslips.package_service")


def package_to_response(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc["name"],
        "slug": doc["slug"],
        "tier": doc["tier"],
        "duration_days": doc["duration_days"],
        "price_cents": doc["price_cents"],
        "original_price_cents": doc.get("original_price_cents"),
        "is_active": doc.get("is_active", True),
        "sort_order": doc.get("sort_order", 0),
        "created_at": as_utc(doc.get("created_at")),
        "updated_at": as_utc(doc.get("updated_at")),
    }


async def create_package(data: PackageCreate, actor: Actor) -> dict:
    if data.original_price_cents is not None and data.original_price_cents < data.price_cents:
        raise ValidationError("Original price must not be lower than the price")

    now = utcnow()
    doc = {
        **data.model_dump(),
        "tier": data.tier.value,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await _db.db.packages.insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("A package with this slug already exists")
    doc["_id"] = result.inserted_id

    await log_audit(
        actor_id=actor.id,
        target_id=str(doc["_id"]),
        action="PACKAGE_CREATE",
        metadata={"slug": doc["slug"], "tier": doc["tier"], "price_cents": doc["price_cents"]},
    )
    logger.info("Package created: slug=%s tier=%s by=%s", doc["slug"], doc["tier"], actor.id)
    return package_to_response(doc)


async def list_packages(include_inactive: bool = False) -> list[dict]:
    query: dict = {} if include_inactive else {"is_active": True}
    docs = await _db.db.packages.find(query).sort("sort_order", 1).to_list(length=200)
    return [package_to_response(d) for d in docs]


async def is_slug_available(slug: str, exclude_id: Optional[str] = None) -> bool:
    slug = (slug or "").strip().lower()
    if not slug:
        raise ValidationError("Slug parameter is required")
    query: dict = {"slug": slug}
    exclude_oid = to_object_id(exclude_id)
    if exclude_oid is not None:
        query["_id"] = {"$ne": exclude_oid}
    return await _db.db.packages.find_one(query, {"_id": 1}) is None
