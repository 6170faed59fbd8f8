"""Subscription package models and tier ordering."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class PackageTier(str, Enum):
    monthly = "monthly"
    half_season = "half_season"
    full_season = "full_season"


# Entitlement ordering: a higher tier can view everything a lower tier can.
TIER_RANK: dict[str, int] = {
    PackageTier.monthly.value: 1,
    PackageTier.half_season.value: 2,
    PackageTier.full_season.value: 3,
}


class PackageInDB(BaseModel):
    name: str
    slug: str
    tier: PackageTier
    duration_days: int
    price_cents: int
    original_price_cents: Optional[int] = None    # Strike-through price for discount display
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime
    updated_at: datetime


class PackageCreate(BaseModel):
    name: str
    slug: str
    tier: PackageTier
    duration_days: int
    price_cents: int
    original_price_cents: Optional[int] = None
    is_active: bool = True
    sort_order: int = 0

    @field_validator("slug")
    @classmethod
    def slug_format(cls, v: str) -> str:
        v = v.strip().lower()
        if not v or not all(c.isalnum() or c == "-" for c in v):
            raise ValueError("Slug may only contain letters, digits and hyphens.")
        return v

    @field_validator("duration_days", "price_cents")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be greater than zero.")
        return v
