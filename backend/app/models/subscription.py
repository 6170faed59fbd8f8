"""Subscription models: lifecycle states, audit events, payment receipts."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    pending = "pending"    # Created on purchase intent, awaiting receipt review
    active = "active"      # Approved, start_at/end_at assigned
    expired = "expired"    # Terminal: manual, conflict or end-date sweep
    rejected = "rejected"  # Terminal: admin denied the receipt


class SubscriptionEventAction(str, Enum):
    created = "created"
    submitted_payment = "submitted_payment"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"
    updated = "updated"


class SubscriptionInDB(BaseModel):
    """Full subscription document as stored in MongoDB.

    start_at/end_at are set if and only if the subscription is or has been
    active.
    """
    user_id: str
    package_id: str
    status: SubscriptionStatus = SubscriptionStatus.pending
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SubscriptionEventInDB(BaseModel):
    """Append-only lifecycle audit row. Never updated or deleted."""
    subscription_id: str
    actor_user_id: str
    action: SubscriptionEventAction
    notes: Optional[str] = None
    created_at: datetime


class PaymentReceiptInDB(BaseModel):
    subscription_id: str
    method_id: str
    method: str                                   # Payment method type, e.g. "wish" | "crypto"
    amount_cents: int
    reference: str
    receipt_url: str
    receipt_context: Dict[str, Any] = Field(default_factory=dict)  # Method snapshot at submit time
    submitted_at: datetime
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None


# ---------- Request / Response models ----------

class ApproveSubscriptionRequest(BaseModel):
    subscription_id: str
    start_at: datetime
    end_at: datetime


class RejectSubscriptionRequest(BaseModel):
    subscription_id: str
    reason: str


class ExpireSubscriptionRequest(BaseModel):
    subscription_id: str
    reason: Optional[str] = None


class SubmitPaymentRequest(BaseModel):
    package_id: Optional[str] = None
    subscription_id: Optional[str] = None
    amount_cents: int
    method_id: str
    reference: str
    receipt_url: str


class LifecycleResult(BaseModel):
    """Result of approve/reject/expire."""
    success: bool
    message: str


class SweepResult(BaseModel):
    success: bool
    message: str
    expired_count: int
    failed_ids: List[str] = Field(default_factory=list)


class SubscriptionTimeInfo(BaseModel):
    days_remaining: int
    is_expired: bool
    expires_at: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    package_id: str
    status: str
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    package: Optional[Dict[str, Any]] = None
    payment_receipts: Optional[List[Dict[str, Any]]] = None
    events: Optional[List[Dict[str, Any]]] = None
    time_info: Optional[SubscriptionTimeInfo] = None
