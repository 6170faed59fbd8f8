"""Immutable audit logging for subscription and betslip actions.

All audit entries are insert-only. This module intentionally exposes NO
update or delete operations on the audit_logs or subscription_events
collections. Writes never raise: a failed audit insert is logged and the
primary operation carries on.
"""

import logging
from typing import Optional

from fastapi import Request

import app.database as _db
from app.models.audit import AuditLog
from app.utils import utcnow

logger = logging.getLogger("vipslips.audit")


def _truncate_ip(ip: str) -> str:
    """Anonymize an IP address by replacing the last segment.

    IPv4: 192.168.1.42  -> 192.168.1.xxx
    IPv6: 2001:db8::1   -> 2001:db8::xxx
    """
    if not ip:
        return ""

    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            parts[-1] = "xxx"
            return ".".join(parts)
        return ip

    if ":" in ip:
        parts = ip.rsplit(":", 1)
        if len(parts) == 2:
            return f"{parts[0]}:xxx"
        return ip

    return ip


def _get_client_ip(request: Optional[Request]) -> str:
    """Extract client IP from request, preferring X-Forwarded-For (behind a proxy)."""
    if request is None:
        return ""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return ""


async def log_audit(
    *,
    actor_id: str,
    target_id: str,
    action: str,
    metadata: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Write an immutable audit record to the audit_logs collection.

    Args:
        actor_id: Who performed the action (User-ID or "SYSTEM").
        target_id: Subscription-ID or Betslip-ID affected.
        action: Action identifier, e.g. "SUBSCRIPTION_APPROVE", "BETSLIP_SETTLE".
        metadata: Optional dict with reason/outcome/profit context.
        request: Optional FastAPI request for IP extraction.
    """
    doc = AuditLog(
        timestamp=utcnow(),
        actor_id=actor_id,
        target_id=target_id,
        action=action,
        metadata=metadata or {},
        ip_truncated=_truncate_ip(_get_client_ip(request)),
    ).model_dump()

    try:
        await _db.db.audit_logs.insert_one(doc)
    except Exception:
        # Audit logging must never crash the request
        logger.exception("Failed to write audit log: action=%s actor=%s", action, actor_id)


async def append_subscription_event(
    *,
    subscription_id: str,
    actor_id: str,
    action: str,
    notes: Optional[str] = None,
) -> None:
    """Append one lifecycle row to subscription_events."""
    doc = {
        "subscription_id": subscription_id,
        "actor_user_id": actor_id,
        "action": action,
        "notes": notes,
        "created_at": utcnow(),
    }

    try:
        await _db.db.subscription_events.insert_one(doc)
    except Exception:
        logger.exception(
            "Failed to write subscription event: subscription=%s action=%s actor=%s",
            subscription_id, action, actor_id,
        )
