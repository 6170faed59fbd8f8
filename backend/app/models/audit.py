from datetime import datetime

from pydantic import BaseModel, Field


class AuditLog(BaseModel):
    """Immutable audit log entry.

    Insert-only. No updates or deletes permitted on this collection.
    """

    timestamp: datetime
    actor_id: str  # Who did it? (User-ID or "SYSTEM")
    target_id: str  # Subscription-ID or Betslip-ID
    action: str  # e.g. "SUBSCRIPTION_APPROVE", "BETSLIP_SETTLE"
    metadata: dict = Field(default_factory=dict)  # Reason, outcome, profit_units, ...
    ip_truncated: str = ""  # e.g. "192.168.1.xxx"
