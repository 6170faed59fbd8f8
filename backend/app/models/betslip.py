from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class BetslipType(str, Enum):
    single = "single"
    multi = "multi"      # Settled only through leg aggregation


class BetslipStatus(str, Enum):
    pending = "pending"
    settled = "settled"


class BetslipOutcome(str, Enum):
    pending = "pending"
    won = "won"
    lost = "lost"
    void = "void"        # Stake returned


class LegStatus(str, Enum):
    pending = "pending"
    won = "won"
    lost = "lost"
    void = "void"


class BetslipInDB(BaseModel):
    """Full betslip document as stored in MongoDB.

    For type=multi, status/outcome/settled_at/combined_odds are derived from
    the legs and written only by leg aggregation.
    """
    type: BetslipType = BetslipType.single
    league: str
    title: str
    selection: str
    odds_decimal: float                           # Effective odds for single slips
    combined_odds: Optional[float] = None         # Cached product of leg odds (multi)
    stake_units: float
    confidence_pct: float = 0.0
    min_tier: str = "monthly"                     # Lowest package tier allowed to view
    status: BetslipStatus = BetslipStatus.pending
    outcome: BetslipOutcome = BetslipOutcome.pending
    notes: Optional[str] = None
    event_datetime: Optional[datetime] = None
    posted_at: datetime
    settled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class BetslipLegInDB(BaseModel):
    """One sub-selection of a betslip. leg_order is 1-based and unique per betslip."""
    betslip_id: str
    leg_order: int
    title: str
    description: str
    odds_decimal: float
    status: LegStatus = LegStatus.pending
    notes: Optional[str] = None
    settled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------- Request / Response models ----------

class SettleBetslipRequest(BaseModel):
    outcome: str                                  # "won" | "lost" | "void", validated in service
    notes: Optional[str] = None


class BulkSettleRequest(BaseModel):
    betslip_ids: List[str]
    outcome: str
    notes: Optional[str] = None


class CreateLegRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    odds_decimal: Optional[float] = None
    notes: Optional[str] = None


class UpdateLegRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    odds_decimal: Optional[float] = None
    status: Optional[LegStatus] = None
    notes: Optional[str] = None


class SettlementSummary(BaseModel):
    outcome: str
    profit_units: float
    settled_by: str
    settled_at: datetime


class SettleBetslipResponse(BaseModel):
    betslip: Dict[str, Any]
    settlement: SettlementSummary


class BulkSettleError(BaseModel):
    id: str
    error: str


class BulkSettleResponse(BaseModel):
    success_count: int = 0
    failed_count: int = 0
    errors: List[BulkSettleError] = Field(default_factory=list)
