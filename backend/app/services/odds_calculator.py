"""
backend/app/services/odds_calculator.py

Purpose:
    Pure odds and profit/loss arithmetic for betslips: combined odds of
    multi-leg slips, settlement profit, leg aggregation into a slip outcome,
    and the aggregate P&L report.

    No I/O. All inputs are plain numbers or document dicts.
"""

from __future__ import annotations

from functools import reduce
from operator import mul
from typing import Any, Iterable, NamedTuple

from app.models.betslip import BetslipOutcome, BetslipType, LegStatus

_SETTLED_OUTCOMES = frozenset({
    BetslipOutcome.won.value,
    BetslipOutcome.lost.value,
    BetslipOutcome.void.value,
})


def _value(v: Any) -> str:
    return v.value if hasattr(v, "value") else str(v)


def combined_odds(odds: Iterable[float]) -> float:
    """Product of all leg odds. Empty input yields 1.0."""
    return reduce(mul, (float(o) for o in odds), 1.0)


def effective_odds(betslip: dict) -> float:
    """Odds used for P&L: cached combined odds for multi slips, else odds_decimal."""
    if _value(betslip.get("type", BetslipType.single)) == BetslipType.multi.value:
        return float(betslip.get("combined_odds") or betslip.get("odds_decimal") or 1.0)
    return float(betslip.get("odds_decimal") or 1.0)


def profit_units(stake_units: float, odds: float, outcome: BetslipOutcome | str) -> float:
    """won: stake*(odds-1), lost: -stake, void: 0."""
    outcome = _value(outcome)
    if outcome == BetslipOutcome.won.value:
        return stake_units * (odds - 1.0)
    if outcome == BetslipOutcome.lost.value:
        return -stake_units
    if outcome == BetslipOutcome.void.value:
        return 0.0
    raise ValueError(f"profit is undefined for outcome {outcome!r}")


class SettlementPnl(NamedTuple):
    stake_units: float
    return_units: float
    profit_units: float


def settlement_pnl(betslip: dict) -> SettlementPnl:
    """Stake, total return and profit for one betslip. Pending slips return nothing yet."""
    stake = float(betslip.get("stake_units") or 0.0)
    outcome = _value(betslip.get("outcome", BetslipOutcome.pending))
    if outcome not in _SETTLED_OUTCOMES:
        return SettlementPnl(stake, 0.0, 0.0)
    profit = profit_units(stake, effective_odds(betslip), outcome)
    return_units = stake + profit if outcome != BetslipOutcome.lost.value else 0.0
    return SettlementPnl(stake, return_units, profit)


def aggregate_pnl(betslips: list[dict]) -> dict:
    """Period summary over a list of betslip documents.

    Win rate is over settled slips, ROI over total stake, and average odds
    over decided (won or lost) slips. Percentages are rounded to 2 places.
    """
    counts = {o.value: 0 for o in BetslipOutcome}
    staked = returned = 0.0
    decided_odds = 0.0
    confidence = 0.0

    for slip in betslips:
        outcome = _value(slip.get("outcome", BetslipOutcome.pending))
        if outcome not in counts:
            outcome = BetslipOutcome.pending.value
        counts[outcome] += 1

        pnl = settlement_pnl(slip)
        staked += pnl.stake_units
        returned += pnl.return_units
        if outcome in (BetslipOutcome.won.value, BetslipOutcome.lost.value):
            decided_odds += effective_odds(slip)
        confidence += float(slip.get("confidence_pct") or 0.0)

    settled = counts["won"] + counts["lost"] + counts["void"]
    decided = counts["won"] + counts["lost"]
    net = returned - staked
    total = len(betslips)

    return {
        "total_betslips": total,
        "won_count": counts["won"],
        "lost_count": counts["lost"],
        "void_count": counts["void"],
        "pending_count": counts["pending"],
        "total_units_staked": staked,
        "total_units_won": returned,
        "net_profit_units": net,
        "win_rate_percentage": round(counts["won"] / settled * 100, 2) if settled else 0.0,
        "roi_percentage": round(net / staked * 100, 2) if staked else 0.0,
        "average_odds": round(decided_odds / decided, 2) if decided else 0.0,
        "average_confidence": round(confidence / total, 2) if total else 0.0,
    }


# ---------- Multi-leg aggregation ----------

class MultiLegOutcome(NamedTuple):
    should_settle: bool
    outcome: str
    combined_odds: float
    reason: str


def derive_multi_outcome(legs: list[dict]) -> MultiLegOutcome:
    """Fold leg statuses into the parent slip's outcome.

    Any lost leg loses the slip. Void legs never decide a win or loss: the
    slip settles won once every non-void leg is won, and void when every leg
    is void. Combined odds are always the product over all legs.
    """
    statuses = [_value(leg.get("status", LegStatus.pending)) for leg in legs]
    live_odds = combined_odds(leg["odds_decimal"] for leg in legs)

    if not legs:
        return MultiLegOutcome(False, BetslipOutcome.pending.value, live_odds, "No legs defined")

    lost = [leg.get("title", "") for leg, s in zip(legs, statuses) if s == LegStatus.lost.value]
    if lost:
        return MultiLegOutcome(
            True, BetslipOutcome.lost.value, live_odds,
            f"{len(lost)} leg(s) lost: {', '.join(lost)}",
        )

    pending = statuses.count(LegStatus.pending.value)
    if pending:
        return MultiLegOutcome(
            False, BetslipOutcome.pending.value, live_odds, f"{pending} leg(s) still pending",
        )

    if statuses.count(LegStatus.void.value) == len(statuses):
        return MultiLegOutcome(True, BetslipOutcome.void.value, live_odds, "All legs void")
    return MultiLegOutcome(True, BetslipOutcome.won.value, live_odds, "All legs won")


def leg_status_summary(legs: list[dict]) -> dict:
    total = len(legs)
    counts = {s.value: 0 for s in LegStatus}
    for leg in legs:
        counts[_value(leg.get("status", LegStatus.pending))] += 1
    summary: dict[str, Any] = {"total": total, **counts}
    for status, count in counts.items():
        summary[f"{status}_percentage"] = (count / total * 100) if total else 0.0
    return summary
