"""Pure payout math for promoter commission contracts."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from venueledger.services.commission_rules import BonusTier, CommissionRules
from venueledger.utils.numeric import quantize_money

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PayoutBreakdown:
    """Every component of a promoter payout, in evaluation order."""

    effective_count: int
    per_head_rate: Optional[Decimal]
    base_amount: Decimal
    minimum_guests_met: bool
    below_minimum_percent_applied: Optional[Decimal]
    per_head_amount: Decimal
    bonus_amount: Decimal
    bonus_source: Optional[str]
    bonus_threshold: Optional[int]
    bonus_label: Optional[str]
    fixed_fee_amount: Decimal
    calculated_amount: Decimal
    manual_adjustment: Decimal
    final_amount: Decimal

    def to_dict(self) -> dict:
        def _money(value):
            return None if value is None else str(value)

        return {
            "effective_count": self.effective_count,
            "per_head_rate": _money(self.per_head_rate),
            "base_amount": _money(self.base_amount),
            "minimum_guests_met": self.minimum_guests_met,
            "below_minimum_percent_applied": _money(
                self.below_minimum_percent_applied
            ),
            "per_head_amount": _money(self.per_head_amount),
            "bonus_amount": _money(self.bonus_amount),
            "bonus_source": self.bonus_source,
            "bonus_threshold": self.bonus_threshold,
            "bonus_label": self.bonus_label,
            "fixed_fee_amount": _money(self.fixed_fee_amount),
            "calculated_amount": _money(self.calculated_amount),
            "manual_adjustment": _money(self.manual_adjustment),
            "final_amount": _money(self.final_amount),
        }


def _select_tier(tiers, effective_count: int) -> Optional[BonusTier]:
    selected = None
    for tier in sorted(tiers, key=lambda t: t.threshold):
        if tier.threshold <= effective_count:
            selected = tier
    return selected


def calculate_payout(rules: CommissionRules, effective_count: int) -> PayoutBreakdown:
    """Compute a promoter's payout for ``effective_count`` guests.

    The base per-head amount is scaled when the minimum guest count is
    missed, then clamped to the per-head bounds.  Tiered bonuses take
    precedence over the single threshold bonus; the fixed fee is added
    regardless of attendance and the manual adjustment is applied last.
    Rounding happens once, on the final amount.
    """

    # 1. base
    if rules.per_head_rate is not None:
        base_amount = rules.per_head_rate * effective_count
    else:
        base_amount = ZERO

    # 2. minimum guests
    per_head_amount = base_amount
    minimum_guests_met = True
    percent_applied = None
    if rules.minimum_guests is not None and effective_count < rules.minimum_guests:
        minimum_guests_met = False
        percent_applied = (
            rules.below_minimum_percent
            if rules.below_minimum_percent is not None
            else HUNDRED
        )
        per_head_amount = per_head_amount * percent_applied / HUNDRED

    # 3. per-head bounds
    if rules.per_head_rate is not None:
        if rules.per_head_min is not None and per_head_amount < rules.per_head_min:
            per_head_amount = rules.per_head_min
        if rules.per_head_max is not None and per_head_amount > rules.per_head_max:
            per_head_amount = rules.per_head_max

    # 4. bonus
    bonus_amount = ZERO
    bonus_source = None
    bonus_threshold = None
    bonus_label = None
    if rules.bonus_tiers:
        tier = _select_tier(rules.bonus_tiers, effective_count)
        if tier is not None:
            bonus_amount = tier.amount
            bonus_source = "tier"
            bonus_threshold = tier.threshold
            bonus_label = tier.label
    elif (
        rules.bonus_threshold is not None
        and rules.bonus_amount is not None
        and effective_count >= rules.bonus_threshold
    ):
        bonus_amount = rules.bonus_amount
        bonus_source = "threshold"
        bonus_threshold = rules.bonus_threshold

    # 5. fixed fee
    fixed_fee_amount = rules.fixed_fee if rules.fixed_fee is not None else ZERO

    calculated_amount = per_head_amount + bonus_amount + fixed_fee_amount

    # 6. manual adjustment
    manual_adjustment = rules.manual_adjustment_amount or ZERO
    final_amount = quantize_money(calculated_amount + manual_adjustment)

    return PayoutBreakdown(
        effective_count=effective_count,
        per_head_rate=rules.per_head_rate,
        base_amount=base_amount,
        minimum_guests_met=minimum_guests_met,
        below_minimum_percent_applied=percent_applied,
        per_head_amount=per_head_amount,
        bonus_amount=bonus_amount,
        bonus_source=bonus_source,
        bonus_threshold=bonus_threshold,
        bonus_label=bonus_label,
        fixed_fee_amount=fixed_fee_amount,
        calculated_amount=calculated_amount,
        manual_adjustment=manual_adjustment,
        final_amount=final_amount,
    )


def format_breakdown(breakdown: PayoutBreakdown, currency: str) -> str:
    """Return a one-line, human-readable description of a payout."""

    def _fmt(amount: Decimal) -> str:
        return f"{currency} {quantize_money(amount):,}"

    parts = []
    if breakdown.per_head_rate is not None:
        part = (
            f"{breakdown.effective_count} check-ins x {_fmt(breakdown.per_head_rate)}"
            f" = {_fmt(breakdown.base_amount)}"
        )
        if breakdown.below_minimum_percent_applied is not None:
            part += f" at {breakdown.below_minimum_percent_applied.normalize():f}%"
        if breakdown.per_head_amount != breakdown.base_amount:
            part += f" -> {_fmt(breakdown.per_head_amount)}"
        parts.append(part)
    if breakdown.bonus_amount:
        label = f" - {breakdown.bonus_label}" if breakdown.bonus_label else ""
        parts.append(
            f"Bonus: {_fmt(breakdown.bonus_amount)}"
            f" ({breakdown.bonus_threshold}+ guests){label}"
        )
    if breakdown.fixed_fee_amount:
        parts.append(f"Fixed fee: {_fmt(breakdown.fixed_fee_amount)}")
    if breakdown.manual_adjustment:
        sign = "+" if breakdown.manual_adjustment > 0 else "-"
        parts.append(
            f"Manual adjustment: {sign}{_fmt(abs(breakdown.manual_adjustment))}"
        )
    return " + ".join(parts) if parts else "No commission"
