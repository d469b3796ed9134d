"""Commission contract rules.

Contracts are stored as one flat row per event and promoter.  At write time a
payload is validated into one of four contract shapes (:class:`FlatPerHead`,
:class:`Tiered`, :class:`FixedFee` or :class:`Hybrid`) so that invalid field
combinations never reach the database.  At read time :func:`resolve_rules`
turns a stored row into a :class:`CommissionRules` value that the payout
calculator evaluates.  Stored rows are trusted except for ``bonus_tiers``,
which is JSON text and degrades to "no tiers" when it cannot be parsed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from venueledger.errors import ContractValidationError, DegradedInputError
from venueledger.utils.numeric import ExpressionParsingError, parse_decimal_string

logger = logging.getLogger(__name__)

TABLE_COMMISSION_PERCENTAGE = "percentage"
TABLE_COMMISSION_FLAT_FEE = "flat_fee"
TABLE_COMMISSION_TYPES = (TABLE_COMMISSION_PERCENTAGE, TABLE_COMMISSION_FLAT_FEE)


@dataclass(frozen=True)
class BonusTier:
    threshold: int
    amount: Decimal
    label: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"threshold": self.threshold, "amount": str(self.amount)}
        if self.label:
            data["label"] = self.label
        return data


@dataclass(frozen=True)
class CommissionRules:
    """Normalized, evaluable view of one promoter's contract."""

    per_head_rate: Optional[Decimal] = None
    per_head_min: Optional[Decimal] = None
    per_head_max: Optional[Decimal] = None
    fixed_fee: Optional[Decimal] = None
    minimum_guests: Optional[int] = None
    below_minimum_percent: Optional[Decimal] = None
    bonus_threshold: Optional[int] = None
    bonus_amount: Optional[Decimal] = None
    bonus_tiers: Tuple[BonusTier, ...] = ()
    manual_adjustment_amount: Decimal = Decimal("0")
    manual_checkins_override: Optional[int] = None


# ----------------------------------------------------------------------
# Contract shapes


@dataclass(frozen=True)
class FlatPerHead:
    kind: ClassVar[str] = "flat_per_head"

    rate: Decimal
    per_head_min: Optional[Decimal] = None
    per_head_max: Optional[Decimal] = None
    minimum_guests: Optional[int] = None
    below_minimum_percent: Optional[Decimal] = None
    bonus_threshold: Optional[int] = None
    bonus_amount: Optional[Decimal] = None

    def to_columns(self) -> dict:
        return _columns(
            per_head_rate=self.rate,
            per_head_min=self.per_head_min,
            per_head_max=self.per_head_max,
            minimum_guests=self.minimum_guests,
            below_minimum_percent=self.below_minimum_percent,
            bonus_threshold=self.bonus_threshold,
            bonus_amount=self.bonus_amount,
        )


@dataclass(frozen=True)
class Tiered:
    kind: ClassVar[str] = "tiered"

    tiers: Tuple[BonusTier, ...]
    rate: Optional[Decimal] = None
    per_head_min: Optional[Decimal] = None
    per_head_max: Optional[Decimal] = None
    minimum_guests: Optional[int] = None
    below_minimum_percent: Optional[Decimal] = None

    def to_columns(self) -> dict:
        return _columns(
            per_head_rate=self.rate,
            per_head_min=self.per_head_min,
            per_head_max=self.per_head_max,
            minimum_guests=self.minimum_guests,
            below_minimum_percent=self.below_minimum_percent,
            bonus_tiers=self.tiers,
        )


@dataclass(frozen=True)
class FixedFee:
    kind: ClassVar[str] = "fixed_fee"

    amount: Decimal

    def to_columns(self) -> dict:
        return _columns(fixed_fee=self.amount)


@dataclass(frozen=True)
class Hybrid:
    kind: ClassVar[str] = "hybrid"

    rate: Optional[Decimal] = None
    per_head_min: Optional[Decimal] = None
    per_head_max: Optional[Decimal] = None
    fixed_fee: Optional[Decimal] = None
    minimum_guests: Optional[int] = None
    below_minimum_percent: Optional[Decimal] = None
    bonus_threshold: Optional[int] = None
    bonus_amount: Optional[Decimal] = None
    tiers: Tuple[BonusTier, ...] = ()

    def to_columns(self) -> dict:
        return _columns(
            per_head_rate=self.rate,
            per_head_min=self.per_head_min,
            per_head_max=self.per_head_max,
            fixed_fee=self.fixed_fee,
            minimum_guests=self.minimum_guests,
            below_minimum_percent=self.below_minimum_percent,
            bonus_threshold=self.bonus_threshold,
            bonus_amount=self.bonus_amount,
            bonus_tiers=self.tiers,
        )


ContractShape = Union[FlatPerHead, Tiered, FixedFee, Hybrid]


@dataclass(frozen=True)
class TableTerms:
    """Commission terms applied to table bookings the promoter brings in."""

    commission_rate: Optional[Decimal] = None
    table_commission_type: Optional[str] = None
    table_commission_rate: Optional[Decimal] = None
    table_commission_flat_fee: Optional[Decimal] = None

    def to_columns(self) -> dict:
        return {
            "commission_rate": self.commission_rate,
            "table_commission_type": self.table_commission_type,
            "table_commission_rate": self.table_commission_rate,
            "table_commission_flat_fee": self.table_commission_flat_fee,
        }


@dataclass(frozen=True)
class ContractTerms:
    shape: ContractShape
    table: TableTerms = field(default_factory=TableTerms)

    @property
    def kind(self) -> str:
        return self.shape.kind

    def to_columns(self) -> dict:
        columns = {"contract_type": self.kind}
        columns.update(self.shape.to_columns())
        columns.update(self.table.to_columns())
        return columns


_SHAPE_FIELDS = (
    "per_head_rate",
    "per_head_min",
    "per_head_max",
    "fixed_fee",
    "minimum_guests",
    "below_minimum_percent",
    "bonus_threshold",
    "bonus_amount",
    "bonus_tiers",
)


def _columns(**values) -> dict:
    """Return every shape column, clearing the ones a shape does not use."""

    columns: Dict[str, Any] = {name: None for name in _SHAPE_FIELDS}
    for name, value in values.items():
        if name == "bonus_tiers":
            value = (
                json.dumps([tier.to_dict() for tier in value]) if value else None
            )
        columns[name] = value
    return columns


# (required fields, forbidden fields) per contract kind
_SHAPE_RULES: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    FlatPerHead.kind: (("per_head_rate",), ("bonus_tiers", "fixed_fee")),
    Tiered.kind: (
        ("bonus_tiers",),
        ("bonus_threshold", "bonus_amount", "fixed_fee"),
    ),
    FixedFee.kind: (
        ("fixed_fee",),
        (
            "per_head_rate",
            "per_head_min",
            "per_head_max",
            "minimum_guests",
            "below_minimum_percent",
            "bonus_threshold",
            "bonus_amount",
            "bonus_tiers",
        ),
    ),
    Hybrid.kind: ((), ()),
}

CONTRACT_TYPES = tuple(_SHAPE_RULES)


# ----------------------------------------------------------------------
# Write time


class _PayloadReader:
    """Collect typed values from a payload while recording field errors."""

    def __init__(self, payload: Mapping[str, Any]):
        self.payload = payload
        self.errors: Dict[str, List[str]] = {}

    def error(self, name: str, message: str) -> None:
        self.errors.setdefault(name, []).append(message)

    def present(self, name: str) -> bool:
        value = self.payload.get(name)
        if value is None:
            return False
        if isinstance(value, str) and not value.strip():
            return False
        if isinstance(value, (list, tuple)) and not value:
            return False
        return True

    def decimal(self, name: str, *, minimum: Optional[Decimal] = Decimal("0")):
        if not self.present(name):
            return None
        value = _to_decimal(self.payload[name])
        if value is None:
            self.error(name, "Enter a valid number.")
            return None
        if minimum is not None and value < minimum:
            self.error(name, f"Must be at least {minimum}.")
            return None
        return value

    def integer(self, name: str, *, minimum: int = 0):
        if not self.present(name):
            return None
        value = _to_whole_number(self.payload[name])
        if value is None:
            self.error(name, "Enter a whole number.")
            return None
        if value < minimum:
            self.error(name, f"Must be at least {minimum}.")
            return None
        return value

    def text(self, name: str):
        if not self.present(name):
            return None
        return str(self.payload[name]).strip()


def _to_decimal(raw: Any) -> Optional[Decimal]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, (int, float)):
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            return None
    try:
        return parse_decimal_string(str(raw))
    except ExpressionParsingError:
        return None


def _to_whole_number(raw: Any) -> Optional[int]:
    value = _to_decimal(raw)
    if value is None or not value.is_finite() or value != value.to_integral_value():
        return None
    return int(value)


def _read_tiers(reader: _PayloadReader) -> Tuple[BonusTier, ...]:
    if not reader.present("bonus_tiers"):
        return ()
    raw = reader.payload["bonus_tiers"]
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            reader.error("bonus_tiers", "Bonus tiers must be a JSON list.")
            return ()
    if not isinstance(raw, (list, tuple)):
        reader.error("bonus_tiers", "Bonus tiers must be a list.")
        return ()

    tiers: List[BonusTier] = []
    seen: set[int] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            reader.error("bonus_tiers", f"Tier {index + 1} must be an object.")
            continue
        threshold = _to_whole_number(entry.get("threshold"))
        amount = _to_decimal(entry.get("amount"))
        if threshold is None or threshold < 1:
            reader.error(
                "bonus_tiers",
                f"Tier {index + 1} needs a threshold of at least 1 guest.",
            )
            continue
        if amount is None or amount < 0:
            reader.error(
                "bonus_tiers", f"Tier {index + 1} needs a non-negative amount."
            )
            continue
        if threshold in seen:
            reader.error(
                "bonus_tiers", f"Threshold {threshold} is used by more than one tier."
            )
            continue
        seen.add(threshold)
        label = entry.get("label")
        tiers.append(
            BonusTier(
                threshold=threshold,
                amount=amount,
                label=str(label).strip() if label else None,
            )
        )
    return tuple(sorted(tiers, key=lambda tier: tier.threshold))


def build_contract(payload: Mapping[str, Any]) -> ContractTerms:
    """Validate a contract payload and return its typed terms.

    Raises:
        ContractValidationError: With per-field messages when the payload is
            not a valid contract for its ``contract_type``.
    """

    reader = _PayloadReader(payload)
    kind = reader.text("contract_type") or Hybrid.kind
    if kind not in _SHAPE_RULES:
        reader.error(
            "contract_type", f"Choose one of: {', '.join(CONTRACT_TYPES)}."
        )
        raise ContractValidationError(reader.errors)

    required, forbidden = _SHAPE_RULES[kind]
    label = kind.replace("_", " ")
    for name in required:
        if not reader.present(name):
            reader.error(name, f"Required for a {label} contract.")
    for name in forbidden:
        if reader.present(name):
            reader.error(name, f"Not allowed on a {label} contract.")

    rate = reader.decimal("per_head_rate")
    per_head_min = reader.decimal("per_head_min")
    per_head_max = reader.decimal("per_head_max")
    fixed_fee = reader.decimal("fixed_fee")
    minimum_guests = reader.integer("minimum_guests", minimum=1)
    below_minimum_percent = reader.decimal("below_minimum_percent")
    bonus_threshold = reader.integer("bonus_threshold", minimum=1)
    bonus_amount = reader.decimal("bonus_amount")
    tiers = _read_tiers(reader)

    if per_head_min is not None and per_head_max is not None:
        if per_head_min > per_head_max:
            reader.error("per_head_max", "Must not be below the per-head minimum.")
    if below_minimum_percent is not None:
        if below_minimum_percent > 100:
            reader.error("below_minimum_percent", "Must be between 0 and 100.")
        if not reader.present("minimum_guests"):
            reader.error(
                "below_minimum_percent", "Only applies when minimum guests is set."
            )
    if reader.present("bonus_threshold") != reader.present("bonus_amount"):
        reader.error(
            "bonus_amount", "Bonus threshold and bonus amount must be set together."
        )
    if tiers and reader.present("bonus_threshold"):
        reader.error(
            "bonus_tiers", "Use either bonus tiers or a single bonus, not both."
        )

    table = _read_table_terms(reader)

    if reader.errors:
        raise ContractValidationError(reader.errors)

    if kind == FlatPerHead.kind:
        shape: ContractShape = FlatPerHead(
            rate=rate,
            per_head_min=per_head_min,
            per_head_max=per_head_max,
            minimum_guests=minimum_guests,
            below_minimum_percent=below_minimum_percent,
            bonus_threshold=bonus_threshold,
            bonus_amount=bonus_amount,
        )
    elif kind == Tiered.kind:
        shape = Tiered(
            tiers=tiers,
            rate=rate,
            per_head_min=per_head_min,
            per_head_max=per_head_max,
            minimum_guests=minimum_guests,
            below_minimum_percent=below_minimum_percent,
        )
    elif kind == FixedFee.kind:
        shape = FixedFee(amount=fixed_fee)
    else:
        shape = Hybrid(
            rate=rate,
            per_head_min=per_head_min,
            per_head_max=per_head_max,
            fixed_fee=fixed_fee,
            minimum_guests=minimum_guests,
            below_minimum_percent=below_minimum_percent,
            bonus_threshold=bonus_threshold,
            bonus_amount=bonus_amount,
            tiers=tiers,
        )
    return ContractTerms(shape=shape, table=table)


def _read_table_terms(reader: _PayloadReader) -> TableTerms:
    commission_rate = reader.decimal("commission_rate")
    table_rate = reader.decimal("table_commission_rate")
    flat_fee = reader.decimal("table_commission_flat_fee")
    table_type = reader.text("table_commission_type")

    for name, value in (
        ("commission_rate", commission_rate),
        ("table_commission_rate", table_rate),
    ):
        if value is not None and value > 100:
            reader.error(name, "Must be between 0 and 100.")

    if table_type is not None and table_type not in TABLE_COMMISSION_TYPES:
        reader.error(
            "table_commission_type",
            f"Choose one of: {', '.join(TABLE_COMMISSION_TYPES)}.",
        )
    if table_type == TABLE_COMMISSION_FLAT_FEE and flat_fee is None:
        reader.error(
            "table_commission_flat_fee", "Required for a flat fee table commission."
        )

    return TableTerms(
        commission_rate=commission_rate,
        table_commission_type=table_type,
        table_commission_rate=table_rate,
        table_commission_flat_fee=flat_fee,
    )


# ----------------------------------------------------------------------
# Read time


def parse_bonus_tiers(raw, *, contract_id=None) -> Tuple[BonusTier, ...]:
    """Return stored bonus tiers sorted by threshold.

    Malformed data is logged and treated as "no tiers"; it never raises.
    """

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return ()
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        if not isinstance(data, list):
            raise DegradedInputError("bonus tiers are not a list", field="bonus_tiers")
        tiers = []
        for entry in data:
            threshold = _to_whole_number(entry["threshold"])
            amount = Decimal(str(entry["amount"]))
            if threshold is None or threshold < 1 or not amount.is_finite():
                raise DegradedInputError(
                    "bonus tier has an invalid value", field="bonus_tiers"
                )
            tiers.append(
                BonusTier(
                    threshold=threshold,
                    amount=amount,
                    label=entry.get("label"),
                )
            )
    except DegradedInputError as exc:
        _log_degraded(exc, contract_id)
        return ()
    except (ValueError, TypeError, KeyError, InvalidOperation) as exc:
        _log_degraded(
            DegradedInputError(f"bonus tiers could not be parsed: {exc}", field="bonus_tiers"),
            contract_id,
        )
        return ()
    return tuple(sorted(tiers, key=lambda tier: tier.threshold))


def _log_degraded(error: DegradedInputError, contract_id) -> None:
    logger.warning(
        "Ignoring %s on commission contract %s: %s",
        error.field or "field",
        contract_id,
        error.message,
    )


def _optional_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def resolve_rules(contract) -> CommissionRules:
    """Return the evaluable rules for a stored :class:`CommissionContract`."""

    return CommissionRules(
        per_head_rate=_optional_decimal(contract.per_head_rate),
        per_head_min=_optional_decimal(contract.per_head_min),
        per_head_max=_optional_decimal(contract.per_head_max),
        fixed_fee=_optional_decimal(contract.fixed_fee),
        minimum_guests=contract.minimum_guests,
        below_minimum_percent=_optional_decimal(contract.below_minimum_percent),
        bonus_threshold=contract.bonus_threshold,
        bonus_amount=_optional_decimal(contract.bonus_amount),
        bonus_tiers=parse_bonus_tiers(contract.bonus_tiers, contract_id=contract.id),
        manual_adjustment_amount=_optional_decimal(contract.manual_adjustment_amount)
        or Decimal("0"),
        manual_checkins_override=contract.manual_checkins_override,
    )
