import json
import logging
from decimal import Decimal

import pytest

from venueledger.errors import ContractValidationError
from venueledger.services.commission_rules import (
    FixedFee,
    FlatPerHead,
    Hybrid,
    Tiered,
    build_contract,
    parse_bonus_tiers,
    resolve_rules,
)
from venueledger.models import CommissionContract


def _errors(payload):
    with pytest.raises(ContractValidationError) as excinfo:
        build_contract(payload)
    return excinfo.value.errors


def test_flat_per_head_contract():
    terms = build_contract(
        {
            "contract_type": "flat_per_head",
            "per_head_rate": "5",
            "bonus_threshold": 50,
            "bonus_amount": 100,
        }
    )

    assert isinstance(terms.shape, FlatPerHead)
    columns = terms.to_columns()
    assert columns["contract_type"] == "flat_per_head"
    assert columns["per_head_rate"] == Decimal("5")
    assert columns["bonus_amount"] == Decimal("100")
    assert columns["fixed_fee"] is None
    assert columns["bonus_tiers"] is None


def test_flat_per_head_requires_rate_and_forbids_tiers_and_fee():
    errors = _errors(
        {
            "contract_type": "flat_per_head",
            "fixed_fee": 10,
            "bonus_tiers": [{"threshold": 5, "amount": 10}],
        }
    )

    assert "per_head_rate" in errors
    assert "fixed_fee" in errors
    assert "bonus_tiers" in errors


def test_tiered_contract_sorts_tiers():
    terms = build_contract(
        {
            "contract_type": "tiered",
            "bonus_tiers": [
                {"threshold": 50, "amount": "200", "label": "Gold"},
                {"threshold": 20, "amount": "50"},
            ],
        }
    )

    assert isinstance(terms.shape, Tiered)
    assert [tier.threshold for tier in terms.shape.tiers] == [20, 50]
    stored = json.loads(terms.to_columns()["bonus_tiers"])
    assert stored[1] == {"threshold": 50, "amount": "200", "label": "Gold"}


def test_tiered_contract_rejects_flat_bonus():
    errors = _errors(
        {
            "contract_type": "tiered",
            "bonus_tiers": [{"threshold": 5, "amount": 10}],
            "bonus_threshold": 5,
            "bonus_amount": 10,
        }
    )

    assert "bonus_threshold" in errors
    assert "bonus_amount" in errors


def test_tiered_contract_requires_tiers():
    assert "bonus_tiers" in _errors({"contract_type": "tiered"})


def test_fixed_fee_contract_forbids_per_head_fields():
    errors = _errors(
        {"contract_type": "fixed_fee", "fixed_fee": 100, "per_head_rate": 5}
    )
    assert list(errors) == ["per_head_rate"]

    terms = build_contract({"contract_type": "fixed_fee", "fixed_fee": "1.500.000"})
    assert isinstance(terms.shape, FixedFee)
    assert terms.to_columns()["fixed_fee"] == Decimal("1500000")


def test_hybrid_is_the_default_and_rejects_both_bonus_styles():
    terms = build_contract({"per_head_rate": 5, "fixed_fee": 20})
    assert isinstance(terms.shape, Hybrid)

    errors = _errors(
        {
            "bonus_tiers": [{"threshold": 5, "amount": 10}],
            "bonus_threshold": 5,
            "bonus_amount": 10,
        }
    )
    assert "bonus_tiers" in errors


def test_unknown_contract_type():
    assert "contract_type" in _errors({"contract_type": "percentage"})


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"per_head_rate": -1}, "per_head_rate"),
        ({"per_head_rate": 5, "per_head_min": 100, "per_head_max": 50}, "per_head_max"),
        ({"per_head_rate": 5, "minimum_guests": 10, "below_minimum_percent": 150}, "below_minimum_percent"),
        ({"per_head_rate": 5, "below_minimum_percent": 50}, "below_minimum_percent"),
        ({"per_head_rate": 5, "bonus_threshold": 10}, "bonus_amount"),
        ({"bonus_tiers": [{"threshold": 0, "amount": 5}]}, "bonus_tiers"),
        ({"bonus_tiers": [{"threshold": 5, "amount": 5}, {"threshold": 5, "amount": 7}]}, "bonus_tiers"),
        ({"bonus_tiers": "not json"}, "bonus_tiers"),
        ({"table_commission_type": "flat_fee"}, "table_commission_flat_fee"),
        ({"table_commission_type": "tip"}, "table_commission_type"),
        ({"table_commission_rate": 120}, "table_commission_rate"),
        ({"minimum_guests": "ten"}, "minimum_guests"),
    ],
)
def test_invalid_combinations_are_rejected(payload, field):
    assert field in _errors(payload)


def test_validation_error_reports_all_fields():
    with pytest.raises(ContractValidationError) as excinfo:
        build_contract({"contract_type": "fixed_fee", "per_head_rate": 5})

    body = excinfo.value.to_dict()
    assert body["error"] == "Invalid commission contract."
    assert set(body["errors"]) == {"fixed_fee", "per_head_rate"}
    assert excinfo.value.status_code == 400


def test_table_terms_are_kept():
    terms = build_contract(
        {
            "per_head_rate": 5,
            "commission_rate": "7.5",
            "table_commission_type": "flat_fee",
            "table_commission_flat_fee": "250000",
        }
    )

    columns = terms.to_columns()
    assert columns["commission_rate"] == Decimal("7.5")
    assert columns["table_commission_type"] == "flat_fee"
    assert columns["table_commission_flat_fee"] == Decimal("250000")


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        '{"threshold": 5}',
        '[{"threshold": 5}]',
        '[{"threshold": "x", "amount": 5}]',
        '[{"threshold": 5, "amount": "lots"}]',
        '[{"threshold": -5, "amount": 10}]',
        '[{"threshold": 0, "amount": 10}]',
        '[{"threshold": 10.9, "amount": 10}]',
        '[{"threshold": true, "amount": 10}]',
        "[5]",
    ],
)
def test_malformed_stored_tiers_degrade_to_none(raw, caplog):
    with caplog.at_level(logging.WARNING, logger="venueledger.services.commission_rules"):
        assert parse_bonus_tiers(raw, contract_id=7) == ()

    assert "commission contract 7" in caplog.text


def test_empty_stored_tiers_are_not_logged(caplog):
    with caplog.at_level(logging.WARNING):
        assert parse_bonus_tiers(None) == ()
        assert parse_bonus_tiers("  ") == ()

    assert caplog.text == ""


def test_resolve_rules_reads_a_stored_contract():
    contract = CommissionContract(
        id=3,
        event_id=1,
        promoter_id=1,
        per_head_rate=Decimal("5.00"),
        bonus_tiers='[{"threshold": 50, "amount": "200"}, {"threshold": 10, "amount": 20}]',
        manual_checkins_override=12,
    )

    rules = resolve_rules(contract)

    assert rules.per_head_rate == Decimal("5.00")
    assert [tier.threshold for tier in rules.bonus_tiers] == [10, 50]
    assert rules.bonus_tiers[0].amount == Decimal("20")
    assert rules.manual_adjustment_amount == Decimal("0")
    assert rules.manual_checkins_override == 12


def test_resolve_rules_ignores_broken_tiers():
    contract = CommissionContract(
        id=4,
        event_id=1,
        promoter_id=1,
        bonus_threshold=10,
        bonus_amount=Decimal("50"),
        bonus_tiers="{broken",
    )

    rules = resolve_rules(contract)

    assert rules.bonus_tiers == ()
    assert rules.bonus_threshold == 10
