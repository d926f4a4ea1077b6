from __future__ import annotations

from decimal import Decimal

import pytest

from couriercore.core.errors import InvalidInput, RateNotConfigured
from couriercore.services.rate_engine import (
    DELIVERY_WINDOWS,
    RateRow,
    calculate,
    volumetric_weight,
)


def _row(service_type: str = "Standard", **overrides) -> RateRow:
    values = {
        "service_type": service_type,
        "base_rate": Decimal("10"),
        "additional_kg_rate": Decimal("2"),
        "min_weight": Decimal("0.5"),
        "max_weight": Decimal("30"),
    }
    values.update({key: Decimal(str(value)) if key != "currency" else value for key, value in overrides.items()})
    return RateRow(**values)


class _ExplodingTable:
    # Any attempt to read the table fails the test.
    def __iter__(self):
        raise AssertionError("rate table must not be read")


def test_standard_five_kg_costs_eighteen() -> None:
    quote = calculate(weight=5, service_type="Standard", rate_table=[_row()])
    assert quote.cost == Decimal("18.00")
    assert quote.total == Decimal("18.00")
    assert quote.chargeable_weight == Decimal("5")
    assert quote.volumetric_weight is None


def test_overnight_first_kilogram_is_base_rate_only() -> None:
    row = _row("Overnight", base_rate=35, additional_kg_rate=6)
    quote = calculate(weight=1, service_type="Overnight", rate_table=[row])
    assert quote.total == Decimal("35.00")
    assert quote.additional_charges == Decimal("0.00")
    assert quote.delivery.label == "1 day"


def test_fractional_weight_uses_decimal_arithmetic() -> None:
    row = _row(additional_kg_rate="2.5")
    quote = calculate(weight=2.5, service_type="Standard", rate_table=[row])
    assert quote.total == Decimal("13.75")


def test_volumetric_weight_wins_when_heavier() -> None:
    # 50 x 40 x 30 / 5000 = 12 kg chargeable
    quote = calculate(
        weight=2,
        service_type="Standard",
        rate_table=[_row()],
        length=50,
        width=40,
        height=30,
    )
    assert quote.volumetric_weight == Decimal("12.000")
    assert quote.chargeable_weight == Decimal("12.000")
    assert quote.total == Decimal("32.00")


def test_mixed_divisors_use_lowest_bracket_divisor() -> None:
    # 60000 cm3 is 12 kg at 5000 but would be 15 kg at the upper bracket's 4000.
    light = _row(max_weight=10, volumetric_divisor=5000)
    heavy = _row(min_weight=10, base_rate=20, additional_kg_rate=1, volumetric_divisor=4000)
    quote = calculate(
        weight=2,
        service_type="Standard",
        rate_table=[heavy, light],
        length=50,
        width=40,
        height=30,
    )
    assert quote.volumetric_weight == Decimal("12.000")
    assert quote.chargeable_weight == Decimal("12.000")
    assert quote.base_rate == Decimal("20.00")
    assert quote.total == Decimal("31.00")


def test_partial_dimensions_give_zero_volumetric_weight() -> None:
    assert volumetric_weight(50, 40, None, 5000) == Decimal("0")
    quote = calculate(weight=3, service_type="Standard", rate_table=[_row()], length=200, width=200)
    assert quote.chargeable_weight == Decimal("3")


def test_fuel_and_remote_surcharges() -> None:
    row = _row(fuel_surcharge_percent=10, remote_surcharge="7.50")
    quote = calculate(weight=5, service_type="Standard", rate_table=[row], is_remote=True)
    assert quote.cost == Decimal("18.00")
    assert quote.fuel_surcharge == Decimal("1.80")
    assert quote.remote_surcharge == Decimal("7.50")
    assert quote.total == Decimal("27.30")

    not_remote = calculate(weight=5, service_type="Standard", rate_table=[row])
    assert not_remote.remote_surcharge == Decimal("0.00")
    assert not_remote.total == Decimal("19.80")


def test_bracket_selection_picks_matching_row() -> None:
    light = _row(base_rate=10, additional_kg_rate=2, min_weight="0.5", max_weight=10)
    heavy = _row(base_rate=50, additional_kg_rate=1, min_weight="10.001", max_weight=50)
    assert calculate(weight=4, service_type="Standard", rate_table=[heavy, light]).total == Decimal("16.00")
    assert calculate(weight=20, service_type="Standard", rate_table=[light, heavy]).total == Decimal("69.00")


def test_uncovered_weight_raises_rate_not_configured() -> None:
    with pytest.raises(RateNotConfigured) as exc:
        calculate(weight=45, service_type="Standard", rate_table=[_row()])
    assert exc.value.status_code == 422
    assert exc.value.code == "RATE_NOT_CONFIGURED"


def test_missing_service_raises_rate_not_configured() -> None:
    with pytest.raises(RateNotConfigured):
        calculate(weight=2, service_type="Express", rate_table=[_row("Standard")])


@pytest.mark.parametrize("weight", [0, -1, "-0.01"])
def test_non_positive_weight_rejected_before_table_is_read(weight) -> None:
    with pytest.raises(InvalidInput) as exc:
        calculate(weight=weight, service_type="Standard", rate_table=_ExplodingTable())
    assert exc.value.status_code == 400


def test_non_positive_dimension_rejected() -> None:
    with pytest.raises(InvalidInput):
        calculate(
            weight=1,
            service_type="Standard",
            rate_table=_ExplodingTable(),
            length=10,
            width=0,
            height=10,
        )


def test_cost_is_non_decreasing_in_weight() -> None:
    table = [
        _row(base_rate=10, additional_kg_rate=2, min_weight="0.1", max_weight=10),
        _row(base_rate=30, additional_kg_rate="1.5", min_weight="10.01", max_weight=60),
    ]
    previous = Decimal("0")
    for tenths in range(1, 600):
        weight = Decimal(tenths) / Decimal(10)
        total = calculate(weight=weight, service_type="Standard", rate_table=table).total
        assert total >= previous
        previous = total


def test_calculation_is_deterministic() -> None:
    table = [_row(fuel_surcharge_percent="3.3")]
    first = calculate(weight="7.77", service_type="Standard", rate_table=table, length=10, width=10, height=10)
    second = calculate(weight="7.77", service_type="Standard", rate_table=table, length=10, width=10, height=10)
    assert first == second


def test_delivery_windows_are_fixed() -> None:
    assert (DELIVERY_WINDOWS["Standard"].min_days, DELIVERY_WINDOWS["Standard"].max_days) == (3, 5)
    assert (DELIVERY_WINDOWS["Express"].min_days, DELIVERY_WINDOWS["Express"].max_days) == (1, 2)
    assert (DELIVERY_WINDOWS["Overnight"].min_days, DELIVERY_WINDOWS["Overnight"].max_days) == (1, 1)
    assert DELIVERY_WINDOWS["Standard"].label == "3-5 days"


def test_unknown_service_type_is_invalid_input() -> None:
    with pytest.raises(InvalidInput):
        calculate(weight=1, service_type="Teleport", rate_table=[_row()])
