from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from couriercore.core.errors import InvalidInput, RateNotConfigured
from couriercore.domain.lifecycle import (
    SERVICE_EXPRESS,
    SERVICE_OVERNIGHT,
    SERVICE_STANDARD,
)


_CENTS = Decimal("0.01")
_WEIGHT_QUANTUM = Decimal("0.001")
_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DeliveryWindow:
    min_days: int
    max_days: int

    @property
    def label(self) -> str:
        if self.min_days == self.max_days:
            return f"{self.min_days} day" if self.min_days == 1 else f"{self.min_days} days"
        return f"{self.min_days}-{self.max_days} days"


# Fixed lookup; not derived from cost or weight.
DELIVERY_WINDOWS: dict[str, DeliveryWindow] = {
    SERVICE_STANDARD: DeliveryWindow(3, 5),
    SERVICE_EXPRESS: DeliveryWindow(1, 2),
    SERVICE_OVERNIGHT: DeliveryWindow(1, 1),
}


@dataclass(frozen=True)
class RateRow:
    # Immutable snapshot of a tenant rate row so calculations never touch the session.
    service_type: str
    base_rate: Decimal
    additional_kg_rate: Decimal
    min_weight: Decimal
    max_weight: Decimal
    volumetric_divisor: Decimal = Decimal("5000")
    fuel_surcharge_percent: Decimal = _ZERO
    remote_surcharge: Decimal | None = None
    currency: str = "USD"

    def covers(self, weight: Decimal) -> bool:
        return self.min_weight <= weight <= self.max_weight

    @classmethod
    def from_model(cls, row: Any) -> "RateRow":
        return cls(
            service_type=row.service_type,
            base_rate=_to_decimal(row.base_rate),
            additional_kg_rate=_to_decimal(row.additional_kg_rate),
            min_weight=_to_decimal(row.min_weight),
            max_weight=_to_decimal(row.max_weight),
            volumetric_divisor=_to_decimal(row.volumetric_divisor),
            fuel_surcharge_percent=_to_decimal(row.fuel_surcharge_percent or 0),
            remote_surcharge=(
                None if row.remote_surcharge is None else _to_decimal(row.remote_surcharge)
            ),
            currency=row.currency,
        )


@dataclass(frozen=True)
class RateQuote:
    service_type: str
    actual_weight: Decimal
    volumetric_weight: Decimal | None
    chargeable_weight: Decimal
    base_rate: Decimal
    additional_charges: Decimal
    cost: Decimal
    fuel_surcharge: Decimal
    remote_surcharge: Decimal
    total: Decimal
    currency: str
    delivery: DeliveryWindow


def _to_decimal(value: Any) -> Decimal:
    # Route floats through str() so 2.5 stays 2.5 rather than its binary expansion.
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def delivery_window(service_type: str) -> DeliveryWindow:
    window = DELIVERY_WINDOWS.get(service_type)
    if window is None:
        raise InvalidInput(
            f"Unsupported service type: {service_type}",
            details={"service_type": service_type},
        )
    return window


def volumetric_weight(
    length: Any | None, width: Any | None, height: Any | None, divisor: Any
) -> Decimal:
    # Zero unless all three dimensions are present.
    if length is None or width is None or height is None:
        return _ZERO
    divisor_value = _to_decimal(divisor)
    if divisor_value <= 0:
        raise InvalidInput("Volumetric divisor must be positive")
    volume = _to_decimal(length) * _to_decimal(width) * _to_decimal(height)
    return (volume / divisor_value).quantize(_WEIGHT_QUANTUM, rounding=ROUND_HALF_UP)


def validate_parcel(
    weight: Any, length: Any | None = None, width: Any | None = None, height: Any | None = None
) -> Decimal:
    # Returns the actual weight as a Decimal once every measurement is positive.
    actual = _to_decimal(weight)
    if actual <= 0:
        raise InvalidInput("Weight must be greater than zero", details={"weight": str(actual)})
    for name, value in (("length", length), ("width", width), ("height", height)):
        if value is not None and _to_decimal(value) <= 0:
            raise InvalidInput(f"{name} must be greater than zero", details={name: str(value)})
    return actual


def select_rate(rows: Iterable[RateRow], service_type: str, weight: Decimal) -> RateRow:
    for row in sorted(rows, key=lambda item: item.min_weight):
        if row.service_type == service_type and row.covers(weight):
            return row
    raise RateNotConfigured(
        f"No rate configured for {service_type} at {weight} kg",
        details={"service_type": service_type, "chargeable_weight": str(weight)},
    )


def calculate(
    *,
    weight: Any,
    service_type: str,
    rate_table: Iterable[RateRow],
    length: Any | None = None,
    width: Any | None = None,
    height: Any | None = None,
    is_remote: bool = False,
) -> RateQuote:
    """Price a parcel against a tenant rate table.

    Chargeable weight is the larger of actual and volumetric weight. The
    first kilogram is covered by the base rate; weight above it is billed pro
    rata at the additional rate, then the fuel surcharge
    percentage and, for remote destinations, the flat remote surcharge are
    added. Raises InvalidInput before reading the table and RateNotConfigured
    when no bracket covers the chargeable weight.
    """
    actual = validate_parcel(weight, length, width, height)
    window = delivery_window(service_type)

    rows = [row for row in rate_table if row.service_type == service_type]
    if not rows:
        raise RateNotConfigured(
            f"No rate configured for service type: {service_type}",
            details={"service_type": service_type},
        )
    # The bracket depends on volumetric weight, so the divisor comes from the lowest bracket.
    divisor = min(rows, key=lambda item: item.min_weight).volumetric_divisor
    has_dimensions = length is not None and width is not None and height is not None
    volumetric = volumetric_weight(length, width, height, divisor)
    chargeable = max(actual, volumetric)

    rate = select_rate(rows, service_type, chargeable)
    additional = max(_ZERO, chargeable - _ONE) * rate.additional_kg_rate
    cost = rate.base_rate + additional
    fuel = cost * rate.fuel_surcharge_percent / _HUNDRED
    remote = rate.remote_surcharge if is_remote and rate.remote_surcharge is not None else _ZERO
    total = cost + fuel + remote

    return RateQuote(
        service_type=service_type,
        actual_weight=actual,
        volumetric_weight=volumetric if has_dimensions else None,
        chargeable_weight=chargeable,
        base_rate=_money(rate.base_rate),
        additional_charges=_money(additional),
        cost=_money(cost),
        fuel_surcharge=_money(fuel),
        remote_surcharge=_money(remote),
        total=_money(total),
        currency=rate.currency,
        delivery=window,
    )
