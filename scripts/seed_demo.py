from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from decimal import Decimal

from couriercore.domain.tenancy import Principal, TenantContext
from couriercore.persistence.db import SessionLocal
from couriercore.persistence.repos import tenants as tenants_repo
from couriercore.services.rates import RateInput, create_rate
from couriercore.services.shipments import get_shipment_lifecycle
from couriercore.services.tenancy import signup_tenant


DEMO_SUBJECT = "demo|admin"
DEMO_TENANT_NAME = "Demo Couriers"


@dataclass(frozen=True)
class DemoRate:
    # Keep demo pricing deterministic so quotes are easy to eyeball.
    service_type: str
    base_rate: str
    additional_kg_rate: str
    fuel_surcharge_percent: str = "0"
    remote_surcharge: str | None = None


DEMO_RATES: tuple[DemoRate, ...] = (
    DemoRate("Standard", "10", "2", fuel_surcharge_percent="5", remote_surcharge="7.50"),
    DemoRate("Express", "20", "4", fuel_surcharge_percent="5", remote_surcharge="10"),
    DemoRate("Overnight", "35", "6", fuel_surcharge_percent="8", remote_surcharge="15"),
)


def _contact(name: str, city: str) -> dict[str, str]:
    return {"name": name, "address": f"1 Main Street, {city}", "city": city, "country": "US"}


async def seed(shipments: int) -> None:
    async with SessionLocal() as session:
        existing = await tenants_repo.get_user_by_subject(session, DEMO_SUBJECT)
        if existing is not None:
            print(f"demo tenant already seeded tenant_id={existing.tenant_id}")
            return
        result = await signup_tenant(
            session,
            principal=Principal(subject_id=DEMO_SUBJECT),
            name=DEMO_TENANT_NAME,
            plan="pro",
            enabled_services=["Standard", "Express", "Overnight"],
            email="ops@demo.invalid",
        )
        context = TenantContext(
            tenant_id=result.tenant.id,
            plan=result.tenant.plan,
            subject_id=DEMO_SUBJECT,
            role="admin",
        )
        for rate in DEMO_RATES:
            await create_rate(
                session,
                context,
                RateInput(
                    service_type=rate.service_type,
                    base_rate=Decimal(rate.base_rate),
                    additional_kg_rate=Decimal(rate.additional_kg_rate),
                    min_weight=Decimal("0.5"),
                    max_weight=Decimal("30"),
                    fuel_surcharge_percent=Decimal(rate.fuel_surcharge_percent),
                    remote_surcharge=(
                        Decimal(rate.remote_surcharge) if rate.remote_surcharge else None
                    ),
                ),
            )
        lifecycle = get_shipment_lifecycle()
        services = [rate.service_type for rate in DEMO_RATES]
        for index in range(shipments):
            shipment = await lifecycle.create(
                session,
                context,
                sender=_contact("Demo Sender", "Springfield"),
                receiver=_contact(f"Receiver {index + 1}", "Shelbyville"),
                parcel={"weight": 1.5 + index, "length": 30, "width": 20, "height": 10},
                service_type=services[index % len(services)],
            )
            print(f"shipment tracking_number={shipment.tracking_number}")
        print(f"tenant_id={result.tenant.id}")
        print(f"api_key={result.api_key}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo tenant with rates and shipments")
    parser.add_argument("--shipments", type=int, default=3)
    args = parser.parse_args()
    asyncio.run(seed(max(0, args.shipments)))


if __name__ == "__main__":
    main()
