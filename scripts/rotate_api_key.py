from __future__ import annotations

import argparse
import asyncio
import sys

from couriercore.core.errors import CourierError
from couriercore.domain.tenancy import TenantContext
from couriercore.persistence.db import SessionLocal
from couriercore.services.tenancy import rotate_api_key


def _build_parser() -> argparse.ArgumentParser:
    # Operator fallback for tenants locked out of their admin subject.
    parser = argparse.ArgumentParser(description="Rotate a tenant API key and revoke the previous one")
    parser.add_argument("tenant_id", help="Tenant whose key should be replaced")
    return parser


async def _rotate(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        tenant, raw_key = await rotate_api_key(session, TenantContext.system(args.tenant_id))
    print(f"tenant_id={tenant.id}")
    print(f"api_key_prefix={tenant.api_key_prefix}")
    print(f"api_key={raw_key}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_rotate(args))
    except CourierError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
