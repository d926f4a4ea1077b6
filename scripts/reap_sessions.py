from __future__ import annotations

import asyncio

from couriercore.persistence.db import SessionLocal
from couriercore.services.sessions import get_session_store


async def _run() -> None:
    # One-off reaper pass for cron or manual operator use.
    async with SessionLocal() as session:
        result = await get_session_store().reap_expired_sessions(session)
    print(f"deactivated={result.deactivated}")
    print(f"purged={result.purged}")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
