from __future__ import annotations

import asyncio

from dgat.core.logging import configure_logging
from dgat.workers.sync_janitor import run_sync_janitor_loop


async def _main() -> None:
    # Dedicated process that recovers stale sync claims and drains pending pairs.
    configure_logging()
    await run_sync_janitor_loop()


if __name__ == "__main__":
    asyncio.run(_main())
