from __future__ import annotations

import asyncio

from domainpilot.core.logging import configure_logging
from domainpilot.services.monitor_worker import run_domain_monitor_loop


async def _main() -> None:
    # Poll custom domains in a dedicated process so verification continues without the API.
    configure_logging()
    await run_domain_monitor_loop()


if __name__ == "__main__":
    asyncio.run(_main())
