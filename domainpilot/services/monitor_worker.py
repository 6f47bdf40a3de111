from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from domainpilot.core.config import get_settings
from domainpilot.services.wiring import DomainServices, build_domain_services


logger = logging.getLogger(__name__)


def _is_missing_table_error(exc: Exception) -> bool:
    # Let the worker start before migrations have run.
    message = str(exc).lower()
    return "undefinedtableerror" in message or "does not exist" in message or "no such table" in message


async def run_monitor_rescan_cycle(services: DomainServices) -> int:
    try:
        return await services.monitor.resume_active_sessions()
    except SQLAlchemyError as exc:
        if _is_missing_table_error(exc):
            logger.warning("domain_monitor_worker_waiting_for_migrations")
            return 0
        raise


async def run_domain_monitor_loop(
    services: DomainServices | None = None,
    *,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Host monitoring sessions outside the API process.

    Tenants persisted in monitoring are picked up on every rescan, so sessions
    survive restarts and requests written by other processes get polled.
    Sessions whose row was superseded, restarted or detached elsewhere are
    cancelled on the next rescan. Pair with MONITOR_RUN_IN_API=false.
    """
    settings = get_settings()
    services = services or build_domain_services(launch_sessions=True)
    stop_event = stop_event or asyncio.Event()
    interval_s = max(1, int(settings.monitor_rescan_interval_s))
    logger.info("domain_monitor_worker_started rescan_interval_s=%s", interval_s)
    try:
        while not stop_event.is_set():
            try:
                resumed = await run_monitor_rescan_cycle(services)
            except SQLAlchemyError as exc:
                logger.warning("domain_monitor_worker_rescan_failed", exc_info=exc)
                resumed = 0
            if resumed:
                logger.info("domain_monitor_worker_rescan resumed=%s", resumed)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                continue
    finally:
        await services.aclose()
        logger.info("domain_monitor_worker_stopped")
