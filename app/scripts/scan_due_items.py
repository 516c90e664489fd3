from __future__ import annotations

"""One-shot tick for platforms that bring their own cron.
Run every minute:
    python -m app.scripts.scan_due_items

Only one instance may run at a time; the platform schedule has to guarantee
that (or use SCHEDULER_MODE=celery, which takes a Redis lock).
"""

import asyncio
import logging

import db
from app.services.chat_session import build_chat_session
from app.services.dispatcher import TickReport, run_tick
from config import settings

_LOGGER = logging.getLogger("app.scripts.scan_due_items")


async def main() -> TickReport:
    if settings.AUTO_CREATE_TABLES:
        await db.create_all()
    session = build_chat_session()
    try:
        return await run_tick(session)
    finally:
        await session.aclose()
        await db.dispose_engine()


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    _LOGGER.info("[CRON] scan_due_items: job started")
    try:
        report = asyncio.run(main())
        _LOGGER.info("[CRON] scan_due_items: job completed %s", report.summary())
    except Exception:
        _LOGGER.exception("[CRON] scan_due_items: job failed")
