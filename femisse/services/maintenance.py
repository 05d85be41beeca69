from __future__ import annotations

import asyncio
import logging
import os

from femisse.db import SessionLocal, settings
from femisse.services.orders import expire_pending_orders
from femisse.services.webhook_security import RECORD_RETENTION_HOURS, clean_old_webhook_records

logger = logging.getLogger(__name__)

CHECK_INTERVAL_MINUTES = int(os.getenv("MAINTENANCE_INTERVAL_MINUTES", "5"))


def run_maintenance_once() -> dict:
    db = SessionLocal()
    try:
        expired = expire_pending_orders(db, older_than_minutes=settings.order_expiration_minutes)
        purged = clean_old_webhook_records(db, older_than_hours=RECORD_RETENTION_HOURS)
    finally:
        db.close()
    if expired or purged:
        logger.info("Maintenance expired_orders=%s purged_webhooks=%s", expired, purged)
    return {"expired_orders": expired, "purged_webhooks": purged}


async def run_maintenance_loop() -> None:
    enabled = os.getenv("MAINTENANCE_ENABLED", "true").strip().lower() not in {"0", "false", "no"}
    if not enabled:
        logger.info("Maintenance loop disabled")
        return
    interval = max(1, CHECK_INTERVAL_MINUTES) * 60
    while True:
        try:
            await asyncio.to_thread(run_maintenance_once)
        except Exception:
            logger.exception("Maintenance run failed")
        await asyncio.sleep(interval)
