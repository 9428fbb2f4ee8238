from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.config import (
    APPROVAL_SWEEP_INTERVAL_MINUTES,
    EXPIRY_SWEEP_HOUR,
    EXPIRY_SWEEP_MINUTE,
)
from app.services.billing.approval_service import check_approval_deadlines
from app.services.billing.quotation_expiry_service import auto_expire_quotations

scheduler = AsyncIOScheduler()


@scheduler.scheduled_job(
    "interval",
    minutes=APPROVAL_SWEEP_INTERVAL_MINUTES,
    id="approval_deadline_sweep",
    max_instances=1,
    coalesce=True,
)
async def approval_deadline_job():
    await check_approval_deadlines()


@scheduler.scheduled_job(
    "cron",
    hour=EXPIRY_SWEEP_HOUR,
    minute=EXPIRY_SWEEP_MINUTE,
    id="quotation_expiry_sweep",
    max_instances=1,
    coalesce=True,
)  # daily, 00:05 by default
async def expire_quotations_job():
    await auto_expire_quotations()
