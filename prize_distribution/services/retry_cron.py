"""Daily trigger for the retry pass.

Runs as an asyncio background task managed by FastAPI's lifespan: sleeps until
the configured UTC hour, runs the same handler the HTTP route uses, logs one
line, and goes back to sleep.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from prize_distribution.core.config import settings
from prize_distribution.core.database import async_session_factory
from prize_distribution.services import retry_scheduler

logger = logging.getLogger(__name__)

_running = False


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    now = now.astimezone(timezone.utc)
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def invoke_scheduled_retry() -> dict:
    """Run one pass and hand back the handler's status and body unchanged."""
    async with async_session_factory() as session:
        status_code, body = await retry_scheduler.execute_retry_pass(session)

    if status_code == 200:
        summary = body.get("summary", {})
        logger.info(
            "Scheduled retry succeeded: %s (processed=%s successes=%s failures=%s)",
            body.get("message"),
            summary.get("prizesProcessed", 0),
            summary.get("totalSuccesses", 0),
            summary.get("totalFailures", 0),
        )
    else:
        logger.error("Scheduled retry failed: status=%d error=%s", status_code, body.get("error"))

    return {"statusCode": status_code, "body": body}


async def run_retry_loop() -> None:
    """Main cron loop, runs until cancelled or stopped."""
    global _running
    _running = True
    hour = settings.retry_cron_hour_utc
    logger.info("Retry cron started (daily at %02d:00 UTC)", hour)

    while _running:
        try:
            await asyncio.sleep(seconds_until_next_run(datetime.now(timezone.utc), hour))
        except asyncio.CancelledError:
            break

        try:
            await invoke_scheduled_retry()
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Retry cron tick failed unexpectedly")

    logger.info("Retry cron stopped")


def stop() -> None:
    global _running
    _running = False
