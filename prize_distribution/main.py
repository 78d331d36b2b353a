"""Prize Distribution service: gated retries and host confirmation for challenge prizes.

Community challenge winners are paid only after the challenge host confirms
the results.  When the payment processor's balance could not cover a
distribution, a daily retry pass watches the balance and, once an assignment's
whole outstanding amount is covered, sends the host a fresh confirmation link.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prize_distribution import __version__
from prize_distribution.api.routes import router
from prize_distribution.core.config import check_required_settings, settings
from prize_distribution.core.errors import register_error_handlers
from prize_distribution.core.middleware import RequestLoggingMiddleware
from prize_distribution.services import retry_cron

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


DESCRIPTION = """\
Prize distribution for **community fitness challenges**.

### Distribution Lifecycle

| Step | Endpoint | Description |
|------|----------|-------------|
| 1 | `POST /send-host-confirmation` | Email the hosts a signed confirmation link |
| 2 | `GET /confirm-prize-distribution` | Host approves; the payout step pays the winners |
| 3 | *automatic* | Daily retry pass re-confirms failed payouts once funds cover them |
| 4 | `GET /retry-prize-distribution` | Run the retry pass on demand |
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    check_required_settings(settings)

    cron_task = None
    if settings.retry_cron_enabled:
        logger.info("Starting retry cron background task")
        cron_task = asyncio.create_task(retry_cron.run_retry_loop())
    yield
    if cron_task is not None:
        retry_cron.stop()
        cron_task.cancel()
        try:
            await cron_task
        except asyncio.CancelledError:
            pass
        logger.info("Retry cron shut down")


app = FastAPI(
    title="Prize Distribution",
    version=__version__,
    description=DESCRIPTION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(router)


@app.get("/health", tags=["ops"])
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "prize-distribution"}
