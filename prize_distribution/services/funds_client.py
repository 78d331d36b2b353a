"""HTTP client for the funds mover (Stripe) balance endpoint.

Only the balance query is needed here; transfers are executed by the
external payout step.  Amounts stay in the smallest currency unit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from prize_distribution.core.config import settings
from prize_distribution.core.errors import ConfigurationError, UpstreamProviderError

logger = logging.getLogger(__name__)

PROVIDER = "stripe"


@dataclass(frozen=True)
class BalanceSnapshot:
    available: int
    pending: int
    currency: str

    @property
    def available_units(self) -> float:
        return self.available / 100


def _amount_for(entries: list[dict], currency: str) -> int:
    for entry in entries or []:
        if entry.get("currency") == currency:
            return int(entry.get("amount") or 0)
    return 0


async def get_balance(currency: str | None = None) -> BalanceSnapshot:
    """GET /v1/balance: available and pending funds for one currency."""
    if not settings.stripe_secret_key:
        raise ConfigurationError("Funds mover API key is not configured")

    currency = (currency or settings.operating_currency).lower()
    base = settings.stripe_api_base.rstrip("/")

    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
            resp = await client.get(f"{base}/v1/balance", auth=(settings.stripe_secret_key, ""))
    except (httpx.ConnectError, httpx.TimeoutException) as exc:
        raise UpstreamProviderError(PROVIDER, 0, f"Cannot reach funds mover at {base}: {exc}") from exc

    if resp.status_code >= 400:
        raise UpstreamProviderError(PROVIDER, resp.status_code, _error_message(resp))

    data = resp.json()
    snapshot = BalanceSnapshot(
        available=_amount_for(data.get("available", []), currency),
        pending=_amount_for(data.get("pending", []), currency),
        currency=currency,
    )
    logger.info(
        "Funds balance (%s): available=%d pending=%d",
        currency, snapshot.available, snapshot.pending,
    )
    return snapshot


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return resp.text[:200]
