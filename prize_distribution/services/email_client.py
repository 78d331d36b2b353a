"""HTTP client for the notification provider's transactional email API (Brevo)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from prize_distribution.core.config import settings
from prize_distribution.core.errors import ConfigurationError, UpstreamProviderError

logger = logging.getLogger(__name__)

PROVIDER = "brevo"


async def send_email(
    to_email: str,
    to_name: str,
    subject: str,
    html_content: str,
    headers: dict[str, str] | None = None,
) -> str | None:
    """POST /v3/smtp/email: returns the provider message id."""
    if not settings.brevo_api_key:
        raise ConfigurationError("Email service not configured")

    base = settings.brevo_api_base.rstrip("/")
    sender = {"name": settings.brevo_sender_name, "email": settings.brevo_sender_email}
    payload: dict[str, Any] = {
        "sender": sender,
        "to": [{"email": to_email, "name": to_name}],
        "subject": subject,
        "htmlContent": html_content,
        "replyTo": sender,
    }
    if headers:
        payload["headers"] = headers

    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
            resp = await client.post(
                f"{base}/v3/smtp/email",
                json=payload,
                headers={"Accept": "application/json", "api-key": settings.brevo_api_key},
            )
    except (httpx.ConnectError, httpx.TimeoutException) as exc:
        raise UpstreamProviderError(PROVIDER, 0, f"Cannot reach email provider: {exc}") from exc

    if resp.status_code >= 300:
        try:
            message = resp.json().get("message") or resp.text[:200]
        except ValueError:
            message = resp.text[:200]
        logger.warning("Email rejected: to=%s status=%d message=%s", to_email, resp.status_code, message)
        raise UpstreamProviderError(PROVIDER, resp.status_code, message)

    message_id = resp.json().get("messageId")
    logger.info("Email sent: to=%s message_id=%s", to_email, message_id)
    return message_id
