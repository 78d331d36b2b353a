"""HTTP routes: retry pass, host confirmation email, and confirmation link."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from prize_distribution.core.database import get_session
from prize_distribution.models.schemas import (
    ConfirmationResponse,
    HostConfirmationRequest,
    HostConfirmationResponse,
    RetryPassResponse,
)
from prize_distribution.services.confirmation import confirm_distribution
from prize_distribution.services.notifications import send_host_confirmation
from prize_distribution.services.retry_scheduler import execute_retry_pass

logger = logging.getLogger(__name__)

router = APIRouter(tags=["distribution"])


def _preflight(methods: str) -> Response:
    return Response(
        status_code=200,
        content=b"",
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Allow-Methods": methods,
        },
    )


# ── Retry pass ────────────────────────────────────────────────────────────────


@router.api_route(
    "/retry-prize-distribution",
    methods=["GET", "POST"],
    response_model=RetryPassResponse,
    response_model_exclude_none=True,
    responses={500: {"description": "The balance check or candidate query failed"}},
    summary="Run one balance-gated retry pass",
    description=(
        "Checks the available balance and, for each host-approved assignment with "
        "failed or pending-funds winners whose whole outstanding amount is covered, "
        "re-sends the host confirmation email.  The request body is ignored."
    ),
)
async def retry_prize_distribution(
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    status_code, body = await execute_retry_pass(session)
    return JSONResponse(status_code=status_code, content=body)


@router.options("/retry-prize-distribution", include_in_schema=False)
async def retry_prize_distribution_preflight() -> Response:
    return _preflight("GET, POST, OPTIONS")


# ── Host confirmation email ───────────────────────────────────────────────────


@router.post(
    "/send-host-confirmation",
    response_model=HostConfirmationResponse,
    response_model_by_alias=True,
    summary="Email the challenge hosts a prize distribution confirmation link",
)
async def send_host_confirmation_email(
    body: HostConfirmationRequest,
    session: AsyncSession = Depends(get_session),
) -> HostConfirmationResponse:
    result = await send_host_confirmation(session, body)
    return HostConfirmationResponse(
        success=result.success,
        message_id=result.message_id,
        host_emails=result.host_emails,
        host_names=result.host_names,
        emails_sent=result.emails_sent,
        emails_failed=result.emails_failed,
        message=result.message,
    )


@router.options("/send-host-confirmation", include_in_schema=False)
async def send_host_confirmation_preflight() -> Response:
    return _preflight("POST, OPTIONS")


# ── Confirmation link ─────────────────────────────────────────────────────────


@router.get(
    "/confirm-prize-distribution",
    response_model=ConfirmationResponse,
    summary="Confirm a prize distribution from the emailed link",
)
async def confirm_prize_distribution(
    prize_id: str | None = Query(default=None, alias="prizeId"),
    token: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> ConfirmationResponse:
    return await confirm_distribution(session, prize_id, token)
