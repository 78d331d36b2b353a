"""Host confirmation: the handler behind the emailed confirmation link."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from prize_distribution.core import tokens
from prize_distribution.core.errors import NotFoundError, ValidationError
from prize_distribution.models.schemas import ConfirmationResponse
from prize_distribution.services import ledger

logger = logging.getLogger(__name__)


async def confirm_distribution(
    session: AsyncSession, prize_id: str | None, token: str | None
) -> ConfirmationResponse:
    """Verify the link's token and record the host's approval.

    Tokens are single use: a successful confirmation clears the stored nonce,
    so the same link cannot approve a later retry cycle.
    """
    if not prize_id or not token:
        raise ValidationError("Missing required parameters. Please use the link from your email.")

    assignment = await ledger.get_assignment(session, prize_id)
    if assignment is None:
        raise NotFoundError("The prize assignment could not be found")

    if assignment.host_confirmed and assignment.confirmation_nonce is None:
        return ConfirmationResponse(
            prize_id=assignment.id,
            challenge_title=assignment.challenge_title,
            distribution_status=assignment.distribution_status,
            already_confirmed=True,
            message="This prize distribution has already been confirmed.",
        )

    tokens.verify_token(
        assignment.id,
        token,
        assignment.confirmation_nonce,
        assignment.confirmation_expires,
    )

    await ledger.mark_host_confirmed(session, assignment)
    logger.info(
        "Host confirmed prize %s (%s), status=%s",
        assignment.id, assignment.challenge_title, assignment.distribution_status,
    )
    return ConfirmationResponse(
        prize_id=assignment.id,
        challenge_title=assignment.challenge_title,
        distribution_status=assignment.distribution_status,
        message="Prize distribution confirmed. Winners will be paid by the payout step.",
    )
