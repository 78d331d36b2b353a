"""Host confirmation dispatcher.

Resolves a challenge's hosts, issues a fresh confirmation token, emails every
host the confirmation link with a summary of the prize pool, and records the
delivery metadata on the prize assignment.

Two request shapes are accepted:
- full: assignment id, challenge id/title, prize amount and structure, requester
- retry (``is_retry_attempt``): only the assignment id; the rest comes from the ledger
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prize_distribution.core import tokens
from prize_distribution.core.config import settings
from prize_distribution.core.database import utcnow
from prize_distribution.core.errors import (
    NotFoundError,
    UpstreamProviderError,
    ValidationError,
)
from prize_distribution.models.challenge import Challenge, User
from prize_distribution.models.ledger import (
    PRIZE_STRUCTURE_DESCRIPTIONS,
    PrizeAssignment,
    PrizeStructure,
)
from prize_distribution.models.schemas import HostConfirmationRequest
from prize_distribution.services import email_client, ledger

logger = logging.getLogger(__name__)


@dataclass
class Host:
    id: str
    email: str
    name: str


@dataclass
class DispatchResult:
    success: bool
    message_id: str | None = None
    host_emails: list[str] = field(default_factory=list)
    host_names: list[str] = field(default_factory=list)
    emails_sent: int = 0
    emails_failed: int = 0
    message: str | None = None


@dataclass
class _Details:
    assignment: PrizeAssignment
    challenge_id: str
    challenge_title: str
    prize_amount: int
    prize_structure: str


def describe_prize_structure(structure: str) -> str:
    try:
        return PRIZE_STRUCTURE_DESCRIPTIONS[PrizeStructure(structure)]
    except ValueError:
        return structure


def format_amount(amount: int) -> str:
    return f"${amount / 100:,.2f}"


async def _resolve_details(
    session: AsyncSession, request: HostConfirmationRequest
) -> _Details:
    if not request.prize_assignment_id:
        raise ValidationError("Missing required fields: prizeAssignmentId")

    if not request.is_retry_attempt:
        missing = [
            name
            for name, value in (
                ("challengeId", request.challenge_id),
                ("challengeTitle", request.challenge_title),
                ("prizeAmount", request.prize_amount),
                ("prizeStructure", request.prize_structure),
                ("requestedBy", request.requested_by),
            )
            if value is None or value == ""
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    assignment = await ledger.get_assignment(session, request.prize_assignment_id)
    if assignment is None:
        raise NotFoundError(f"Prize assignment {request.prize_assignment_id} not found")

    if request.is_retry_attempt:
        return _Details(
            assignment=assignment,
            challenge_id=assignment.challenge_id,
            challenge_title=assignment.challenge_title,
            prize_amount=assignment.prize_amount,
            prize_structure=assignment.prize_structure,
        )

    # The link is minted for this assignment, so only its own hosts may receive it
    if request.challenge_id != assignment.challenge_id:
        raise ValidationError(
            f"Challenge {request.challenge_id} does not match prize assignment "
            f"{assignment.id}"
        )

    return _Details(
        assignment=assignment,
        challenge_id=request.challenge_id,
        challenge_title=request.challenge_title,
        prize_amount=request.prize_amount,
        prize_structure=request.prize_structure.value,
    )


async def resolve_hosts(session: AsyncSession, challenge_id: str) -> list[Host]:
    challenge = await session.scalar(select(Challenge).where(Challenge.id == challenge_id))
    if challenge is None:
        raise NotFoundError(f"Challenge {challenge_id} not found")

    owner_ids = list(challenge.owner_ids or [])
    if not owner_ids:
        raise ValidationError("Challenge has no owners")

    result = await session.execute(select(User).where(User.id.in_(owner_ids)))
    users = {u.id: u for u in result.scalars().all()}

    hosts = [
        Host(id=uid, email=users[uid].email, name=users[uid].host_name)
        for uid in owner_ids
        if uid in users and users[uid].email
    ]
    if not hosts:
        raise NotFoundError("No valid hosts found with email addresses")
    return hosts


def render_confirmation_email(
    challenge_id: str,
    challenge_title: str,
    prize_amount: int,
    prize_structure: str,
    confirmation_url: str,
    is_retry: bool = False,
) -> tuple[str, str]:
    """Return ``(subject, html_content)`` for the host confirmation email."""
    title = html.escape(challenge_title)
    if is_retry:
        subject = f"🏆 Funds Available - Confirm Prize Distribution - {challenge_title}"
        intro = (
            "Good news! Funds are now available to complete the prize distribution "
            "for your challenge. Please confirm again so the remaining winners can be paid."
        )
    else:
        subject = f"🏆 Confirm Prize Distribution - {challenge_title}"
        intro = (
            "Prize money has been assigned to your challenge and is ready for "
            "distribution to the winners."
        )

    body = f"""
      <div style="max-width: 600px; margin: 0 auto; font-family: 'Segoe UI', Tahoma, sans-serif;">
        <h1>🏆 Prize Distribution Confirmation</h1>
        <p>Hi there,</p>
        <p>{intro}</p>
        <div>
          <p><strong>Challenge:</strong> {title}</p>
          <p><strong>Prize Pool:</strong> {format_amount(prize_amount)}</p>
          <p><strong>Distribution:</strong> {html.escape(describe_prize_structure(prize_structure))}</p>
        </div>
        <p>
          <a href="{html.escape(confirmation_url, quote=True)}">✅ Confirm Prize Distribution</a>
        </p>
        <ul>
          <li>Only confirm once you have verified the challenge results and winners</li>
          <li>Prize distribution cannot be undone once confirmed</li>
          <li>This link expires in {settings.confirmation_ttl_days} days for security</li>
        </ul>
        <p>This email was sent by Pulse • Challenge ID: {html.escape(challenge_id)}</p>
      </div>
    """
    return subject, body


async def send_host_confirmation(
    session: AsyncSession, request: HostConfirmationRequest
) -> DispatchResult:
    """Email the confirmation link to every host of the assignment's challenge.

    Raises:
        ValidationError: a required request field is missing, or the challenge has no owners.
        NotFoundError: the assignment, the challenge, or every host email is missing.
        UpstreamProviderError: the provider rejected the email for every host.
        ConfigurationError: the signing secret or provider key is unset.
    """
    details = await _resolve_details(session, request)
    assignment = details.assignment
    hosts = await resolve_hosts(session, details.challenge_id)

    issued = tokens.issue_token(assignment.id)
    url = tokens.build_confirmation_url(assignment.id, issued.token)
    subject, body = render_confirmation_email(
        details.challenge_id,
        details.challenge_title,
        details.prize_amount,
        details.prize_structure,
        url,
        is_retry=request.is_retry_attempt,
    )

    message_ids: list[str | None] = []
    failures: list[UpstreamProviderError] = []
    for host in hosts:
        try:
            message_id = await email_client.send_email(
                to_email=host.email,
                to_name=host.name,
                subject=subject,
                html_content=body,
                headers={
                    "X-Prize-Assignment-ID": assignment.id,
                    "X-Challenge-ID": details.challenge_id,
                    "X-Email-Type": "host-validation-retry" if request.is_retry_attempt else "host-validation",
                    "X-Host-ID": host.id,
                },
            )
        except UpstreamProviderError as exc:
            logger.error("Host email failed for %s (host %s): %s", assignment.id, host.id, exc)
            failures.append(exc)
            continue
        message_ids.append(message_id)

    if not message_ids:
        first = failures[0]
        raise UpstreamProviderError(
            first.provider, first.status, f"Failed to send email to any hosts: {first.detail}"
        )

    # Expiry is measured from the recorded send time
    assignment.host_email_sent = True
    assignment.host_email_sent_at = issued.issued_at
    assignment.host_email_message_id = message_ids[0]
    assignment.confirmation_token = issued.token
    assignment.confirmation_nonce = issued.nonce
    assignment.confirmation_expires = issued.expires_at
    assignment.emails_sent_to_hosts = len(hosts)
    assignment.emails_successful = len(message_ids)
    assignment.emails_failed = len(failures)
    assignment.updated_at = utcnow()
    await session.flush()

    logger.info(
        "Host confirmation sent for %s (%s): %d of %d hosts, retry=%s",
        assignment.id, details.challenge_title, len(message_ids), len(hosts),
        request.is_retry_attempt,
    )
    return DispatchResult(
        success=True,
        message_id=message_ids[0],
        host_emails=[h.email for h in hosts],
        host_names=[h.name for h in hosts],
        emails_sent=len(message_ids),
        emails_failed=len(failures),
        message=(
            f"Host validation emails sent successfully to {len(message_ids)} "
            f"of {len(hosts)} hosts"
        ),
    )
