"""Distribution ledger queries and status transitions.

The retry path never writes ``distribution_status`` with a plain assignment:
``claim_for_retry`` is a compare-and-swap from a retryable status to
``retry_email_sent``, so of two overlapping passes only one wins the claim and
only the winner contacts the host.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prize_distribution.core.database import utcnow
from prize_distribution.models.ledger import (
    OUTSTANDING_RECORD_STATUSES,
    RETRYABLE_STATUSES,
    DistributionStatus,
    PrizeAssignment,
    PrizeRecord,
    PrizeRecordStatus,
    can_transition,
)
from prize_distribution.models.logs import ErrorLog, RunSummaryLog

logger = logging.getLogger(__name__)

_RETRYABLE_VALUES = [s.value for s in RETRYABLE_STATUSES]
_OUTSTANDING_VALUES = [s.value for s in OUTSTANDING_RECORD_STATUSES]


@dataclass(frozen=True)
class Outstanding:
    total: int
    record_count: int
    succeeded_total: int = 0

    def exceeds_pool(self, prize_amount: int) -> bool:
        return self.succeeded_total + self.total > prize_amount


async def get_assignment(session: AsyncSession, prize_id: str) -> PrizeAssignment | None:
    result = await session.execute(select(PrizeAssignment).where(PrizeAssignment.id == prize_id))
    return result.scalar_one_or_none()


async def list_retry_candidates(session: AsyncSession) -> list[PrizeAssignment]:
    """Host-approved assignments whose last transfer attempt failed or was partial.

    No ordering is imposed; callers must not assume priority by amount or age.
    """
    stmt = select(PrizeAssignment).where(
        PrizeAssignment.host_confirmed.is_(True),
        PrizeAssignment.distribution_status.in_(_RETRYABLE_VALUES),
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def outstanding_for(session: AsyncSession, prize_id: str) -> Outstanding:
    """Sum the unpaid (failed / pending_funds) record amounts for one assignment."""
    result = await session.execute(
        select(PrizeRecord.prize_amount, PrizeRecord.status).where(PrizeRecord.prize_id == prize_id)
    )
    total = 0
    count = 0
    succeeded = 0
    for amount, status in result.all():
        if status in _OUTSTANDING_VALUES:
            total += int(amount)
            count += 1
        elif status == PrizeRecordStatus.SUCCEEDED.value:
            succeeded += int(amount)
    return Outstanding(total=total, record_count=count, succeeded_total=succeeded)


async def claim_for_retry(session: AsyncSession, prize_id: str) -> DistributionStatus | None:
    """Move a retryable assignment to ``retry_email_sent``, single writer wins.

    Returns the status the assignment was claimed from, or None when another
    writer changed it first (or it was never eligible).
    """
    current = await session.scalar(
        select(PrizeAssignment.distribution_status).where(PrizeAssignment.id == prize_id)
    )
    if current not in _RETRYABLE_VALUES:
        return None

    result = await session.execute(
        update(PrizeAssignment)
        .where(
            PrizeAssignment.id == prize_id,
            PrizeAssignment.host_confirmed.is_(True),
            PrizeAssignment.distribution_status == current,
        )
        .values(
            distribution_status=DistributionStatus.RETRY_EMAIL_SENT.value,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("Retry claim lost for prize %s (status changed concurrently)", prize_id)
        return None
    return DistributionStatus(current)


async def release_retry_claim(
    session: AsyncSession, prize_id: str, previous: DistributionStatus
) -> bool:
    """Undo a claim whose host email could not be sent."""
    if not can_transition(previous, DistributionStatus.RETRY_EMAIL_SENT):
        raise ValueError(f"{previous.value} is not a status a retry can be claimed from")

    result = await session.execute(
        update(PrizeAssignment)
        .where(
            PrizeAssignment.id == prize_id,
            PrizeAssignment.distribution_status == DistributionStatus.RETRY_EMAIL_SENT.value,
        )
        .values(distribution_status=previous.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def record_retry_sent(session: AsyncSession, prize_id: str, sent_at: datetime) -> None:
    await session.execute(
        update(PrizeAssignment)
        .where(PrizeAssignment.id == prize_id)
        .values(
            last_retry_email_sent=sent_at,
            retry_email_count=PrizeAssignment.retry_email_count + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


async def mark_host_confirmed(session: AsyncSession, assignment: PrizeAssignment) -> None:
    """Record the host's approval and consume the confirmation token."""
    now = utcnow()
    assignment.host_confirmed = True
    assignment.host_confirmed_at = now
    assignment.confirmation_token = None
    assignment.confirmation_nonce = None
    assignment.updated_at = now
    await session.flush()


async def append_run_summary(
    session: AsyncSession,
    run_type: str,
    balance_checked: dict,
    retry_results: list[dict],
    summary: dict,
) -> RunSummaryLog:
    entry = RunSummaryLog(
        type=run_type,
        timestamp=utcnow(),
        balance_checked=balance_checked,
        retry_results=retry_results,
        summary=summary,
    )
    session.add(entry)
    await session.flush()
    return entry


async def record_error(session: AsyncSession, source: str, exc: BaseException) -> ErrorLog:
    entry = ErrorLog(
        source=source,
        error=str(exc) or exc.__class__.__name__,
        stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        timestamp=utcnow(),
    )
    session.add(entry)
    await session.flush()
    return entry
