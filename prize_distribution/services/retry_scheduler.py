"""Balance-gated retry of failed prize distributions.

One pass:
1. Query the funds mover's available balance once.  Zero means nothing can be
   retried, so the pass stops before touching the ledger.
2. Load host-approved assignments in ``failed`` / ``partially_distributed``.
3. For each, sum the failed / pending_funds record amounts.  An assignment is
   only retried when the *whole* outstanding amount fits the remaining budget;
   winners are never paid piecemeal.
4. Claim the assignment (compare-and-swap to ``retry_email_sent``), then send the
   host a fresh confirmation email.  A failed send releases the claim.
5. Write one RunSummary row if anything was attempted.

The remaining budget is decremented after each successful dispatch, so one pass
never commits more than the balance it started with.  Assignments are visited
sequentially in ledger order; a failure on one never stops the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from prize_distribution.core.database import utcnow
from prize_distribution.core.errors import DistributionError
from prize_distribution.models.schemas import (
    BalanceChecked,
    HostConfirmationRequest,
    RetryAction,
    RetryPassResponse,
    RetryResult,
    RetrySummary,
)
from prize_distribution.services import funds_client, ledger, notifications

logger = logging.getLogger(__name__)

RUN_TYPE = "smart_retry_prize_distribution"
ERROR_SOURCE = "smart-retry-prize-distribution"

NO_FUNDS_MESSAGE = "No available funds for retry"
COMPLETED_MESSAGE = "Smart retry completed"


@dataclass
class RetryPassResult:
    available: int
    results: list[RetryResult] = field(default_factory=list)
    remaining_budget: int = 0
    short_circuited: bool = False

    @property
    def summary(self) -> RetrySummary:
        successes = sum(1 for r in self.results if r.success)
        return RetrySummary(
            prizes_processed=len(self.results),
            total_successes=successes,
            total_failures=len(self.results) - successes,
        )

    def to_response(self) -> RetryPassResponse:
        balance = BalanceChecked(available_usd=self.available / 100)
        if self.short_circuited:
            return RetryPassResponse(
                message=NO_FUNDS_MESSAGE,
                balance_checked=balance,
                available_usd=self.available / 100,
            )
        return RetryPassResponse(
            message=COMPLETED_MESSAGE,
            balance_checked=balance,
            retry_results=self.results,
            summary=self.summary,
        )


async def _retry_assignment(
    session: AsyncSession, prize_id: str, title: str, total_needed: int
) -> RetryResult | None:
    previous = await ledger.claim_for_retry(session, prize_id)
    if previous is None:
        return None
    await session.commit()

    try:
        await notifications.send_host_confirmation(
            session,
            HostConfirmationRequest(prize_assignment_id=prize_id, is_retry_attempt=True),
        )
    except DistributionError as exc:
        logger.warning("Retry email failed for %s (%s): %s", prize_id, title, exc)
        action, error = RetryAction.RETRY_EMAIL_FAILED, exc.message
    except Exception as exc:
        logger.exception("Error sending retry email for %s (%s)", prize_id, title)
        action, error = RetryAction.RETRY_EMAIL_ERROR, str(exc)
    else:
        await ledger.record_retry_sent(session, prize_id, utcnow())
        await session.commit()
        logger.info("Retry email sent for %s (%s)", prize_id, title)
        return RetryResult(
            prize_id=prize_id,
            challenge_title=title,
            action=RetryAction.RETRY_EMAIL_SENT,
            total_needed=total_needed / 100,
            success=True,
        )

    await session.rollback()
    await ledger.release_retry_claim(session, prize_id, previous)
    await session.commit()
    return RetryResult(
        prize_id=prize_id,
        challenge_title=title,
        action=action,
        error=error,
        success=False,
    )


async def _evaluate_candidate(
    session: AsyncSession,
    result: RetryPassResult,
    prize_id: str,
    title: str,
    prize_amount: int,
) -> None:
    outstanding = await ledger.outstanding_for(session, prize_id)
    if outstanding.record_count == 0:
        logger.info("No failed records for prize %s, skipping", prize_id)
        return

    if outstanding.exceeds_pool(prize_amount):
        logger.warning(
            "Prize %s outstanding %d plus paid %d exceeds pool %d, skipping",
            prize_id, outstanding.total, outstanding.succeeded_total, prize_amount,
        )
        return

    if outstanding.total > result.remaining_budget:
        logger.info(
            "Insufficient funds for prize %s. Need: %d, Remaining: %d",
            prize_id, outstanding.total, result.remaining_budget,
        )
        return

    retry = await _retry_assignment(session, prize_id, title, outstanding.total)
    if retry is None:
        return
    result.results.append(retry)
    if retry.success:
        result.remaining_budget -= outstanding.total


async def run_retry_pass(session: AsyncSession) -> RetryPassResult:
    """Run one retry pass.  Failures in the shared steps propagate."""
    balance = await funds_client.get_balance()
    available = balance.available
    logger.info("Retry pass starting: available balance %d", available)

    if available <= 0:
        logger.info("No available funds, skipping retry")
        return RetryPassResult(available=available, short_circuited=True)

    # Plain values: a failed dispatch rolls the session back and expires ORM rows
    candidates = [
        (a.id, a.challenge_title, a.prize_amount)
        for a in await ledger.list_retry_candidates(session)
    ]
    logger.info("Found %d failed prize distributions", len(candidates))

    result = RetryPassResult(available=available, remaining_budget=available)
    for prize_id, title, prize_amount in candidates:
        try:
            await _evaluate_candidate(session, result, prize_id, title, prize_amount)
        except Exception as exc:
            logger.exception("Error processing prize %s (%s)", prize_id, title)
            await session.rollback()
            result.results.append(
                RetryResult(
                    prize_id=prize_id,
                    challenge_title=title,
                    action=RetryAction.RETRY_EMAIL_ERROR,
                    error=str(exc) or exc.__class__.__name__,
                    success=False,
                )
            )

    if result.results:
        summary = result.summary
        await ledger.append_run_summary(
            session,
            run_type=RUN_TYPE,
            balance_checked={"availableUSD": available / 100},
            retry_results=[r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in result.results],
            summary={
                **summary.model_dump(by_alias=True),
                "totalAmountAvailable": available / 100,
            },
        )
        await session.commit()

    logger.info(
        "Retry pass finished: processed=%d successes=%d failures=%d remaining=%d",
        len(result.results), result.summary.total_successes,
        result.summary.total_failures, result.remaining_budget,
    )
    return result


async def execute_retry_pass(session: AsyncSession) -> tuple[int, dict]:
    """Handler body shared by the HTTP route and the scheduled wrapper.

    Returns ``(status_code, body)``.  An aborted pass is written to the error
    log and answered with a 500; assignments committed before the failure stay
    committed.
    """
    try:
        result = await run_retry_pass(session)
    except Exception as exc:
        logger.exception("Retry pass aborted")
        await session.rollback()
        await ledger.record_error(session, ERROR_SOURCE, exc)
        await session.commit()
        message = exc.message if isinstance(exc, DistributionError) else str(exc)
        return 500, {"success": False, "error": message}

    body = result.to_response().model_dump(mode="json", by_alias=True, exclude_none=True)
    return 200, body
