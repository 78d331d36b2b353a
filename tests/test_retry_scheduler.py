"""Tests for the balance-gated retry pass.

The ledger is a real in-memory database; the funds mover and email provider
are mocked at the client module boundary.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from prize_distribution.core.errors import UpstreamProviderError
from prize_distribution.models.ledger import DistributionStatus, PrizeRecordStatus
from prize_distribution.models.logs import ErrorLog, RunSummaryLog
from prize_distribution.services import ledger, retry_scheduler
from tests.conftest import balance, make_record, reload, seed_scenario

BALANCE = "prize_distribution.services.funds_client.get_balance"
SEND_EMAIL = "prize_distribution.services.email_client.send_email"
CANDIDATES = "prize_distribution.services.ledger.list_retry_candidates"
OUTSTANDING = "prize_distribution.services.ledger.outstanding_for"
CLAIM = "prize_distribution.services.ledger.claim_for_retry"


def _send_ok(message_id: str = "msg-1") -> AsyncMock:
    return AsyncMock(return_value=message_id)


# ── Balance gate ─────────────────────────────────────────────────────────────


class TestBalanceGate:

    async def test_fully_covered_assignment_is_retried(self, session):
        """5000 + 3000 outstanding against a 10000 balance."""
        assignment = await seed_scenario(session, [5000, 3000])
        started = datetime.now(timezone.utc)

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        assert body["success"] is True
        assert body["message"] == "Smart retry completed"
        assert body["balanceChecked"] == {"availableUSD": 100.0}
        assert body["retryResults"] == [{
            "prizeId": assignment.id,
            "challengeTitle": "30 Day Squat Challenge",
            "action": "retry_email_sent",
            "totalNeeded": 80.0,
            "success": True,
        }]
        assert body["summary"] == {"prizesProcessed": 1, "totalSuccesses": 1, "totalFailures": 0}
        send.assert_awaited_once()

        row = await reload(session, assignment.id)
        assert row.distribution_status == DistributionStatus.RETRY_EMAIL_SENT.value
        assert row.retry_email_count == 1
        assert row.last_retry_email_sent >= started
        assert row.host_email_sent is True
        assert row.confirmation_token is not None

    async def test_partially_covered_assignment_is_skipped(self, session):
        """8000 outstanding against 7000: winners are never paid piecemeal."""
        assignment = await seed_scenario(session, [5000, 3000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(7000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        assert body["retryResults"] == []
        assert body["summary"] == {"prizesProcessed": 0, "totalSuccesses": 0, "totalFailures": 0}
        send.assert_not_awaited()

        row = await reload(session, assignment.id)
        assert row.distribution_status == DistributionStatus.FAILED.value
        assert row.retry_email_count == 0
        assert (await session.scalars(select(RunSummaryLog))).all() == []

    async def test_zero_balance_short_circuits_before_ledger(self, session):
        with patch(BALANCE, new=AsyncMock(return_value=balance(0))), \
             patch(CANDIDATES, new=AsyncMock(return_value=[])) as candidates:
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        assert body == {
            "success": True,
            "message": "No available funds for retry",
            "availableUSD": 0,
            "balanceChecked": {"availableUSD": 0},
            "retryResults": [],
            "summary": {"prizesProcessed": 0, "totalSuccesses": 0, "totalFailures": 0},
        }
        candidates.assert_not_awaited()

    async def test_negative_balance_short_circuits(self, session):
        with patch(BALANCE, new=AsyncMock(return_value=balance(-500))), \
             patch(CANDIDATES, new=AsyncMock(return_value=[])) as candidates:
            result = await retry_scheduler.run_retry_pass(session)

        assert result.short_circuited is True
        candidates.assert_not_awaited()

    async def test_exact_coverage_is_enough(self, session):
        assignment = await seed_scenario(session, [4000, 4000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(8000))), \
             patch(SEND_EMAIL, new=_send_ok()):
            result = await retry_scheduler.run_retry_pass(session)

        assert [r.prize_id for r in result.results] == [assignment.id]
        assert result.remaining_budget == 0

    async def test_pending_funds_records_count_toward_need(self, session):
        assignment = await seed_scenario(session, [3000])
        session.add(make_record(assignment, 4000, PrizeRecordStatus.PENDING_FUNDS))
        await session.commit()

        with patch(BALANCE, new=AsyncMock(return_value=balance(6000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        assert result.results == []
        send.assert_not_awaited()


# ── Running budget ───────────────────────────────────────────────────────────


class TestRunningBudget:

    async def test_one_pass_never_commits_more_than_the_balance(self, session):
        await seed_scenario(session, [6000])
        await seed_scenario(session, [6000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        assert len(result.results) == 1
        assert result.results[0].success is True
        assert result.remaining_budget == 4000
        send.assert_awaited_once()

    async def test_budget_covers_several_assignments(self, session):
        await seed_scenario(session, [3000])
        await seed_scenario(session, [2000, 1000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(6000))), \
             patch(SEND_EMAIL, new=_send_ok()):
            result = await retry_scheduler.run_retry_pass(session)

        assert result.summary.total_successes == 2
        assert result.remaining_budget == 0

    async def test_failed_dispatch_does_not_consume_budget(self, session):
        await seed_scenario(session, [6000], host_email="broken@example.com")

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=AsyncMock(side_effect=UpstreamProviderError("brevo", 400, "bad"))):
            result = await retry_scheduler.run_retry_pass(session)

        assert result.remaining_budget == 10000


# ── Per-assignment skips ─────────────────────────────────────────────────────


class TestSkips:

    async def test_assignment_without_outstanding_records(self, session):
        await seed_scenario(session, [5000], record_status=PrizeRecordStatus.SUCCEEDED)

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        assert result.results == []
        send.assert_not_awaited()

    async def test_outstanding_beyond_pool_is_skipped(self, session):
        assignment = await seed_scenario(session, [6000], prize_amount=10000)
        session.add(make_record(assignment, 5000, PrizeRecordStatus.SUCCEEDED))
        await session.commit()

        with patch(BALANCE, new=AsyncMock(return_value=balance(50000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        assert result.results == []
        send.assert_not_awaited()

    async def test_unapproved_assignments_are_ignored(self, session):
        await seed_scenario(session, [1000], host_confirmed=False)

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        assert result.results == []
        send.assert_not_awaited()


# ── Dispatch failures ────────────────────────────────────────────────────────


class TestDispatchFailures:

    async def test_one_failure_does_not_stop_the_batch(self, session):
        broken_id = (await seed_scenario(session, [2000], host_email="broken@example.com")).id
        healthy_id = (await seed_scenario(session, [2000], host_email="host@example.com")).id

        async def send(to_email, **kwargs):
            if to_email == "broken@example.com":
                raise UpstreamProviderError("brevo", 400, "invalid recipient")
            return "msg-ok"

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=AsyncMock(side_effect=send)):
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        by_id = {r["prizeId"]: r for r in body["retryResults"]}
        assert by_id[healthy_id]["action"] == "retry_email_sent"
        assert by_id[broken_id]["action"] == "retry_email_failed"
        assert by_id[broken_id]["success"] is False
        assert "Failed to send email to any hosts" in by_id[broken_id]["error"]
        assert "totalNeeded" not in by_id[broken_id]
        assert body["summary"] == {"prizesProcessed": 2, "totalSuccesses": 1, "totalFailures": 1}

        broken_row = await reload(session, broken_id)
        assert broken_row.distribution_status == DistributionStatus.FAILED.value
        assert broken_row.retry_email_count == 0
        assert broken_row.confirmation_token is None
        healthy_row = await reload(session, healthy_id)
        assert healthy_row.distribution_status == DistributionStatus.RETRY_EMAIL_SENT.value

    async def test_unexpected_exception_is_reported_as_error(self, session):
        assignment_id = (await seed_scenario(
            session, [2000], status=DistributionStatus.PARTIALLY_DISTRIBUTED
        )).id

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=AsyncMock(side_effect=RuntimeError("socket closed"))):
            result = await retry_scheduler.run_retry_pass(session)

        [entry] = result.results
        assert entry.action.value == "retry_email_error"
        assert entry.error == "socket closed"
        row = await reload(session, assignment_id)
        assert row.distribution_status == DistributionStatus.PARTIALLY_DISTRIBUTED.value

    async def test_assignment_without_hosts_fails_softly(self, session):
        assignment_id = (await seed_scenario(session, [2000], host_email=None)).id

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        [entry] = result.results
        assert entry.prize_id == assignment_id
        assert entry.action.value == "retry_email_failed"
        assert entry.error == "No valid hosts found with email addresses"
        send.assert_not_awaited()

    async def test_record_query_failure_stays_with_its_assignment(self, session):
        stuck_id = (await seed_scenario(session, [2000])).id
        healthy_id = (await seed_scenario(session, [2000])).id
        real_outstanding = ledger.outstanding_for

        async def outstanding(s, prize_id):
            if prize_id == stuck_id:
                raise RuntimeError("record query timeout")
            return await real_outstanding(s, prize_id)

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(OUTSTANDING, new=AsyncMock(side_effect=outstanding)), \
             patch(SEND_EMAIL, new=_send_ok()):
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        by_id = {r["prizeId"]: r for r in body["retryResults"]}
        assert by_id[stuck_id]["action"] == "retry_email_error"
        assert by_id[stuck_id]["error"] == "record query timeout"
        assert by_id[stuck_id]["success"] is False
        assert by_id[healthy_id]["action"] == "retry_email_sent"
        assert body["summary"] == {"prizesProcessed": 2, "totalSuccesses": 1, "totalFailures": 1}

        stuck_row = await reload(session, stuck_id)
        assert stuck_row.distribution_status == DistributionStatus.FAILED.value
        assert (await session.scalars(select(ErrorLog))).all() == []

    async def test_claim_failure_stays_with_its_assignment(self, session):
        assignment_id = (await seed_scenario(session, [2000])).id

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(CLAIM, new=AsyncMock(side_effect=RuntimeError("deadlock detected"))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        assert body["retryResults"] == [{
            "prizeId": assignment_id,
            "challengeTitle": "30 Day Squat Challenge",
            "action": "retry_email_error",
            "error": "deadlock detected",
            "success": False,
        }]
        send.assert_not_awaited()


# ── Concurrent passes ────────────────────────────────────────────────────────


class TestLostClaim:

    async def test_lost_claim_skips_dispatch_and_result(self, session):
        """Another pass moved the assignment first: no email, no result row."""
        assignment_id = (await seed_scenario(session, [2000])).id

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(CLAIM, new=AsyncMock(return_value=None)) as claim, \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        assert body["retryResults"] == []
        claim.assert_awaited_once()
        send.assert_not_awaited()
        assert (await session.scalars(select(RunSummaryLog))).all() == []
        row = await reload(session, assignment_id)
        assert row.retry_email_count == 0

    async def test_claim_taken_between_selection_and_dispatch(self, session):
        """The status changes after candidates are listed; the CAS refuses it."""
        assignment_id = (await seed_scenario(session, [2000])).id
        real_outstanding = ledger.outstanding_for

        async def outstanding_then_race(s, prize_id):
            totals = await real_outstanding(s, prize_id)
            assert await ledger.claim_for_retry(s, prize_id) is not None
            return totals

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(OUTSTANDING, new=AsyncMock(side_effect=outstanding_then_race)), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            result = await retry_scheduler.run_retry_pass(session)

        assert result.results == []
        send.assert_not_awaited()
        row = await reload(session, assignment_id)
        assert row.distribution_status == DistributionStatus.RETRY_EMAIL_SENT.value


# ── Run log and idempotency ──────────────────────────────────────────────────


class TestRunRecords:

    async def test_run_summary_written_when_anything_attempted(self, session):
        assignment = await seed_scenario(session, [5000, 3000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()):
            await retry_scheduler.execute_retry_pass(session)

        entry = (await session.scalars(select(RunSummaryLog))).one()
        assert entry.type == "smart_retry_prize_distribution"
        assert entry.balance_checked == {"availableUSD": 100.0}
        assert entry.retry_results[0]["prizeId"] == assignment.id
        assert entry.summary == {
            "prizesProcessed": 1,
            "totalSuccesses": 1,
            "totalFailures": 0,
            "totalAmountAvailable": 100.0,
        }

    async def test_second_pass_does_not_resend(self, session):
        assignment = await seed_scenario(session, [5000, 3000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()) as send:
            await retry_scheduler.execute_retry_pass(session)
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 200
        assert body["retryResults"] == []
        send.assert_awaited_once()
        row = await reload(session, assignment.id)
        assert row.retry_email_count == 1

    async def test_retry_link_expires_seven_days_after_send(self, session):
        assignment = await seed_scenario(session, [1000])

        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(SEND_EMAIL, new=_send_ok()):
            await retry_scheduler.execute_retry_pass(session)

        row = await reload(session, assignment.id)
        assert row.confirmation_expires >= row.host_email_sent_at + timedelta(days=7)


# ── Aborted passes ───────────────────────────────────────────────────────────


class TestAbortedPass:

    async def test_balance_failure_returns_500_and_logs_error(self, session):
        failure = UpstreamProviderError("stripe", 401, "Invalid API Key provided")

        with patch(BALANCE, new=AsyncMock(side_effect=failure)):
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 500
        assert body == {"success": False, "error": "stripe 401: Invalid API Key provided"}
        entry = (await session.scalars(select(ErrorLog))).one()
        assert entry.source == "smart-retry-prize-distribution"
        assert "Invalid API Key" in entry.error

    async def test_candidate_query_failure_returns_500(self, session):
        with patch(BALANCE, new=AsyncMock(return_value=balance(10000))), \
             patch(CANDIDATES, new=AsyncMock(side_effect=RuntimeError("ledger unavailable"))):
            status, body = await retry_scheduler.execute_retry_pass(session)

        assert status == 500
        assert body == {"success": False, "error": "ledger unavailable"}
