"""Pydantic request/response schemas.

Wire names are camelCase to match the existing web clients; Python attributes
stay snake_case through the alias generator.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from prize_distribution.models.ledger import PrizeStructure


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Retry pass ────────────────────────────────────────────────────────────────


class RetryAction(str, Enum):
    RETRY_EMAIL_SENT = "retry_email_sent"
    RETRY_EMAIL_FAILED = "retry_email_failed"
    RETRY_EMAIL_ERROR = "retry_email_error"


class RetryResult(_CamelModel):
    prize_id: str
    challenge_title: str
    action: RetryAction
    total_needed: float | None = Field(
        default=None, description="Outstanding amount in currency units"
    )
    error: str | None = None
    success: bool


class BalanceChecked(_CamelModel):
    available_usd: float = Field(alias="availableUSD")


class RetrySummary(_CamelModel):
    prizes_processed: int = 0
    total_successes: int = 0
    total_failures: int = 0


class RetryPassResponse(_CamelModel):
    success: bool = True
    message: str
    balance_checked: BalanceChecked
    retry_results: list[RetryResult] = Field(default_factory=list)
    summary: RetrySummary = Field(default_factory=RetrySummary)
    available_usd: float | None = Field(
        default=None,
        alias="availableUSD",
        description="Only present on the no-funds short-circuit",
    )


# ── Host confirmation email ───────────────────────────────────────────────────


class HostConfirmationRequest(_CamelModel):
    prize_assignment_id: str | None = None
    challenge_id: str | None = None
    challenge_title: str | None = None
    prize_amount: int | None = Field(default=None, ge=0, description="Smallest currency unit")
    prize_structure: PrizeStructure | None = None
    requested_by: str | None = None
    is_retry_attempt: bool = False


class HostConfirmationResponse(_CamelModel):
    success: bool
    message_id: str | None = None
    host_emails: list[str] = Field(default_factory=list)
    host_names: list[str] = Field(default_factory=list)
    emails_sent: int = 0
    emails_failed: int = 0
    message: str | None = None


# ── Confirmation link ─────────────────────────────────────────────────────────


class ConfirmationResponse(_CamelModel):
    success: bool = True
    prize_id: str
    challenge_title: str
    distribution_status: str
    already_confirmed: bool = False
    message: str
