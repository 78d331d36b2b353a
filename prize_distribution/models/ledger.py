"""Distribution ledger: challenge-level prize assignments and per-winner records.

A PrizeAssignment is never deleted by this service.  Its ``distribution_status``
moves only along the transitions in ``ALLOWED_TRANSITIONS``; PrizeRecord
statuses are written by the external funds-transfer step and only read here.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from prize_distribution.core.database import Base, UTCDateTime, utcnow


class PrizeStructure(str, enum.Enum):
    WINNER_TAKES_ALL = "winner_takes_all"
    TOP_THREE_SPLIT = "top_three_split"
    TOP_FIVE_SPLIT = "top_five_split"
    CUSTOM = "custom"


PRIZE_STRUCTURE_DESCRIPTIONS: dict[PrizeStructure, str] = {
    PrizeStructure.WINNER_TAKES_ALL: "100% to 1st place",
    PrizeStructure.TOP_THREE_SPLIT: "60% / 25% / 15% split (1st/2nd/3rd)",
    PrizeStructure.TOP_FIVE_SPLIT: "40% / 25% / 20% / 10% / 5% split",
    PrizeStructure.CUSTOM: "Custom distribution",
}


class DistributionStatus(str, enum.Enum):
    PENDING = "pending"
    FAILED = "failed"
    PARTIALLY_DISTRIBUTED = "partially_distributed"
    RETRY_EMAIL_SENT = "retry_email_sent"
    DISTRIBUTED = "distributed"  # terminal, written by the funds-transfer step


RETRYABLE_STATUSES = (DistributionStatus.FAILED, DistributionStatus.PARTIALLY_DISTRIBUTED)

ALLOWED_TRANSITIONS: dict[DistributionStatus, frozenset[DistributionStatus]] = {
    DistributionStatus.PENDING: frozenset(
        {DistributionStatus.FAILED, DistributionStatus.PARTIALLY_DISTRIBUTED,
         DistributionStatus.DISTRIBUTED}
    ),
    DistributionStatus.FAILED: frozenset({DistributionStatus.RETRY_EMAIL_SENT}),
    DistributionStatus.PARTIALLY_DISTRIBUTED: frozenset({DistributionStatus.RETRY_EMAIL_SENT}),
    DistributionStatus.RETRY_EMAIL_SENT: frozenset(
        {DistributionStatus.FAILED, DistributionStatus.PARTIALLY_DISTRIBUTED,
         DistributionStatus.DISTRIBUTED}
    ),
    DistributionStatus.DISTRIBUTED: frozenset(),
}


def can_transition(current: DistributionStatus, target: DistributionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class PrizeRecordStatus(str, enum.Enum):
    PENDING_FUNDS = "pending_funds"
    FAILED = "failed"
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"


OUTSTANDING_RECORD_STATUSES = (PrizeRecordStatus.FAILED, PrizeRecordStatus.PENDING_FUNDS)


def _new_id() -> str:
    return uuid.uuid4().hex


class PrizeAssignment(Base):
    __tablename__ = "prize_assignments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    challenge_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    challenge_title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Smallest currency unit (cents)
    prize_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_structure: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PrizeStructure.WINNER_TAKES_ALL.value
    )

    host_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    host_confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    distribution_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DistributionStatus.PENDING.value, index=True
    )

    # Host notification metadata
    host_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    host_email_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    host_email_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emails_sent_to_hosts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Confirmation token: the nonce is what the HMAC is re-derived from
    confirmation_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    confirmation_nonce: Mapped[str | None] = mapped_column(String(32), nullable=True)
    confirmation_expires: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Retry bookkeeping
    retry_email_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retry_email_sent: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<PrizeAssignment {self.id} | challenge={self.challenge_id} "
            f"amount={self.prize_amount} status={self.distribution_status}>"
        )


class PrizeRecord(Base):
    __tablename__ = "prize_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    prize_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("prize_assignments.id"), nullable=False, index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # This winner's share, smallest currency unit
    prize_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PrizeRecord {self.id} | prize={self.prize_id} {self.prize_amount} {self.status}>"
