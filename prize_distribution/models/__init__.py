from prize_distribution.models.challenge import Challenge, User
from prize_distribution.models.ledger import (
    DistributionStatus,
    PrizeAssignment,
    PrizeRecord,
    PrizeRecordStatus,
    PrizeStructure,
)
from prize_distribution.models.logs import ErrorLog, RunSummaryLog

__all__ = [
    "Challenge",
    "User",
    "DistributionStatus",
    "PrizeAssignment",
    "PrizeRecord",
    "PrizeRecordStatus",
    "PrizeStructure",
    "ErrorLog",
    "RunSummaryLog",
]
