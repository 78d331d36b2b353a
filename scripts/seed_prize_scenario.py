#!/usr/bin/env python3
"""Seed the database with sample challenges and failed prize distributions.

Creates a host user, a challenge owned by that host, and one prize assignment
per scenario with its winner records, so a retry pass has something to act on.

Usage:
    # Tables must exist (alembic upgrade head):
    python scripts/seed_prize_scenario.py

    # Send the host emails to your own inbox:
    SEED_HOST_EMAIL=me@example.com python scripts/seed_prize_scenario.py
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

from prize_distribution.core.database import async_session_factory
from prize_distribution.models import (
    Challenge,
    DistributionStatus,
    PrizeAssignment,
    PrizeRecord,
    PrizeRecordStatus,
    PrizeStructure,
    User,
)

HOST_EMAIL = os.getenv("SEED_HOST_EMAIL", "host@example.com")

# Amounts in cents.  With a $100 balance the first scenario is retried and
# the second is skipped until more funds arrive.
SAMPLE_SCENARIOS = [
    {
        "title": "30 Day Squat Challenge",
        "prize_amount": 10000,
        "structure": PrizeStructure.TOP_THREE_SPLIT,
        "status": DistributionStatus.FAILED,
        "records": [(6000, PrizeRecordStatus.FAILED), (2500, PrizeRecordStatus.FAILED)],
    },
    {
        "title": "Plank Marathon",
        "prize_amount": 25000,
        "structure": PrizeStructure.TOP_FIVE_SPLIT,
        "status": DistributionStatus.PARTIALLY_DISTRIBUTED,
        "records": [
            (10000, PrizeRecordStatus.SUCCEEDED),
            (6250, PrizeRecordStatus.FAILED),
            (5000, PrizeRecordStatus.PENDING_FUNDS),
        ],
    },
    {
        "title": "Morning Run Streak",
        "prize_amount": 5000,
        "structure": PrizeStructure.WINNER_TAKES_ALL,
        "status": DistributionStatus.PENDING,
        "records": [],
    },
]


async def seed():
    end_date = datetime.now(timezone.utc) - timedelta(days=1)

    print("Seeding prize scenarios...")
    async with async_session_factory() as session:
        host = User(id=uuid.uuid4().hex, email=HOST_EMAIL, username="seed_host")
        session.add(host)

        for scenario in SAMPLE_SCENARIOS:
            challenge = Challenge(
                id=uuid.uuid4().hex,
                title=scenario["title"],
                owner_ids=[host.id],
                end_date=end_date,
            )
            assignment = PrizeAssignment(
                id=uuid.uuid4().hex,
                challenge_id=challenge.id,
                challenge_title=scenario["title"],
                prize_amount=scenario["prize_amount"],
                prize_structure=scenario["structure"].value,
                host_confirmed=scenario["status"] != DistributionStatus.PENDING,
                distribution_status=scenario["status"].value,
            )
            session.add_all([challenge, assignment])
            for rank, (amount, status) in enumerate(scenario["records"], start=1):
                session.add(PrizeRecord(
                    prize_id=assignment.id,
                    username=f"winner_{rank}",
                    prize_amount=amount,
                    status=status.value,
                ))
            print(f"  Created: {scenario['title']} → prize_id={assignment.id} ({scenario['status'].value})")

        await session.commit()

    print(f"\nSeeded {len(SAMPLE_SCENARIOS)} scenarios for host {HOST_EMAIL}.")


if __name__ == "__main__":
    asyncio.run(seed())
