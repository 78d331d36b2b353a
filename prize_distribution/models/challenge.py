"""Challenge and user rows the dispatcher reads to find a challenge's hosts.

Both tables are owned by the challenge product; this service only reads them.
"""

from datetime import datetime

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from prize_distribution.core.database import Base, UTCDateTime


class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    end_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Challenge {self.id} | {self.title!r} owners={len(self.owner_ids or [])}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    @property
    def host_name(self) -> str:
        return self.username or self.display_name or "Challenge Host"
