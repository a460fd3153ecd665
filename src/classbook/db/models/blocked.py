from __future__ import annotations

import datetime

from uuid import UUID, uuid4 as new_uuid

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Index

from classbook.db.models.base import ORMBase
from classbook.db.models.timestamp import TimestampMixin


class BlockedPeriod(TimestampMixin, ORMBase):
    """ A range of days on which nothing may be booked, e.g. during the
    exams or while a room is renovated.

    Without a room, the block applies to all rooms. Template locks are not
    affected by blocks, only reservations are.

    """

    __tablename__ = 'blocked_periods'

    id: Mapped[UUID] = mapped_column(primary_key=True, default=new_uuid)

    start_date: Mapped[datetime.date] = mapped_column(types.Date())

    end_date: Mapped[datetime.date] = mapped_column(types.Date())

    room_id: Mapped[str | None]

    room_name: Mapped[str | None]

    reason: Mapped[str | None]

    created_by: Mapped[str | None]

    __table_args__ = (
        Index('blocked_periods_range_ix', 'start_date', 'end_date'),
    )

    def __init__(self) -> None:
        # NOTE: Avoid auto-generated __init__, the mypy plugin is
        #       deprecated and cannot be used with newer versions.
        pass

    @property
    def all_rooms(self) -> bool:
        return not self.room_id

    def covers(self, day: datetime.date, room: str | None = None) -> bool:
        """ True if the given day of the given room is blocked. Blocks of a
        single room never cover an unknown room.

        """
        if not self.start_date <= day <= self.end_date:
            return False

        return self.all_rooms or self.room_id == room

    def __str__(self) -> str:
        span = f'{self.start_date.isoformat()} - {self.end_date.isoformat()}'
        if self.reason:
            return f'{span} ({self.reason})'
        return span

    def __repr__(self) -> str:
        return f'<BlockedPeriod {self.id} {self}>'
