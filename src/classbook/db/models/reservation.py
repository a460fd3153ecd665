from __future__ import annotations

import sedate

from datetime import datetime
from uuid import UUID, uuid4 as new_uuid

from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import object_session
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Index

from classbook.db.models.base import ORMBase
from classbook.db.models.other import OtherModels
from classbook.db.models.timestamp import TimestampMixin


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.orm import Query

    from classbook.db.models import Slot
    from sedate.types import TzInfoOrName


class Reservation(TimestampMixin, ORMBase, OtherModels):
    """ A booked occupancy of a room for one or more periods of a day.

    The reservation owns the slots referencing it. Removing a reservation
    has to remove those slots as well, see
    :meth:`classbook.db.engine.Engine.cancel_reservation`.

    """

    __tablename__ = 'reservations'

    id: Mapped[UUID] = mapped_column(primary_key=True, default=new_uuid)

    room_id: Mapped[str]

    room_name: Mapped[str | None]

    title: Mapped[str]

    reservation_name: Mapped[str | None]

    start: Mapped[datetime]

    end: Mapped[datetime]

    #: a single period code or a comma separated list of them
    period: Mapped[str]

    period_name: Mapped[str | None]

    created_by: Mapped[str | None]

    #: Custom data reserved for the user
    data: Mapped[dict[str, Any]] = mapped_column(nullable=True)

    __table_args__ = (
        Index('reservations_start_ix', 'start'),
        Index('reservations_room_start_ix', 'room_id', 'start'),
    )

    def __init__(self) -> None:
        # NOTE: Avoid auto-generated __init__, the mypy plugin is
        #       deprecated and cannot be used with newer versions.
        pass

    def display_start(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.start, timezone)

    def display_end(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.end, timezone)

    def slots(self) -> Query[Slot]:
        """ Returns the slots held by this reservation. """
        session = object_session(self)
        assert session, (
            "Don't call if the reservation is detached"
        )
        Slot = self.models.Slot  # noqa: N806
        query = session.query(Slot)
        query = query.filter(Slot.reservation_id == self.id)
        query = query.order_by(Slot.date, Slot.key)

        return query

    def as_document(self) -> dict[str, Any]:
        """ Returns the reservation as json compatible dictionary, with the
        timestamps as ISO-8601 strings.

        """
        def isoformat(value: datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        document = dict(self.data or {})
        document.update({
            'id': str(self.id),
            'room_id': self.room_id,
            'room_name': self.room_name,
            'title': self.title,
            'reservation_name': self.reservation_name,
            'start': isoformat(self.start),
            'end': isoformat(self.end),
            'period': self.period,
            'period_name': self.period_name,
            'created_by': self.created_by,
            'created': isoformat(self.created),
            'modified': isoformat(self.modified),
        })

        return document

    def __repr__(self) -> str:
        return f'<Reservation {self.id} {self.room_id} {self.period}>'
