from __future__ import annotations

import datetime

from uuid import UUID, uuid4 as new_uuid

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import object_session
from sqlalchemy.orm import Mapped

from classbook.db.models.base import ORMBase
from classbook.db.models.other import OtherModels
from classbook.db.models.timestamp import TimestampMixin
from classbook.modules.periods import expand_periods


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.orm import Query

    from classbook.db.models import Slot
    from classbook.modules.periods import Period


class RecurringTemplate(TimestampMixin, ORMBase, OtherModels):
    """ A recurring hold on a room. For each day in its range, the template
    locks its periods with template-lock slots.

    If a weekday is set (0 = monday), only that day of the week is locked.

    """

    __tablename__ = 'recurring_templates'

    id: Mapped[UUID] = mapped_column(primary_key=True, default=new_uuid)

    name: Mapped[str]

    room_id: Mapped[str]

    #: canonical comma separated list of period codes
    periods: Mapped[str]

    weekday: Mapped[int | None]

    start_date: Mapped[datetime.date] = mapped_column(types.Date())

    end_date: Mapped[datetime.date | None] = mapped_column(
        types.Date(),
        nullable=True
    )

    enabled: Mapped[bool] = mapped_column(default=True)

    created_by: Mapped[str | None]

    def __init__(self) -> None:
        # NOTE: Avoid auto-generated __init__, the mypy plugin is
        #       deprecated and cannot be used with newer versions.
        pass

    @property
    def period_list(self) -> list[Period]:
        return expand_periods(self.periods)

    def clip(
        self,
        start: datetime.date,
        end: datetime.date
    ) -> tuple[datetime.date, datetime.date]:
        """ Limits the given range to the range of the template. """
        start = max(start, self.start_date)
        if self.end_date is not None:
            end = min(end, self.end_date)
        return start, end

    def slots(self) -> Query[Slot]:
        """ Returns the template-lock slots generated by this template. """
        session = object_session(self)
        assert session, (
            "Don't call if the template is detached"
        )
        Slot = self.models.Slot  # noqa: N806
        query = session.query(Slot)
        query = query.filter(Slot.template_id == self.id)
        query = query.order_by(Slot.date, Slot.key)

        return query

    def __repr__(self) -> str:
        return f'<RecurringTemplate {self.id} {self.name!r}>'
