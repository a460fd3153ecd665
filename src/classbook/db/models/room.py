from __future__ import annotations

from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped

from classbook.db.models.base import ORMBase
from classbook.db.models.timestamp import TimestampMixin


class Room(TimestampMixin, ORMBase):
    """ A bookable room. Rooms are reference data, the engine never
    changes them.

    """

    __tablename__ = 'rooms'

    id: Mapped[str] = mapped_column(primary_key=True)

    name: Mapped[str]

    capacity: Mapped[int | None]

    description: Mapped[str | None]

    def __init__(
        self,
        id: str,
        name: str,
        capacity: int | None = None,
        description: str | None = None
    ) -> None:
        # NOTE: Avoid auto-generated __init__, the mypy plugin is
        #       deprecated and cannot be used with newer versions.
        self.id = id
        self.name = name
        self.capacity = capacity
        self.description = description

    def __repr__(self) -> str:
        return f'<Room {self.id} {self.name!r}>'
