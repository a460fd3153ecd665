from __future__ import annotations

import datetime
from uuid import UUID

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Index

from classbook.db.models.base import ORMBase
from classbook.db.models.timestamp import TimestampMixin
from classbook.modules import errors
from classbook.modules import slotkey
from classbook.modules.periods import parse_period


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import Self, TypeAlias

    from classbook.modules.periods import Period


SlotKind: TypeAlias = Literal['reservation', 'template-lock']
RESERVATION: SlotKind = 'reservation'
TEMPLATE_LOCK: SlotKind = 'template-lock'
SLOT_KINDS: tuple[SlotKind, ...] = (RESERVATION, TEMPLATE_LOCK)


class Slot(TimestampMixin, ORMBase):
    """ The occupancy record of a single (room, date, period).

    The primary key is the slot key derived from exactly that triple, so
    there can only ever be one slot per room, date and period. Slots are
    never updated, a change of occupancy deletes the slot and creates a
    new one.

    A slot is either held by a reservation or locked by a recurring
    template, the kind tells which of the two references is set.

    """

    __tablename__ = 'slots'

    key: Mapped[str] = mapped_column(primary_key=True)

    room_id: Mapped[str]

    date: Mapped[datetime.date] = mapped_column(types.Date())

    period: Mapped[str]

    kind: Mapped[SlotKind] = mapped_column(
        types.Enum(*SLOT_KINDS, name='slot_kind')
    )

    reservation_id: Mapped[UUID | None]

    template_id: Mapped[UUID | None]

    created_by: Mapped[str | None]

    __table_args__ = (
        Index('slots_room_kind_ix', 'room_id', 'kind', 'date'),
        Index('slots_date_kind_ix', 'date', 'kind'),
        Index('slots_reservation_ix', 'reservation_id'),
        Index('slots_template_ix', 'template_id'),
    )

    def __init__(self) -> None:
        # NOTE: Avoid auto-generated __init__, the mypy plugin is
        #       deprecated and cannot be used with newer versions.
        pass

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Self:
        """ Creates a slot from the payload of a write plan entry. The key
        is derived from the room, date and period.

        """
        slot = cls()
        slot.room_id = payload['room_id']
        slot.date = payload['date']
        slot.period = parse_period(payload['period']).code
        slot.key = slotkey.encode(slot.room_id, slot.date, slot.period)
        slot.kind = payload['kind']
        slot.reservation_id = payload.get('reservation_id')
        slot.template_id = payload.get('template_id')
        slot.created_by = payload.get('created_by')

        if slot.kind not in SLOT_KINDS:
            raise errors.ValidationError(f'unknown slot kind {slot.kind!r}')

        if slot.kind == RESERVATION:
            owned = slot.reservation_id and not slot.template_id
        else:
            owned = slot.template_id and not slot.reservation_id

        if not owned:
            raise errors.ValidationError(
                f'slot {slot.key} needs exactly one {slot.kind} owner')

        return slot

    @property
    def occupant(self) -> tuple[SlotKind, str]:
        """ The kind and the id of whoever holds the slot. """
        if self.kind == RESERVATION:
            return self.kind, owner_id(self.reservation_id)
        return self.kind, owner_id(self.template_id)

    def same_occupant(self, other: Slot | dict[str, Any]) -> bool:
        if isinstance(other, Slot):
            return self.occupant == other.occupant

        kind = other['kind']
        owner = other.get('reservation_id' if kind == RESERVATION else (
            'template_id'
        ))
        return self.occupant == (kind, owner_id(owner))

    @property
    def period_enum(self) -> Period:
        return parse_period(self.period)

    def as_payload(self) -> dict[str, Any]:
        return {
            'room_id': self.room_id,
            'date': self.date,
            'period': self.period,
            'kind': self.kind,
            'reservation_id': self.reservation_id,
            'template_id': self.template_id,
            'created_by': self.created_by,
        }

    def __repr__(self) -> str:
        return f'<Slot {self.key} {self.kind}>'


def owner_id(value: UUID | str | None) -> str:
    """ Normalizes uuids and their string forms for comparison. """
    return str(value).replace('-', '').lower() if value else ''
