""" Slot keys identify the one slot a (room, date, period) tuple may have.

Keys are derived, never generated, so that two writers racing for the same
tuple collide on the primary key instead of creating two slots::

    >>> encode('room-1', '2025-08-27', '3')
    'room-1_2025-08-27_3'

Dates and period codes never contain the separator, so the key is decoded
from the right and rooms may contain underscores without breaking
injectivity.

"""
from __future__ import annotations

from classbook.modules import errors
from classbook.modules.periods import parse_period
from classbook.modules.utils import parse_date


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import date
    from typing_extensions import TypeAlias

    from classbook.modules.periods import Period
    from classbook.modules.utils import DateLike

    SlotKey: TypeAlias = str


SEPARATOR = '_'


class SlotKeyParts(NamedTuple):
    room: str
    date: date
    period: Period


def validate_room(room: str) -> str:
    if not isinstance(room, str) or not room.strip():
        raise errors.ValidationError(f'invalid room id {room!r}')

    if room != room.strip() or '/' in room:
        raise errors.ValidationError(f'invalid room id {room!r}')

    return room


def encode(room: str, date: DateLike, period: Period | str | int) -> SlotKey:
    day = parse_date(date)
    return SEPARATOR.join((
        validate_room(room),
        day.isoformat(),
        parse_period(period).code
    ))


def decode(key: SlotKey) -> SlotKeyParts:
    """ Best-effort inverse of :func:`encode`, meant for diagnostics. """
    parts = key.rsplit(SEPARATOR, 2) if isinstance(key, str) else ()

    if len(parts) != 3:
        raise errors.ValidationError(f'malformed slot key {key!r}')

    room, day, period = parts
    return SlotKeyParts(
        validate_room(room),
        parse_date(day),
        parse_period(period)
    )
