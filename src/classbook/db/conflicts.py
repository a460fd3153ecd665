from __future__ import annotations

from sqlalchemy import or_

from classbook.context.core import ContextServicesMixin
from classbook.db.models import BlockedPeriod
from classbook.db.store import SlotStore, store_errors
from classbook.modules import slotkey
from classbook.modules.periods import expand_periods
from classbook.modules.utils import parse_date


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from collections.abc import Iterable
    from collections.abc import Sequence
    from datetime import date

    from classbook.context.core import Context
    from classbook.db.models import Slot
    from classbook.modules.periods import Period
    from classbook.modules.utils import DateLike

    _PeriodSpec = Period | str | int | Iterable[Period | str | int] | None
    _Cell = tuple[str, date, Period | str | int]


class ConflictResult(NamedTuple):
    has_conflict: bool
    conflicting_slots: list[str]
    slots: list[Slot]

    #: the blocked cells as (key, block), in the order they were checked
    blocked: Sequence[tuple[str, BlockedPeriod]] = ()

    def details(self) -> list[str]:
        """ Describes each conflict with its key, date, period and
        occupant (or the block), for display to the operator.

        """
        held = [
            '{} ({} {}): held by {} {}'.format(
                slot.key,
                slot.date.isoformat(),
                slot.period_enum.label,
                *slot.occupant
            ) for slot in self.slots
        ]
        blocked = [f'{key}: blocked {block}' for key, block in self.blocked]

        return held + blocked


NO_CONFLICT = ConflictResult(False, [], [])


class ConflictDetector(ContextServicesMixin):
    """ Answers whether the slots for a room, date and periods are free.

    Any existing slot is a conflict, no matter if it is held by a
    reservation or locked by a template. So is a cell inside a
    :class:`~classbook.db.models.BlockedPeriod` of the room (or of all
    rooms). The detector only reads.

    """

    def __init__(self, context: Context, store: SlotStore | None = None):
        self.context = context
        self.store = store or SlotStore(context)

    def check_conflict(
        self,
        room: str | None,
        date: DateLike | None,
        periods: _PeriodSpec
    ) -> ConflictResult:
        """ Checks the given periods of a single day. Ranges like '1-3' are
        checked period by period (1, 2 and 3).

        Nothing to check (no room, no date or no periods) is no conflict.

        """
        if not room or not date:
            return NO_CONFLICT

        return self.check_cells(
            (room, date, period) for period in expand_periods(periods)
        )

    def check_dates(
        self,
        room: str | None,
        dates: Iterable[DateLike],
        periods: _PeriodSpec
    ) -> ConflictResult:
        """ Like :meth:`check_conflict`, but for each of the given days. """
        if not room:
            return NO_CONFLICT

        expanded = expand_periods(periods)

        return self.check_cells(
            (room, date, period) for date in dates for period in expanded
        )

    def check_rooms(
        self,
        rooms: Iterable[str],
        date: DateLike | None,
        periods: _PeriodSpec
    ) -> ConflictResult:
        if not date:
            return NO_CONFLICT

        expanded = expand_periods(periods)

        return self.check_cells(
            (room, date, period) for room in rooms for period in expanded
        )

    def check_cells(
        self,
        cells: Iterable[tuple[str, DateLike, Period | str | int]],
        blocks: bool = True
    ) -> ConflictResult:
        """ Checks the given (room, date, period) cells, in the order given.

        Blocked periods are only considered if blocks is True.

        """
        parsed = [
            (room, parse_date(date), period) for room, date, period in cells
        ]
        keys = [slotkey.encode(*cell) for cell in parsed]

        if not keys:
            return NO_CONFLICT

        existing = self.store.get_many(keys)
        slots = [
            existing[key] for key in dict.fromkeys(keys) if key in existing
        ]

        blocked = self.blocked_cells(parsed, keys) if blocks else []

        conflicting = list(dict.fromkeys(
            [slot.key for slot in slots] + [key for key, _ in blocked]
        ))

        return ConflictResult(bool(conflicting), conflicting, slots, blocked)

    def blocked_cells(
        self,
        cells: Sequence[_Cell],
        keys: Sequence[str]
    ) -> list[tuple[str, BlockedPeriod]]:

        blocks = self.blocked_periods(
            {room for room, _, _ in cells},
            [day for _, day, _ in cells]
        )

        if not blocks:
            return []

        found: dict[str, BlockedPeriod] = {}

        for key, (room, day, _) in zip(keys, cells):
            if key in found:
                continue

            for block in blocks:
                if block.covers(day, room):
                    found[key] = block
                    break

        return list(found.items())

    def check_blocked(
        self,
        room: str | None,
        dates: Iterable[DateLike]
    ) -> BlockedPeriod | None:
        """ Returns the first block covering any of the given days of the
        room, or None. Without a room, only blocks of all rooms count.

        """
        days = [parse_date(d) for d in dates]
        blocks = self.blocked_periods({room} if room else (), days)

        for day in days:
            for block in blocks:
                if block.covers(day, room):
                    return block

        return None

    def blocked_periods(
        self,
        rooms: Collection[str],
        days: Sequence[date]
    ) -> list[BlockedPeriod]:
        """ Returns the blocks touching the range of the given days which
        apply to all rooms or to one of the given rooms, ordered by their
        start.

        """
        if not days:
            return []

        query = self.session.query(BlockedPeriod)
        query = query.filter(BlockedPeriod.start_date <= max(days))
        query = query.filter(BlockedPeriod.end_date >= min(days))
        query = query.filter(or_(
            BlockedPeriod.room_id.is_(None),
            BlockedPeriod.room_id == '',
            BlockedPeriod.room_id.in_(list(rooms))
        ))
        query = query.order_by(BlockedPeriod.start_date, BlockedPeriod.id)

        with store_errors():
            return query.all()
