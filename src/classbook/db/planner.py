""" Turns the operations callers want to perform into write plans.

Planning never writes. A plan lists the slots to create and delete, keyed by
their slot key, and is handed to the
:class:`~classbook.db.executor.BatchExecutor` afterwards. Between the two,
a plan is plain data, so it may be inspected, shown to an operator or thrown
away.

"""
from __future__ import annotations

from classbook.context.core import ContextServicesMixin
from classbook.db.conflicts import ConflictDetector
from classbook.db.models import Reservation
from classbook.db.models.slot import RESERVATION, TEMPLATE_LOCK
from classbook.db.store import SlotStore, store_errors
from classbook.modules import errors
from classbook.modules import slotkey
from classbook.modules.periods import expand_periods
from classbook.modules.utils import chunked, iterate_dates, parse_date


from typing import Any
from typing import Literal
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterable
    from collections.abc import Iterator
    from datetime import date
    from typing_extensions import TypeAlias
    from uuid import UUID

    from classbook.context.core import Context
    from classbook.db.models import BlockedPeriod, Slot
    from classbook.db.models.slot import SlotKind
    from classbook.modules.periods import Period
    from classbook.modules.utils import DateLike

    _PeriodSpec = Period | str | int | Iterable[Period | str | int]

    Action: TypeAlias = Literal['create', 'delete']

    Operation: TypeAlias = (
        'BookSingle | InstantiateTemplate | CancelReservation '
        '| RetireTemplate | PurgeByFilter | PurgeOrphans'
    )


CREATE: Action = 'create'
DELETE: Action = 'delete'


class PlanEntry(NamedTuple):
    key: str
    action: Action
    payload: dict[str, Any]


class Conflict(NamedTuple):
    """ A cell which can't be booked. Either it is held by the existing
    slot, or it lies inside a blocked period.

    """

    key: str
    date: date
    period: Period
    existing: Slot | None
    blocked: BlockedPeriod | None = None

    @property
    def occupant(self) -> tuple[str, str]:
        if self.existing is None:
            assert self.blocked is not None
            return 'blocked', str(self.blocked.id)
        return self.existing.occupant

    def __str__(self) -> str:
        cell = f'{self.key} ({self.date.isoformat()} {self.period.label})'

        if self.existing is None:
            return f'{cell} blocked {self.blocked}'

        kind, owner = self.occupant
        return f'{cell} held by {kind} {owner}'


class BookSingle(NamedTuple):
    room: str
    date: DateLike
    periods: _PeriodSpec
    reservation_id: UUID | str
    created_by: str | None = None


class InstantiateTemplate(NamedTuple):
    """ Locks the periods of a room on each day between start and end
    (inclusive). If a weekday is given (0 = monday), only on that day of
    the week.

    Days after max_date_bound are never planned silently. Either they are
    dropped (clamp_to_bound) or the whole operation is rejected with
    :class:`~classbook.modules.errors.DateBeyondBound`.

    """
    template_id: UUID | str
    room: str
    periods: _PeriodSpec
    start: DateLike
    end: DateLike
    max_date_bound: DateLike | None = None
    clamp_to_bound: bool = False
    weekday: int | None = None
    created_by: str | None = None


class CancelReservation(NamedTuple):
    reservation_id: UUID | str


class RetireTemplate(NamedTuple):
    """ Removes the slots of a template. With since, only the slots on or
    after that day are removed (the template's range shrinks).

    """
    template_id: UUID | str
    since: DateLike | None = None


class PurgeByFilter(NamedTuple):
    """ Removes the slots matching all given criteria. The predicate is
    an additional test run on each slot the criteria matched.

    """
    room: str | None = None
    start: DateLike | None = None
    end: DateLike | None = None
    kind: SlotKind | None = None
    predicate: Callable[[Slot], bool] | None = None


class PurgeOrphans(NamedTuple):
    """ Removes reservation slots whose reservation doesn't exist (anymore).
    Template locks are never orphans.

    """
    room: str | None = None
    start: DateLike | None = None
    end: DateLike | None = None


class WritePlan:
    """ The ordered list of slot writes implementing an operation.

    If the plan has conflicts, it has no entries. Such a plan must not be
    applied, the caller has to decide what to do with the conflicts.

    """

    def __init__(self, operation: Operation):
        self.operation = operation
        self.entries: list[PlanEntry] = []
        self.conflicts: list[Conflict] = []

        #: the days dropped because they are after the max date bound
        self.clamped: list[date] = []

    def __repr__(self) -> str:
        return (
            f'<WritePlan {type(self.operation).__name__} '
            f'entries={len(self.entries)} conflicts={len(self.conflicts)}>'
        )

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self.entries)

    @property
    def ok(self) -> bool:
        return not self.conflicts

    @property
    def keys(self) -> list[str]:
        return [entry.key for entry in self.entries]

    @property
    def creates(self) -> list[PlanEntry]:
        return [e for e in self.entries if e.action == CREATE]

    @property
    def deletes(self) -> list[PlanEntry]:
        return [e for e in self.entries if e.action == DELETE]


class MutationPlanner(ContextServicesMixin):
    """ Creates write plans for operations. """

    def __init__(
        self,
        context: Context,
        store: SlotStore | None = None,
        detector: ConflictDetector | None = None
    ):
        self.context = context
        self.store = store or SlotStore(context)
        self.detector = detector or ConflictDetector(context, self.store)

    def plan(self, operation: Operation) -> WritePlan:
        if isinstance(operation, BookSingle):
            return self.plan_booking(operation)
        if isinstance(operation, InstantiateTemplate):
            return self.plan_template_instantiation(operation)
        if isinstance(operation, CancelReservation):
            return self.plan_cancellation(operation)
        if isinstance(operation, RetireTemplate):
            return self.plan_template_retirement(operation)
        if isinstance(operation, PurgeByFilter):
            return self.plan_purge(operation)
        if isinstance(operation, PurgeOrphans):
            return self.plan_orphan_cleanup(operation)

        raise errors.ValidationError(f'unknown operation {operation!r}')

    def plan_booking(self, operation: BookSingle) -> WritePlan:
        if not operation.reservation_id:
            raise errors.ValidationError('a booking needs a reservation')

        day = parse_date(operation.date)
        periods = self.periods_of(operation.periods)

        payload = {
            'kind': RESERVATION,
            'reservation_id': str(operation.reservation_id),
            'created_by': operation.created_by,
        }

        return self.plan_creates(
            WritePlan(operation),
            operation.room,
            ((day, period) for period in periods),
            payload
        )

    def plan_template_instantiation(
        self,
        operation: InstantiateTemplate
    ) -> WritePlan:

        if not operation.template_id:
            raise errors.ValidationError('no template given')

        start = parse_date(operation.start)
        end = parse_date(operation.end)

        if end < start:
            raise errors.ValidationError(f'{end} is before {start}')

        periods = self.periods_of(operation.periods)
        days = list(iterate_dates(start, end, operation.weekday))

        plan = WritePlan(operation)

        if operation.max_date_bound is not None:
            bound = parse_date(operation.max_date_bound)
            beyond = [day for day in days if day > bound]

            if beyond and not operation.clamp_to_bound:
                raise errors.DateBeyondBound(beyond[0], bound)

            plan.clamped = beyond
            days = [day for day in days if day <= bound]

        payload = {
            'kind': TEMPLATE_LOCK,
            'template_id': str(operation.template_id),
            'created_by': operation.created_by,
        }

        return self.plan_creates(
            plan,
            operation.room,
            ((day, period) for day in days for period in periods),
            payload
        )

    def plan_cancellation(self, operation: CancelReservation) -> WritePlan:
        if not operation.reservation_id:
            raise errors.ValidationError('no reservation given')

        return self.plan_deletes(
            WritePlan(operation),
            self.store.by_reservation(str(operation.reservation_id))
        )

    def plan_template_retirement(
        self,
        operation: RetireTemplate
    ) -> WritePlan:

        if not operation.template_id:
            raise errors.ValidationError('no template given')

        since = None
        if operation.since is not None:
            since = parse_date(operation.since)

        return self.plan_deletes(
            WritePlan(operation),
            self.store.by_template(str(operation.template_id), since)
        )

    def plan_purge(self, operation: PurgeByFilter) -> WritePlan:
        query = self.store.query(
            room=operation.room,
            start=operation.start,
            end=operation.end,
            kind=operation.kind
        )

        with store_errors():
            slots = query.all()

        if operation.predicate is not None:
            slots = [s for s in slots if operation.predicate(s)]

        return self.plan_deletes(WritePlan(operation), slots)

    def plan_orphan_cleanup(self, operation: PurgeOrphans) -> WritePlan:
        query = self.store.query(
            room=operation.room,
            start=operation.start,
            end=operation.end,
            kind=RESERVATION
        )

        with store_errors():
            slots = query.all()
            existing = self.existing_reservations(
                s.reservation_id for s in slots if s.reservation_id
            )

        orphans = [
            slot for slot in slots
            if not slot.reservation_id or slot.reservation_id not in existing
        ]

        return self.plan_deletes(WritePlan(operation), orphans)

    def existing_reservations(
        self,
        ids: Iterable[UUID]
    ) -> set[UUID]:
        found = set()

        for chunk in chunked(set(ids), 200):
            query = self.session.query(Reservation.id)
            query = query.filter(Reservation.id.in_(chunk))
            found.update(row.id for row in query)

        return found

    def periods_of(self, spec: _PeriodSpec) -> list[Period]:
        periods = expand_periods(spec)

        if not periods:
            raise errors.ValidationError('no periods given')

        return periods

    def plan_creates(
        self,
        plan: WritePlan,
        room: str,
        cells: Iterable[tuple[date, Period]],
        payload: dict[str, Any]
    ) -> WritePlan:
        """ Adds a create entry for each cell, unless any of the cells is
        held by a different occupant. In that case, only the conflicts are
        added to the plan.

        Cells already held by the same occupant are planned again, applying
        them is a no-op. Reservations are not planned inside blocked
        periods, template locks ignore them.

        """
        entries = []
        periods: dict[str, Period] = {}

        for day, period in cells:
            entry_payload = dict(payload)
            entry_payload.update({
                'room_id': room,
                'date': day,
                'period': period.code,
            })
            key = slotkey.encode(room, day, period)
            periods[key] = period
            entries.append(PlanEntry(key, CREATE, entry_payload))

        result = self.detector.check_cells(
            (
                (room, entry.payload['date'], entry.payload['period'])
                for entry in entries
            ),
            blocks=payload['kind'] == RESERVATION
        )

        by_key = {entry.key: entry for entry in entries}

        for slot in result.slots:
            if not slot.same_occupant(by_key[slot.key].payload):
                plan.conflicts.append(Conflict(
                    slot.key, slot.date, slot.period_enum, slot
                ))

        held = {conflict.key for conflict in plan.conflicts}

        for key, block in result.blocked:
            if key not in held:
                plan.conflicts.append(Conflict(
                    key, by_key[key].payload['date'], periods[key], None, block
                ))

        if not plan.conflicts:
            plan.entries.extend(entries)

        return plan

    def plan_deletes(
        self,
        plan: WritePlan,
        slots: Iterable[Slot]
    ) -> WritePlan:
        """ Adds a delete entry for each of the given slots. The payload
        holds the slot as it was seen, the executor won't delete a slot
        which changed its occupant in the meantime.

        """
        with store_errors():
            plan.entries.extend(
                PlanEntry(slot.key, DELETE, slot.as_payload())
                for slot in slots
            )

        return plan
