from __future__ import annotations

import logging
import sedate

from datetime import date, timedelta
from uuid import uuid4 as new_uuid

from classbook.context.core import ContextServicesMixin
from classbook.db.conflicts import ConflictDetector
from classbook.db.executor import BatchExecutor
from classbook.db.models import (
    BlockedPeriod,
    ORMBase,
    RecurringTemplate,
    Reservation,
    Room,
    SnapshotBlob,
    SnapshotMeta,
    Slot,
)
from classbook.db.planner import (
    BookSingle,
    CancelReservation,
    InstantiateTemplate,
    MutationPlanner,
    PurgeByFilter,
    PurgeOrphans,
    RetireTemplate,
    WritePlan,
)
from classbook.db.snapshot import SnapshotBuilder
from classbook.db.store import SlotStore
from classbook.modules import errors
from classbook.modules.periods import canonical, describe, expand_periods
from classbook.modules.utils import add_months, month_id_of, parse_date


from typing import Any
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterable
    from sqlalchemy.orm import Query
    from uuid import UUID

    from classbook.context.core import Context
    from classbook.db.conflicts import ConflictResult
    from classbook.db.executor import ExecutionReport
    from classbook.db.models.slot import SlotKind
    from classbook.db.planner import Operation
    from classbook.db.snapshot import SnapshotResult
    from classbook.modules.periods import Period
    from classbook.modules.utils import DateLike

    _PeriodSpec = Period | str | int | Iterable[Period | str | int]


log = logging.getLogger('classbook')


class BookingResult(NamedTuple):
    plan: WritePlan
    report: ExecutionReport | None
    reservation: Reservation | None

    @property
    def ok(self) -> bool:
        return self.reservation is not None


class TemplateResult(NamedTuple):
    """ The outcome of a single template in :meth:`Engine.apply_templates`.
    The plan is None if the template could not be planned, the reason says
    why.

    """

    template: RecurringTemplate
    plan: WritePlan | None
    report: ExecutionReport | None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.report is not None and self.report.ok


class Engine(ContextServicesMixin):
    """ The engine is the entry point for all slot mutations of a context.
    It plans operations, applies the plans and builds the monthly snapshots.

    Expected outcomes like conflicts or failed chunks are returned, not
    raised. Only malformed input raises
    :class:`~classbook.modules.errors.ValidationError`.

    """

    def __init__(self, context: Context):
        """ Initializes a new engine.

        :context:
            The :class:`classbook.context.core.Context` this engine should
            operate on. Acquire a context by using
            :func:`classbook.context.registry.Registry.register_context`.

        """
        self.context = context

        self.store = SlotStore(context)
        self.detector = ConflictDetector(context, self.store)
        self.planner = MutationPlanner(context, self.store, self.detector)
        self.executor = BatchExecutor(context, self.store)
        self.snapshots = SnapshotBuilder(context)

    def setup_database(self) -> None:
        """ Creates the tables and indices required for classbook. This needs
        to be called once per database. Multiple invocations won't hurt but
        they are unnecessary.

        """
        ORMBase.metadata.create_all(self.session.bind)

    def extinguish_managed_records(self) -> None:
        """ WARNING:
        Completely removes all records of the database classbook manages.
        Meant for tests, there's no undo!

        """
        for model in (
            Slot, Reservation, RecurringTemplate, Room, BlockedPeriod,
            SnapshotMeta, SnapshotBlob
        ):
            self.session.query(model).delete()

    def today(self) -> date:
        return sedate.to_timezone(self.clock(), self.timezone).date()

    def default_date_bound(self) -> date | None:
        months = self.context.get_setting('reservation_limit_months')

        if months is None:
            return None

        return add_months(self.today(), months)

    # records

    def room_by_id(self, id: str) -> Room | None:
        return self.session.get(Room, id)

    def reservation_by_id(self, id: UUID | str) -> Reservation:
        reservation = self.session.get(Reservation, str(id))

        if reservation is None:
            raise errors.UnknownReservation(str(id))

        return reservation

    def template_by_id(self, id: UUID | str) -> RecurringTemplate:
        template = self.session.get(RecurringTemplate, str(id))

        if template is None:
            raise errors.UnknownTemplate(str(id))

        return template

    def add_room(
        self,
        id: str,
        name: str,
        capacity: int | None = None,
        description: str | None = None
    ) -> Room:
        room = Room(id, name, capacity, description)
        self.session.add(room)
        self.session.flush()

        return room

    def add_reservation(
        self,
        room: str,
        date: DateLike,
        periods: _PeriodSpec,
        title: str,
        reservation_name: str | None = None,
        created_by: str | None = None,
        data: dict[str, Any] | None = None,
        id: UUID | None = None
    ) -> Reservation:
        """ Adds the reservation record only, without any slots. The start
        and end are derived from the first and the last period.

        Use :meth:`reserve` to book the slots as well.

        """
        day = parse_date(date)
        expanded = expand_periods(periods)

        if not expanded:
            raise errors.ValidationError('no periods given')

        ordered = sorted(expanded, key=lambda p: p.order)
        record = self.room_by_id(room)

        reservation = Reservation()
        reservation.id = id or new_uuid()
        reservation.room_id = room
        reservation.room_name = record.name if record else None
        reservation.title = title
        reservation.reservation_name = reservation_name
        reservation.start = ordered[0].timespan(day, self.timezone)[0]
        reservation.end = ordered[-1].timespan(day, self.timezone)[1]
        reservation.period = canonical(ordered)
        reservation.period_name = describe(ordered)
        reservation.created_by = created_by
        reservation.data = data or {}

        self.session.add(reservation)
        self.session.flush()

        return reservation

    def add_template(
        self,
        name: str,
        room: str,
        periods: _PeriodSpec,
        start_date: DateLike,
        end_date: DateLike | None = None,
        weekday: int | None = None,
        enabled: bool = True,
        created_by: str | None = None
    ) -> RecurringTemplate:

        expanded = expand_periods(periods)

        if not expanded:
            raise errors.ValidationError('no periods given')

        if weekday is not None and weekday not in range(7):
            raise errors.ValidationError(f'invalid weekday {weekday}')

        template = RecurringTemplate()
        template.id = new_uuid()
        template.name = name
        template.room_id = room
        template.periods = canonical(expanded)
        template.weekday = weekday
        template.start_date = parse_date(start_date)
        template.end_date = parse_date(end_date) if end_date else None
        template.enabled = enabled
        template.created_by = created_by

        if template.end_date and template.end_date < template.start_date:
            raise errors.ValidationError('the template ends before it starts')

        self.session.add(template)
        self.session.flush()

        return template

    def blocked_period_by_id(self, id: UUID | str) -> BlockedPeriod:
        block = self.session.get(BlockedPeriod, str(id))

        if block is None:
            raise errors.UnknownBlockedPeriod(str(id))

        return block

    def blocked_periods(self) -> Query[BlockedPeriod]:
        query = self.session.query(BlockedPeriod)
        return query.order_by(BlockedPeriod.start_date, BlockedPeriod.id)

    def add_blocked_period(
        self,
        start_date: DateLike,
        end_date: DateLike,
        room: str | None = None,
        reason: str | None = None,
        created_by: str | None = None
    ) -> BlockedPeriod:
        """ Forbids reservations between start_date and end_date (inclusive)
        in the given room, or in all rooms if no room is given.

        Existing slots are left alone, cancel them explicitly if needed.

        """
        block = BlockedPeriod()
        block.id = new_uuid()
        block.start_date = parse_date(start_date)
        block.end_date = parse_date(end_date)
        block.room_id = room or None
        block.reason = reason
        block.created_by = created_by

        if block.end_date < block.start_date:
            raise errors.ValidationError('the block ends before it starts')

        if room:
            record = self.room_by_id(room)
            block.room_name = record.name if record else None

        self.session.add(block)
        self.session.flush()

        return block

    def remove_blocked_period(self, id: UUID | str) -> None:
        self.session.delete(self.blocked_period_by_id(id))
        self.session.flush()

    def check_blocked(
        self,
        room: str | None,
        dates: DateLike | Iterable[DateLike]
    ) -> BlockedPeriod | None:
        """ Returns the block forbidding reservations of the room on the
        given day (or on any of the given days), if there is one.

        """
        if isinstance(dates, (str, date)):
            dates = (dates, )

        return self.detector.check_blocked(room, dates)

    # planning

    def check_conflict(
        self,
        room: str | None,
        date: DateLike | None,
        periods: _PeriodSpec | None
    ) -> ConflictResult:
        return self.detector.check_conflict(room, date, periods)

    def plan(self, operation: Operation) -> WritePlan:
        return self.planner.plan(operation)

    def plan_booking(
        self,
        room: str,
        date: DateLike,
        periods: _PeriodSpec,
        reservation_id: UUID | str,
        created_by: str | None = None
    ) -> WritePlan:
        return self.planner.plan(BookSingle(
            room, date, periods, reservation_id, created_by
        ))

    def plan_template_instantiation(
        self,
        template: RecurringTemplate | UUID | str,
        start: DateLike,
        end: DateLike,
        max_date_bound: DateLike | None = None,
        clamp_to_bound: bool = False
    ) -> WritePlan:
        """ Plans the template locks of the given template between start and
        end, limited to the template's own range.

        Without max_date_bound, the bound defined through the
        reservation_limit_months setting is used (if any).

        """
        if not isinstance(template, RecurringTemplate):
            template = self.template_by_id(template)

        if max_date_bound is None:
            max_date_bound = self.default_date_bound()

        first, last = template.clip(parse_date(start), parse_date(end))

        operation = InstantiateTemplate(
            template_id=template.id,
            room=template.room_id,
            periods=template.period_list,
            start=first,
            end=last,
            max_date_bound=max_date_bound,
            clamp_to_bound=clamp_to_bound,
            weekday=template.weekday,
            created_by=template.created_by
        )

        if last < first:
            return WritePlan(operation)

        return self.planner.plan(operation)

    def plan_cancellation(self, reservation_id: UUID | str) -> WritePlan:
        return self.planner.plan(CancelReservation(reservation_id))

    def plan_template_retirement(
        self,
        template_id: UUID | str,
        since: DateLike | None = None
    ) -> WritePlan:
        return self.planner.plan(RetireTemplate(template_id, since))

    def plan_purge(
        self,
        room: str | None = None,
        start: DateLike | None = None,
        end: DateLike | None = None,
        kind: SlotKind | None = None,
        predicate: Callable[[Slot], bool] | None = None
    ) -> WritePlan:
        return self.planner.plan(PurgeByFilter(
            room, start, end, kind, predicate
        ))

    def plan_orphan_cleanup(
        self,
        room: str | None = None,
        start: DateLike | None = None,
        end: DateLike | None = None
    ) -> WritePlan:
        return self.planner.plan(PurgeOrphans(room, start, end))

    # applying

    def execute(self, plan: WritePlan) -> ExecutionReport:
        return self.executor.apply(plan)

    def reserve(
        self,
        room: str,
        date: DateLike,
        periods: _PeriodSpec,
        title: str,
        reservation_name: str | None = None,
        created_by: str | None = None,
        data: dict[str, Any] | None = None
    ) -> BookingResult:
        """ Books the given periods and adds the reservation record.

        If the periods are not free or the slots could not be written, no
        reservation is added and the result says why. The slots are written
        before the record, should adding the record fail, the slots are
        orphans (see :meth:`plan_orphan_cleanup`).

        """
        reservation_id = new_uuid()

        plan = self.plan_booking(
            room, date, periods, reservation_id, created_by
        )

        if not plan.ok:
            return BookingResult(plan, None, None)

        report = self.execute(plan)

        if not report.ok:
            return BookingResult(plan, report, None)

        reservation = self.add_reservation(
            room, date, periods, title,
            reservation_name=reservation_name,
            created_by=created_by,
            data=data,
            id=reservation_id
        )
        self.commit()

        return BookingResult(plan, report, reservation)

    def cancel_reservation(
        self,
        reservation_id: UUID | str
    ) -> ExecutionReport:
        """ Removes the slots of the reservation and, if all of them could
        be removed, the reservation itself.

        """
        reservation = self.reservation_by_id(reservation_id)
        report = self.execute(self.plan_cancellation(reservation.id))

        if report.ok:
            self.session.delete(self.reservation_by_id(reservation_id))
            self.commit()

        return report

    def remove_template(self, template_id: UUID | str) -> ExecutionReport:
        """ Removes the template locks of the template and, if all of them
        could be removed, the template itself.

        """
        template = self.template_by_id(template_id)
        report = self.execute(self.plan_template_retirement(template.id))

        if report.ok:
            self.session.delete(self.template_by_id(template_id))
            self.commit()

        return report

    def change_template_end(
        self,
        template_id: UUID | str,
        end_date: DateLike
    ) -> ExecutionReport:
        """ Shrinks the range of the template, removing the locks after the
        new end date.

        """
        template = self.template_by_id(template_id)
        end = parse_date(end_date)

        if end < template.start_date:
            raise errors.ValidationError('the template ends before it starts')

        template.end_date = end
        self.commit()

        return self.execute(self.plan_template_retirement(
            template_id, end + timedelta(days=1)
        ))

    def apply_templates(
        self,
        start: DateLike,
        end: DateLike,
        max_date_bound: DateLike | None = None,
        clamp_to_bound: bool = False
    ) -> list[TemplateResult]:
        """ Instantiates all enabled templates between start and end.

        Each template is planned and applied on its own. A template with
        conflicts or invalid dates (e.g. beyond the bound) is not applied at
        all, the others are not affected by it.

        """
        query = self.session.query(RecurringTemplate)
        query = query.filter(RecurringTemplate.enabled.is_(True))
        query = query.order_by(RecurringTemplate.start_date)

        results = []

        for template in query.all():
            try:
                plan = self.plan_template_instantiation(
                    template, start, end, max_date_bound, clamp_to_bound
                )
            except errors.ValidationError as e:
                log.warning(f'Template {template.id} not applied: {e}')
                results.append(TemplateResult(template, None, None, str(e)))
                continue

            if not plan.ok:
                reason = f'{len(plan.conflicts)} conflict(s)'
                log.warning(
                    f'Template {template.id} has {reason}, not applying it'
                )
                results.append(TemplateResult(template, plan, None, reason))
                continue

            results.append(TemplateResult(template, plan, self.execute(plan)))

        return results

    # snapshots

    def build_monthly_snapshot(
        self,
        month_id: str | None = None
    ) -> SnapshotResult:
        """ Builds the snapshot of the given month (YYYY-MM), by default the
        current month.

        """
        if month_id is None:
            month_id = month_id_of(self.clock(), self.timezone)

        return self.snapshots.build(month_id)
