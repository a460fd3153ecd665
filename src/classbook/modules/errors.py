from __future__ import annotations


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date, datetime

    from classbook.db.executor import ExecutionReport
    from classbook.db.models import Slot
    from classbook.db.planner import Conflict


class ClassbookError(Exception):
    pass


class ContextAlreadyExists(ClassbookError):
    pass


class UnknownContext(ClassbookError):
    pass


class ContextIsLocked(ClassbookError):
    pass


class UnknownService(ClassbookError):
    pass


class NotTimezoneAware(ClassbookError):
    pass


class ValidationError(ClassbookError):
    """ Malformed input, like an empty room id or a date that is not in
    the YYYY-MM-DD form. This is a bug on the caller's side and retrying
    the same call won't help.

    """


class UnknownPeriod(ValidationError):
    pass


class DateBeyondBound(ValidationError):

    __slots__ = ('date', 'bound')

    def __init__(self, date: date, bound: date):
        super().__init__(f'{date.isoformat()} is after {bound.isoformat()}')
        self.date = date
        self.bound = bound


class UnknownReservation(ClassbookError):
    pass


class UnknownTemplate(ClassbookError):
    pass


class UnknownBlockedPeriod(ClassbookError):
    pass


class AlreadyOccupied(ClassbookError):
    """ Raised when a slot is written to a key which is held by a different
    occupant. The existing slot is None if the competing write was
    committed but is not visible to the current transaction.

    """

    __slots__ = ('key', 'existing')

    def __init__(self, key: str, existing: Slot | None):
        super().__init__(key)
        self.key = key
        self.existing = existing


class UnresolvedConflicts(ClassbookError):

    __slots__ = ('conflicts', )

    def __init__(self, conflicts: Sequence[Conflict]):
        super().__init__(', '.join(str(c) for c in conflicts))
        self.conflicts = conflicts


class TransientStoreError(ClassbookError):
    """ Network hiccups, timeouts and serialization failures. The failed
    unit of work may be retried as a whole.

    """


class SnapshotAlreadyBuiltToday(ClassbookError):
    """ Not really an error, signals that the monthly snapshot was already
    built on the current day and nothing was done.

    """

    __slots__ = ('month_id', 'last_built_at')

    def __init__(self, month_id: str, last_built_at: datetime):
        super().__init__(month_id)
        self.month_id = month_id
        self.last_built_at = last_built_at


class PartialBatchFailure(ClassbookError):

    __slots__ = ('report', )

    def __init__(self, report: ExecutionReport):
        super().__init__(
            f'{report.total_failed} of {report.total} entries failed'
        )
        self.report = report
