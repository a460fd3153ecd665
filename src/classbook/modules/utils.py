from __future__ import annotations

import re
import sedate

from datetime import date, datetime, time, timedelta
from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrule, DAILY
from itertools import islice

from classbook.modules import errors


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Iterator
    from sedate.types import TzInfoOrName
    from typing import TypeVar
    from typing_extensions import TypeAlias

    _T = TypeVar('_T')
    DateLike: TypeAlias = 'date | str'


DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
MONTH_RE = re.compile(r'^(\d{4})-(0[1-9]|1[0-2])$')


def parse_date(value: DateLike) -> date:
    """ Takes a date or a string in the canonical YYYY-MM-DD form. Anything
    else raises a :class:`~classbook.modules.errors.ValidationError`.

    """
    if isinstance(value, datetime):
        raise errors.ValidationError(f'expected a civil date, got {value!r}')

    if isinstance(value, date):
        return value

    if not isinstance(value, str) or not DATE_RE.match(value):
        raise errors.ValidationError(f'not a YYYY-MM-DD date: {value!r}')

    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise errors.ValidationError(f'not a valid date: {value!r}') from e


def iterate_dates(
    start: date,
    end: date,
    weekday: int | None = None
) -> Iterator[date]:
    """ Yields the days between start and end (inclusive). If a weekday
    is given (0 = monday), only those days are yielded.

    """
    if end < start:
        return

    rule = rrule(
        DAILY,
        dtstart=datetime.combine(start, time()),
        until=datetime.combine(end, time()),
        byweekday=weekday
    )

    for dt in rule:
        yield dt.date()


def day_start(dt: datetime, timezone: TzInfoOrName) -> datetime:
    """ Returns the start of the civil day the given datetime falls on. """
    return sedate.align_date_to_day(
        sedate.to_timezone(dt, timezone), timezone, 'down')


def month_id_of(dt: datetime, timezone: TzInfoOrName) -> str:
    return sedate.to_timezone(dt, timezone).strftime('%Y-%m')


def month_range(
    month_id: str,
    timezone: TzInfoOrName
) -> tuple[datetime, datetime]:
    """ Returns the first and the last moment of the given month (YYYY-MM)
    in the given timezone.

    """
    match = MONTH_RE.match(month_id or '')
    if not match:
        raise errors.ValidationError(f'not a YYYY-MM month: {month_id!r}')

    first = datetime(int(match.group(1)), int(match.group(2)), 1)
    last = first + relativedelta(months=1) - timedelta(microseconds=1)

    return (
        sedate.replace_timezone(first, timezone),
        sedate.replace_timezone(last, timezone)
    )


def add_months(day: date, months: int) -> date:
    return day + relativedelta(months=months)  # type: ignore[no-any-return]


def chunked(iterable: Iterable[_T], size: int) -> Iterator[list[_T]]:
    """ Splits the iterable into consecutive lists of at most size items. """
    assert size > 0

    iterator = iter(iterable)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk
