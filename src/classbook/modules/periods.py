""" The period catalog. Periods are the discrete units a day is split into
(numbered class periods, lunch and after-hours). The engine treats them as an
opaque, ordered enumeration. The wall-clock times are only used to derive
the start and end of reservations.

Period specs passed by callers may be a single code (``'3'``), a comma list
(``'1,2,lunch'``) or a hyphen range (``'4-5'``, resolved in catalog order, so
``'4-5'`` includes ``lunch``).

"""
from __future__ import annotations

import enum
import sedate

from datetime import date, datetime, time

from classbook.modules import errors


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable

    from sedate.types import TzInfoOrName


class PeriodInfo(NamedTuple):
    label: str
    start: time
    end: time


class Period(enum.Enum):
    ZERO = '0'
    FIRST = '1'
    SECOND = '2'
    THIRD = '3'
    FOURTH = '4'
    LUNCH = 'lunch'
    FIFTH = '5'
    SIXTH = '6'
    SEVENTH = '7'
    AFTER = 'after'

    @property
    def code(self) -> str:
        return self.value

    @property
    def order(self) -> int:
        return PERIOD_ORDER.index(self)

    @property
    def info(self) -> PeriodInfo:
        return CATALOG[self]

    @property
    def label(self) -> str:
        return CATALOG[self].label

    def times(self, day: date) -> tuple[time, time]:
        """ Returns the wall-clock start and end on the given day. After-hours
        start earlier on tuesdays, thursdays and fridays.

        """
        info = self.info

        if self is Period.AFTER and day.weekday() in SHORT_DAYS:
            return time(15, 25), info.end

        return info.start, info.end

    def timespan(
        self,
        day: date,
        timezone: TzInfoOrName
    ) -> tuple[datetime, datetime]:
        start, end = self.times(day)
        return (
            sedate.replace_timezone(datetime.combine(day, start), timezone),
            sedate.replace_timezone(datetime.combine(day, end), timezone)
        )


PERIOD_ORDER = tuple(Period)

# tuesday, thursday, friday
SHORT_DAYS = frozenset((1, 3, 4))

CATALOG: dict[Period, PeriodInfo] = {
    Period.ZERO: PeriodInfo('0限', time(7, 30), time(8, 30)),
    Period.FIRST: PeriodInfo('1限', time(8, 50), time(9, 40)),
    Period.SECOND: PeriodInfo('2限', time(9, 50), time(10, 40)),
    Period.THIRD: PeriodInfo('3限', time(10, 50), time(11, 40)),
    Period.FOURTH: PeriodInfo('4限', time(11, 50), time(12, 40)),
    Period.LUNCH: PeriodInfo('昼休み', time(12, 40), time(13, 25)),
    Period.FIFTH: PeriodInfo('5限', time(13, 25), time(14, 15)),
    Period.SIXTH: PeriodInfo('6限', time(14, 25), time(15, 15)),
    Period.SEVENTH: PeriodInfo('7限', time(15, 25), time(16, 15)),
    Period.AFTER: PeriodInfo('放課後', time(16, 25), time(18, 0)),
}

assert set(CATALOG) == set(Period)


def parse_period(value: Period | str | int) -> Period:
    """ Returns the period for the given code. Unknown codes are rejected,
    there's no guessing.

    """
    if isinstance(value, Period):
        return value

    if isinstance(value, bool):
        raise errors.UnknownPeriod(repr(value))

    code = str(value).strip()

    try:
        return Period(code)
    except ValueError:
        raise errors.UnknownPeriod(repr(value)) from None


def expand_periods(
    spec: Period | str | int | Iterable[Period | str | int] | None
) -> list[Period]:
    """ Expands a period spec into the individual periods it denotes, in the
    order given and without duplicates.

    >>> expand_periods('1-3')
    [<Period.FIRST: '1'>, <Period.SECOND: '2'>, <Period.THIRD: '3'>]

    """
    if spec is None:
        return []

    if isinstance(spec, (Period, int)):
        return [parse_period(spec)]

    parts: Iterable[Period | str | int]
    if isinstance(spec, str):
        parts = [p for p in spec.split(',') if p.strip()]
    else:
        parts = spec

    result: list[Period] = []

    for part in parts:
        if isinstance(part, str) and '-' in part:
            first, sep, last = part.partition('-')
            start, end = parse_period(first), parse_period(last)

            if start.order > end.order:
                raise errors.ValidationError(f'descending range {part!r}')

            expanded = PERIOD_ORDER[start.order:end.order + 1]
        else:
            expanded = (parse_period(part), )

        for period in expanded:
            if period not in result:
                result.append(period)

    return result


def canonical(periods: Iterable[Period]) -> str:
    """ Returns the comma list stored on records, in catalog order. """
    ordered = sorted(set(periods), key=PERIOD_ORDER.index)
    return ','.join(p.code for p in ordered)


def describe(periods: Iterable[Period]) -> str:
    """ Returns a label for display, e.g. '1限〜3限'. """
    ordered = sorted(set(periods), key=PERIOD_ORDER.index)

    if not ordered:
        return ''

    if len(ordered) == 1:
        return ordered[0].label

    return f'{ordered[0].label}〜{ordered[-1].label}'
