from __future__ import annotations

import pytest

from datetime import date
from uuid import uuid4 as new_uuid

from classbook.db.models import Slot
from classbook.db.models.slot import RESERVATION, TEMPLATE_LOCK
from classbook.db.planner import (
    BookSingle,
    CancelReservation,
    InstantiateTemplate,
    PurgeByFilter,
    PurgeOrphans,
    RetireTemplate,
    WritePlan,
)
from classbook.modules import errors
from classbook.modules.periods import Period


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from classbook.db.engine import Engine


def book(engine: Engine, *args: Any) -> None:
    assert engine.execute(engine.plan_booking(*args)).ok


def test_plan_booking(engine: Engine) -> None:
    reservation_id = new_uuid()

    plan = engine.plan(BookSingle(
        'room-1', '2025-08-27', '1-2', reservation_id, 'teacher@example.org'
    ))

    assert plan.ok
    assert plan.conflicts == []
    assert plan.keys == ['room-1_2025-08-27_1', 'room-1_2025-08-27_2']
    assert len(plan.creates) == 2
    assert plan.deletes == []

    payload = plan.entries[0].payload
    assert payload['kind'] == RESERVATION
    assert payload['room_id'] == 'room-1'
    assert payload['date'] == date(2025, 8, 27)
    assert payload['period'] == '1'
    assert payload['reservation_id'] == str(reservation_id)
    assert payload['created_by'] == 'teacher@example.org'

    # planning doesn't write anything
    assert engine.session.query(Slot).count() == 0


def test_conflicts_abort_planning(engine: Engine) -> None:
    book(engine, 'room-1', '2025-08-27', 3, new_uuid())

    plan = engine.plan_booking('room-1', '2025-08-27', '1-4', new_uuid())

    assert not plan.ok
    assert plan.entries == []
    assert len(plan.conflicts) == 1

    conflict = plan.conflicts[0]
    assert conflict.key == 'room-1_2025-08-27_3'
    assert conflict.date == date(2025, 8, 27)
    assert conflict.period is Period.THIRD
    assert conflict.occupant[0] == RESERVATION
    assert 'room-1_2025-08-27_3' in str(conflict)

    with pytest.raises(errors.UnresolvedConflicts) as e:
        engine.execute(plan)

    assert e.value.conflicts == plan.conflicts
    assert engine.session.query(Slot).count() == 1


def test_same_occupant_is_no_conflict(engine: Engine) -> None:
    reservation_id = new_uuid()
    book(engine, 'room-1', '2025-08-27', '1', reservation_id)

    plan = engine.plan_booking('room-1', '2025-08-27', '1-2', reservation_id)

    assert plan.ok
    assert plan.keys == ['room-1_2025-08-27_1', 'room-1_2025-08-27_2']


def test_plan_booking_invalid(engine: Engine) -> None:
    with pytest.raises(errors.ValidationError):
        engine.plan_booking('room-1', '2025-08-27', '', new_uuid())

    with pytest.raises(errors.ValidationError):
        engine.plan_booking('', '2025-08-27', '1', new_uuid())

    with pytest.raises(errors.ValidationError):
        engine.plan_booking('room-1', '2025/08/27', '1', new_uuid())

    with pytest.raises(errors.ValidationError):
        engine.plan_booking('room-1', '2025-08-27', '1', None)  # type: ignore

    with pytest.raises(errors.ValidationError):
        engine.plan(object())  # type: ignore[arg-type]


def test_plan_template_instantiation(engine: Engine) -> None:
    template_id = new_uuid()

    plan = engine.plan(InstantiateTemplate(
        template_id, 'room-1', '1,2', '2025-08-01', '2025-08-03'
    ))

    assert plan.ok
    assert plan.keys == [
        'room-1_2025-08-01_1', 'room-1_2025-08-01_2',
        'room-1_2025-08-02_1', 'room-1_2025-08-02_2',
        'room-1_2025-08-03_1', 'room-1_2025-08-03_2',
    ]
    assert {e.payload['kind'] for e in plan} == {TEMPLATE_LOCK}
    assert {e.payload['template_id'] for e in plan} == {str(template_id)}


def test_plan_template_instantiation_by_weekday(engine: Engine) -> None:
    plan = engine.plan(InstantiateTemplate(
        new_uuid(), 'room-1', 'after', '2025-08-01', '2025-08-31', weekday=2
    ))

    # the wednesdays of august 2025
    assert [e.payload['date'].day for e in plan] == [6, 13, 20, 27]


def test_plan_template_instantiation_bound(engine: Engine) -> None:
    operation = InstantiateTemplate(
        new_uuid(), 'room-1', '1', '2025-08-30', '2025-09-02',
        max_date_bound='2025-08-31'
    )

    with pytest.raises(errors.DateBeyondBound) as e:
        engine.plan(operation)

    assert e.value.date == date(2025, 9, 1)
    assert e.value.bound == date(2025, 8, 31)

    plan = engine.plan(operation._replace(clamp_to_bound=True))

    assert plan.ok
    assert plan.keys == ['room-1_2025-08-30_1', 'room-1_2025-08-31_1']
    assert plan.clamped == [date(2025, 9, 1), date(2025, 9, 2)]

    # within the bound, there's nothing to clamp
    plan = engine.plan(operation._replace(end='2025-08-31'))
    assert plan.clamped == []


def test_plan_template_instantiation_conflicts(engine: Engine) -> None:
    book(engine, 'room-1', '2025-08-02', '2', new_uuid())

    plan = engine.plan(InstantiateTemplate(
        new_uuid(), 'room-1', '1-2', '2025-08-01', '2025-08-03'
    ))

    assert not plan.ok
    assert plan.entries == []
    assert [c.key for c in plan.conflicts] == ['room-1_2025-08-02_2']


def test_plan_template_instantiation_invalid(engine: Engine) -> None:
    with pytest.raises(errors.ValidationError):
        engine.plan(InstantiateTemplate(
            new_uuid(), 'room-1', '1', '2025-08-03', '2025-08-01'
        ))

    with pytest.raises(errors.ValidationError):
        engine.plan(InstantiateTemplate(
            new_uuid(), 'room-1', None, '2025-08-01', '2025-08-03'
        ))


def test_plan_cancellation(engine: Engine) -> None:
    first, second = new_uuid(), new_uuid()

    book(engine, 'room-1', '2025-08-27', '1-2', first)
    book(engine, 'room-1', '2025-08-27', '3', second)
    book(engine, 'room-1', '2025-08-28', '1', first)

    plan = engine.plan(CancelReservation(first))

    assert plan.ok
    assert plan.creates == []
    assert plan.keys == [
        'room-1_2025-08-27_1',
        'room-1_2025-08-27_2',
        'room-1_2025-08-28_1',
    ]

    # a reservation without slots results in an empty plan
    assert len(engine.plan(CancelReservation(new_uuid()))) == 0


def test_plan_template_retirement(engine: Engine) -> None:
    template_id = new_uuid()

    engine.execute(engine.plan(InstantiateTemplate(
        template_id, 'room-1', '0', '2025-08-01', '2025-08-05'
    )))

    assert len(engine.plan(RetireTemplate(template_id))) == 5

    plan = engine.plan(RetireTemplate(template_id, since='2025-08-04'))
    assert plan.keys == ['room-1_2025-08-04_0', 'room-1_2025-08-05_0']


def test_plan_purge(engine: Engine) -> None:
    template_id = new_uuid()

    engine.execute(engine.plan(InstantiateTemplate(
        template_id, 'room-5', '1-3', '2025-08-26', '2025-08-28'
    )))
    book(engine, 'room-5', '2025-08-29', '1', new_uuid())
    book(engine, 'room-6', '2025-08-27', '1', new_uuid())

    plan = engine.plan(PurgeByFilter(
        room='room-5', start='2025-08-27', end='2025-08-27'
    ))
    assert plan.keys == [
        'room-5_2025-08-27_1', 'room-5_2025-08-27_2', 'room-5_2025-08-27_3'
    ]

    plan = engine.plan(PurgeByFilter(room='room-5', kind=TEMPLATE_LOCK))
    assert len(plan) == 9

    plan = engine.plan(PurgeByFilter(kind=RESERVATION))
    assert plan.keys == ['room-6_2025-08-27_1', 'room-5_2025-08-29_1']

    plan = engine.plan_purge(
        room='room-5',
        predicate=lambda slot: slot.period == '2'
    )
    assert plan.keys == [
        'room-5_2025-08-26_2', 'room-5_2025-08-27_2', 'room-5_2025-08-28_2'
    ]

    assert len(engine.plan_purge(room='room-7')) == 0


def test_plan_orphan_cleanup(engine: Engine) -> None:
    result = engine.reserve('room-1', '2025-08-27', '1', 'Kept')
    assert result.ok

    # slots of a reservation which doesn't exist
    book(engine, 'room-1', '2025-08-27', '2', new_uuid())

    # template locks are never orphans
    engine.execute(engine.plan(InstantiateTemplate(
        new_uuid(), 'room-1', '3', '2025-08-27', '2025-08-27'
    )))

    plan = engine.plan(PurgeOrphans())
    assert plan.keys == ['room-1_2025-08-27_2']

    assert len(engine.plan_orphan_cleanup(room='room-2')) == 0
    assert len(engine.plan_orphan_cleanup(start='2025-08-28')) == 0


def test_write_plan_repr() -> None:
    plan = WritePlan(CancelReservation(new_uuid()))
    assert repr(plan) == (
        '<WritePlan CancelReservation entries=0 conflicts=0>'
    )
