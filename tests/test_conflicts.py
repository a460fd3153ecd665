from __future__ import annotations

from datetime import date
from uuid import uuid4 as new_uuid

from classbook.db.conflicts import ConflictDetector
from classbook.modules.periods import Period


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from classbook.db.engine import Engine


def book(engine: Engine, room: str, day: str, periods: str) -> None:
    report = engine.execute(
        engine.plan_booking(room, day, periods, new_uuid())
    )
    assert report.ok


def test_range_is_checked_period_by_period(engine: Engine) -> None:
    book(engine, 'room-1', '2025-08-27', '1')
    book(engine, 'room-1', '2025-08-27', '3')

    result = engine.check_conflict('room-1', '2025-08-27', '1-3')

    assert result.has_conflict
    assert result.conflicting_slots == [
        'room-1_2025-08-27_1',
        'room-1_2025-08-27_3'
    ]

    result = engine.check_conflict('room-1', '2025-08-27', '2')
    assert not result.has_conflict
    assert result.conflicting_slots == []


def test_ranges_follow_the_catalog(engine: Engine) -> None:
    book(engine, 'room-1', '2025-08-27', 'lunch')

    # lunch lies between the 4th and the 5th period
    assert engine.check_conflict('room-1', '2025-08-27', '4-5').has_conflict
    result = engine.check_conflict('room-1', '2025-08-27', '4,5')
    assert not result.has_conflict


def test_booking_is_reported_after_apply(engine: Engine) -> None:
    reservation_id = new_uuid()
    plan = engine.plan_booking('room-1', '2025-08-27', '2', reservation_id)

    assert not engine.check_conflict('room-1', '2025-08-27', '2').has_conflict

    engine.execute(plan)

    result = engine.check_conflict('room-1', '2025-08-27', '2')
    assert result.has_conflict
    assert result.conflicting_slots == ['room-1_2025-08-27_2']
    assert result.slots[0].reservation_id == reservation_id

    # other rooms and days are not affected
    assert not engine.check_conflict('room-2', '2025-08-27', '2').has_conflict
    assert not engine.check_conflict('room-1', '2025-08-28', '2').has_conflict


def test_template_locks_are_conflicts(engine: Engine) -> None:
    template = engine.add_template(
        'Staff meeting', 'room-1', '5', start_date='2025-08-25'
    )
    engine.commit()

    engine.execute(engine.plan_template_instantiation(
        template, '2025-08-27', '2025-08-27'
    ))

    result = engine.check_conflict('room-1', '2025-08-27', '4-6')
    assert result.conflicting_slots == ['room-1_2025-08-27_5']
    assert result.slots[0].template_id == template.id


def test_nothing_to_check(engine: Engine) -> None:
    book(engine, 'room-1', '2025-08-27', '1')

    detector = ConflictDetector(engine.context)

    for result in (
        detector.check_conflict(None, '2025-08-27', '1'),
        detector.check_conflict('', '2025-08-27', '1'),
        detector.check_conflict('room-1', None, '1'),
        detector.check_conflict('room-1', '2025-08-27', ''),
        detector.check_conflict('room-1', '2025-08-27', []),
        detector.check_rooms([], '2025-08-27', '1'),
        detector.check_dates('room-1', [], '1'),
        detector.check_cells([]),
    ):
        assert not result.has_conflict
        assert result.conflicting_slots == []


def test_check_rooms_and_dates(engine: Engine) -> None:
    book(engine, 'room-1', '2025-08-27', '1')
    book(engine, 'room-2', '2025-08-28', '1')

    detector = engine.detector

    result = detector.check_rooms(['room-1', 'room-2'], '2025-08-27', '1-2')
    assert result.conflicting_slots == ['room-1_2025-08-27_1']

    result = detector.check_dates(
        'room-2', [date(2025, 8, 27), date(2025, 8, 28)], [Period.FIRST]
    )
    assert result.conflicting_slots == ['room-2_2025-08-28_1']


def test_conflict_details(engine: Engine) -> None:
    reservation_id = new_uuid()
    engine.execute(
        engine.plan_booking('room-1', '2025-08-27', 'lunch', reservation_id)
    )

    details = engine.check_conflict('room-1', '2025-08-27', '4-5').details()

    assert len(details) == 1
    assert 'room-1_2025-08-27_lunch' in details[0]
    assert '2025-08-27' in details[0]
    assert '昼休み' in details[0]
    assert 'reservation' in details[0]
    assert reservation_id.hex in details[0]
