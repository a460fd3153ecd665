from __future__ import annotations

import mock
import pytest

from uuid import uuid4 as new_uuid

from classbook.db.models import Slot
from classbook.db.planner import InstantiateTemplate, WritePlan
from classbook.modules import errors
from classbook.modules import events


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from classbook.db.engine import Engine


def plan_1200_slots(engine: Engine) -> WritePlan:
    # ten periods a day, for 120 days
    plan = engine.plan(InstantiateTemplate(
        new_uuid(), 'room-1', '0-after', '2025-04-01', '2025-07-29'
    ))
    assert len(plan) == 1200

    return plan


def fail_keys(engine: Engine, keys: set[str], times: int | None = None) -> Any:
    """ Lets the store fail with a transient error when putting any of the
    given keys (for the given number of times).

    """
    store = engine.executor.store
    real_put = store.put
    failures = []

    def put(slot: Slot) -> str:
        if slot.key in keys and (times is None or len(failures) < times):
            failures.append(slot.key)
            raise errors.TransientStoreError('timeout')
        return real_put(slot)

    return mock.patch.object(store, 'put', side_effect=put)


def test_chunks(engine: Engine) -> None:
    plan = plan_1200_slots(engine)
    report = engine.execute(plan)

    assert [len(chunk) for chunk in report.chunks] == [500, 500, 200]
    assert [chunk.index for chunk in report.chunks] == [0, 1, 2]
    assert all(chunk.committed for chunk in report.chunks)
    assert all(chunk.attempts == 1 for chunk in report.chunks)

    assert report.ok
    assert report.total == 1200
    assert report.total_applied == 1200
    assert report.total_failed == 0
    assert report.failed_entries == []
    assert report.created == 1200

    engine.rollback()
    assert engine.session.query(Slot).count() == 1200


def test_failed_chunk_does_not_stop_execution(engine: Engine) -> None:
    plan = plan_1200_slots(engine)
    second_chunk = set(plan.keys[500:1000])

    failed_chunks = mock.Mock()
    events.on_chunk_failed.append(failed_chunks)

    with fail_keys(engine, second_chunk):
        report = engine.execute(plan)

    first, second, third = report.chunks

    assert first.committed
    assert second.failed
    assert third.committed

    # the chunk is given up after the retries
    assert second.attempts == 1 + engine.context.get_setting('chunk_retries')
    assert isinstance(second.reason, errors.TransientStoreError)

    assert not report.ok
    assert report.total_applied == 700
    assert report.total_failed == 500
    assert report.failed_entries == plan.entries[500:1000]

    failed_chunks.assert_called_once_with(engine.context, second)

    # the committed chunks stay committed
    engine.rollback()
    stored = {key for key, in engine.session.query(Slot.key)}
    assert len(stored) == 700
    assert not stored & second_chunk

    with pytest.raises(errors.PartialBatchFailure) as e:
        report.raise_for_failures()

    assert e.value.report is report
    assert '500 of 1200' in str(e.value)

    # the failed entries may be resubmitted on their own
    retry = WritePlan(plan.operation)
    retry.entries = report.failed_entries

    assert engine.execute(retry).ok
    assert engine.session.query(Slot).count() == 1200


def test_transient_errors_are_retried(engine: Engine) -> None:
    plan = engine.plan(InstantiateTemplate(
        new_uuid(), 'room-1', '1-2', '2025-08-01', '2025-08-03'
    ))

    with fail_keys(engine, {'room-1_2025-08-02_2'}, times=1):
        report = engine.execute(plan)

    assert report.ok
    assert report.chunks[0].attempts == 2
    assert report.chunks[0].reason is None
    assert report.created == 6


def test_small_batches(engine: Engine) -> None:
    engine.context.set_setting('max_batch_size', 4)
    engine.context.set_setting('chunk_retries', 0)

    plan = engine.plan(InstantiateTemplate(
        new_uuid(), 'room-1', '1-2', '2025-08-01', '2025-08-05'
    ))

    with fail_keys(engine, {'room-1_2025-08-03_1'}):
        report = engine.execute(plan)

    assert [len(chunk) for chunk in report.chunks] == [4, 4, 2]
    assert [chunk.committed for chunk in report.chunks] == [
        True, False, True
    ]
    assert report.chunks[1].attempts == 1
    assert [e.key for e in report.failed_entries] == [
        'room-1_2025-08-03_1', 'room-1_2025-08-03_2',
        'room-1_2025-08-04_1', 'room-1_2025-08-04_2',
    ]


def test_reapplying_a_plan_changes_nothing(engine: Engine) -> None:
    plan = engine.plan_booking('room-1', '2025-08-27', '1-3', new_uuid())

    first = engine.execute(plan)
    second = engine.execute(plan)

    assert first.created == 3
    assert second.created == 0
    assert second.unchanged == 3
    assert second.ok

    assert engine.session.query(Slot).count() == 3

    reservation_id = plan.entries[0].payload['reservation_id']
    cancel = engine.plan_cancellation(reservation_id)
    assert engine.execute(cancel).deleted == 3
    assert engine.execute(cancel).missing == 3
    assert engine.session.query(Slot).count() == 0


def test_slots_taken_after_planning(engine: Engine) -> None:
    plan = engine.plan_booking('room-1', '2025-08-27', '1-2', new_uuid())

    # someone else is faster
    engine.execute(engine.plan_booking('room-1', '2025-08-27', 2, new_uuid()))

    report = engine.execute(plan)

    assert not report.ok
    assert report.total_failed == 2
    assert report.chunks[0].attempts == 1
    assert isinstance(report.chunks[0].reason, errors.AlreadyOccupied)
    assert report.chunks[0].reason.key == 'room-1_2025-08-27_2'

    # the chunk was rolled back as a whole
    assert not engine.store.exists('room-1_2025-08-27_1')


def test_malformed_entries_fail_their_chunk(engine: Engine) -> None:
    plan = engine.plan_booking('room-1', '2025-08-27', '1-2', new_uuid())

    # the second entry lost its owner
    entry = plan.entries[1]
    plan.entries[1] = entry._replace(
        payload={**entry.payload, 'reservation_id': None}
    )

    report = engine.execute(plan)

    assert not report.ok
    assert report.total_failed == 2
    assert report.chunks[0].attempts == 1
    assert isinstance(report.chunks[0].reason, errors.ValidationError)

    # nothing of the chunk is left for the next commit
    engine.commit()
    assert not engine.store.exists('room-1_2025-08-27_1')
    assert engine.store.query().count() == 0


def test_unexpected_errors_fail_their_chunk(engine: Engine) -> None:
    plan = engine.plan_booking('room-1', '2025-08-27', '1', new_uuid())
    store = engine.executor.store

    with mock.patch.object(store, 'put', side_effect=RuntimeError('boom')):
        report = engine.execute(plan)

    assert not report.ok
    assert report.chunks[0].attempts == 1
    assert str(report.chunks[0].reason) == 'boom'


def test_deletes_skip_slots_with_new_occupants(engine: Engine) -> None:
    first, second = new_uuid(), new_uuid()

    engine.execute(engine.plan_booking('room-1', '2025-08-27', '1-2', first))
    plan = engine.plan_cancellation(first)

    # the slots are cancelled and the first period changes hands before
    # the plan is applied
    assert engine.execute(engine.plan_cancellation(first)).deleted == 2
    engine.execute(engine.plan_booking('room-1', '2025-08-27', '1', second))

    report = engine.execute(plan)

    assert report.ok
    assert report.skipped == 1
    assert report.missing == 1
    assert engine.store.get('room-1_2025-08-27_1').reservation_id == second


def test_plan_applied_event(engine: Engine) -> None:
    applied = mock.Mock()
    events.on_plan_applied.append(applied)

    plan = engine.plan_booking('room-1', '2025-08-27', '1', new_uuid())
    report = engine.execute(plan)

    applied.assert_called_once_with(engine.context, plan, report)
