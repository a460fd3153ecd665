from classbook.db.models.base import ORMBase
from classbook.db.models.room import Room
from classbook.db.models.slot import Slot
from classbook.db.models.reservation import Reservation
from classbook.db.models.template import RecurringTemplate
from classbook.db.models.blocked import BlockedPeriod
from classbook.db.models.snapshot import SnapshotMeta, SnapshotBlob


__all__ = (
    'ORMBase',
    'Room',
    'Slot',
    'Reservation',
    'RecurringTemplate',
    'BlockedPeriod',
    'SnapshotMeta',
    'SnapshotBlob',
)
