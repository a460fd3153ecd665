""" The slot store is the only place slots are read and written. It works
on the session of its context and never commits, transactions belong to the
caller (see :class:`classbook.db.executor.BatchExecutor`).

"""
from __future__ import annotations

import logging

from contextlib import contextmanager
from sqlalchemy import exc

from classbook.context.core import ContextServicesMixin
from classbook.db.models import Slot
from classbook.modules import errors
from classbook.modules.utils import chunked, parse_date


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Iterator
    from datetime import date
    from sqlalchemy.orm import Query
    from uuid import UUID

    from classbook.context.core import Context
    from classbook.db.models.slot import SlotKind
    from classbook.modules.utils import DateLike


log = logging.getLogger('classbook')


# the number of keys looked up with a single IN clause
KEY_LOOKUP_SIZE = 200


@contextmanager
def store_errors() -> Iterator[None]:
    """ Translates the driver errors which may go away by trying again into
    :class:`~classbook.modules.errors.TransientStoreError`.

    """
    try:
        yield
    except (exc.OperationalError, exc.TimeoutError) as e:
        raise errors.TransientStoreError(str(e)) from e
    except exc.DBAPIError as e:
        if e.connection_invalidated:
            raise errors.TransientStoreError(str(e)) from e
        raise


class SlotStore(ContextServicesMixin):
    """ Reads and writes slots by their key. """

    def __init__(self, context: Context):
        self.context = context

    def get(self, key: str) -> Slot | None:
        with store_errors():
            return self.session.get(Slot, key)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def get_many(self, keys: Iterable[str]) -> dict[str, Slot]:
        """ Returns the existing slots of the given keys by key. Missing keys
        are not part of the result.

        """
        found: dict[str, Slot] = {}

        with store_errors():
            for chunk in chunked(dict.fromkeys(keys), KEY_LOOKUP_SIZE):
                query = self.session.query(Slot)
                query = query.filter(Slot.key.in_(chunk))

                for slot in query:
                    found[slot.key] = slot

        return found

    def put(self, slot: Slot) -> Literal['created', 'unchanged']:
        """ Creates the given slot unless its key is already taken.

        If the key is held by the same occupant, nothing happens and
        'unchanged' is returned, so applying the same slot twice is
        harmless. If the key is held by anyone else,
        :class:`~classbook.modules.errors.AlreadyOccupied` is raised.

        Two writers racing for the same key are decided by the primary key
        of the slots table, only one of them may win. The loser's
        transaction is rolled back.

        """
        with store_errors():
            existing = self.session.get(Slot, slot.key)

            if existing is not None:
                if existing.same_occupant(slot):
                    return 'unchanged'
                raise errors.AlreadyOccupied(slot.key, existing)

            self.session.add(slot)

            try:
                self.session.flush()
            except exc.IntegrityError as e:
                self.session.rollback()
                winner = self.session.get(Slot, slot.key)

                if winner is not None and not winner.same_occupant(slot):
                    raise errors.AlreadyOccupied(slot.key, winner) from e

                # the competing write is not visible (yet), or it was ours
                raise errors.TransientStoreError(str(e)) from e

        return 'created'

    def delete(
        self,
        key: str,
        expected: Slot | dict[str, Any] | None = None
    ) -> Literal['deleted', 'missing', 'skipped']:
        """ Deletes the slot with the given key.

        Deleting a missing slot is a no-op ('missing'). If an expected
        occupant is given and the slot is held by someone else by now, the
        slot is left alone ('skipped').

        """
        with store_errors():
            slot = self.session.get(Slot, key)

            if slot is None:
                return 'missing'

            if expected is not None and not slot.same_occupant(expected):
                log.warning(
                    f'Slot {key} changed occupant, not deleting it'
                )
                return 'skipped'

            self.session.delete(slot)
            self.session.flush()

        return 'deleted'

    def query(
        self,
        room: str | None = None,
        start: DateLike | None = None,
        end: DateLike | None = None,
        kind: SlotKind | None = None
    ) -> Query[Slot]:
        """ Returns the slots matching all given criteria, ordered by date
        and key. The dates are inclusive.

        """
        query = self.session.query(Slot)

        if room is not None:
            query = query.filter(Slot.room_id == room)

        if start is not None:
            query = query.filter(Slot.date >= parse_date(start))

        if end is not None:
            query = query.filter(Slot.date <= parse_date(end))

        if kind is not None:
            query = query.filter(Slot.kind == kind)

        return query.order_by(Slot.date, Slot.key)

    def by_room_and_kind(
        self,
        room: str,
        kind: SlotKind,
        start: DateLike | None = None,
        end: DateLike | None = None
    ) -> Query[Slot]:
        return self.query(room=room, start=start, end=end, kind=kind)

    def by_date(self, date: DateLike) -> Query[Slot]:
        return self.query(start=date, end=date)

    def by_date_and_kind(self, date: DateLike, kind: SlotKind) -> Query[Slot]:
        return self.query(start=date, end=date, kind=kind)

    def by_reservation(self, reservation_id: UUID | str) -> Query[Slot]:
        query = self.session.query(Slot)
        query = query.filter(Slot.reservation_id == reservation_id)

        return query.order_by(Slot.date, Slot.key)

    def by_template(
        self,
        template_id: UUID | str,
        since: date | None = None
    ) -> Query[Slot]:
        query = self.session.query(Slot)
        query = query.filter(Slot.template_id == template_id)

        if since is not None:
            query = query.filter(Slot.date >= since)

        return query.order_by(Slot.date, Slot.key)
