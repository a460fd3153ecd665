""" Monthly snapshots are json exports of the reservations of a month,
written to a blob storage so that clients can load a whole month without
querying the database.

Building a snapshot is guarded, each month is built at most once a day.

"""
from __future__ import annotations

import logging

from sqlalchemy import exc
from sqlalchemy import update
from sqlalchemy.orm import undefer
from sqlalchemy.sql import or_

from classbook.context.core import ContextServicesMixin
from classbook.db.models import Reservation, SnapshotBlob, SnapshotMeta
from classbook.db.store import store_errors
from classbook.modules import errors
from classbook.modules import events
from classbook.modules.utils import day_start, month_range


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from typing_extensions import TypeAlias

    from classbook.context.core import Context

    Status: TypeAlias = Literal['built', 'already-built', 'failed', 'unknown']


log = logging.getLogger('classbook')


class BlobStorage:
    """ Stores blobs by path. Replace the blob_storage service of the
    context to write the snapshots somewhere else, like a bucket.

    """

    def save(
        self,
        path: str,
        body: str,
        content_type: str,
        cache_control: str | None = None
    ) -> None:
        raise NotImplementedError

    def load(self, path: str) -> str | None:
        raise NotImplementedError


class DatabaseBlobStorage(BlobStorage, ContextServicesMixin):
    """ Keeps the blobs in the snapshot_blobs table of the database. """

    def __init__(self, context: Context):
        self.context = context

    def save(
        self,
        path: str,
        body: str,
        content_type: str,
        cache_control: str | None = None
    ) -> None:
        with store_errors():
            blob = self.session.get(SnapshotBlob, path)

            if blob is None:
                self.session.add(
                    SnapshotBlob(path, body, content_type, cache_control)
                )
            else:
                blob.body = body
                blob.content_type = content_type
                blob.cache_control = cache_control

            self.session.commit()

    def load(self, path: str) -> str | None:
        with store_errors():
            blob = self.session.get(SnapshotBlob, path)

        return blob.body if blob is not None else None


class SnapshotResult:
    """ The outcome of a snapshot build. The status is one of:

    :built:
        The snapshot was written.

    :already-built:
        The snapshot was built earlier on the same day, nothing was done.

    :unknown:
        The claim of the build timed out. It may or may not have landed.
        Nothing records this outcome, if the claim did not land, the next
        trigger on the same day builds the snapshot.

    :failed:
        The build was claimed but the export failed. The claim is kept,
        the next build happens on the following day.

    """

    def __init__(
        self,
        month_id: str,
        status: Status,
        count: int = 0,
        path: str | None = None,
        reason: Exception | None = None
    ):
        self.month_id = month_id
        self.status = status
        self.count = count
        self.path = path
        self.reason = reason

    def __repr__(self) -> str:
        return f'<SnapshotResult {self.month_id} {self.status}>'

    @property
    def built(self) -> bool:
        return self.status == 'built'

    @property
    def skipped(self) -> bool:
        return self.status == 'already-built'


class SnapshotBuilder(ContextServicesMixin):
    """ Builds the monthly snapshots.

    Before anything is exported, the build is claimed by setting the
    last_built_at of the month's :class:`~classbook.db.models.SnapshotMeta`
    to now. This happens in a single transaction which fails if the month
    was already built today, so concurrent builders will only ever write
    the snapshot once a day.

    The claim is not undone if the export fails. The month can't be built
    again before the next day.

    """

    def __init__(self, context: Context):
        self.context = context

    def path_for(self, month_id: str) -> str:
        path = self.context.get_setting('snapshot_path')
        return path.format(month_id=month_id)  # type: ignore[no-any-return]

    def build(self, month_id: str) -> SnapshotResult:
        """ Builds the snapshot of the given month (YYYY-MM) at most once a
        day. The claim is committed before the export.

        An uncertain claim (see :class:`SnapshotResult`) is logged and not
        retried by this call, a later call on the same day may build again.

        """
        # raises a validation error for malformed month ids
        month_range(month_id, self.timezone)

        now = self.clock()
        today = day_start(now, self.timezone)

        try:
            self.claim(month_id, now, today)
        except errors.SnapshotAlreadyBuiltToday as e:
            log.info(f'Snapshot of {month_id} was already built today')
            return SnapshotResult(month_id, 'already-built', reason=e)
        except errors.TransientStoreError as e:
            self.session.rollback()
            log.error(
                f'The build of the snapshot of {month_id} may or may not '
                f'have been claimed, not retrying: {e}'
            )
            return SnapshotResult(month_id, 'unknown', reason=e)

        path = self.path_for(month_id)

        try:
            documents = self.documents(month_id)
            body = self.json_dumps({'monthId': month_id, 'docs': documents})

            self.blob_storage.save(
                path,
                body,
                self.context.get_setting('snapshot_content_type'),
                self.context.get_setting('snapshot_cache_control')
            )
        except Exception as e:
            self.session.rollback()
            log.exception(f'Building the snapshot of {month_id} failed')
            return SnapshotResult(month_id, 'failed', path=path, reason=e)

        result = SnapshotResult(month_id, 'built', len(documents), path)
        log.info(f'Built snapshot of {month_id} with {len(documents)} docs')

        events.on_snapshot_built(self.context, result)

        return result

    def claim(self, month_id: str, now: datetime, today: datetime) -> None:
        """ Sets the last build of the month to now, unless it is already
        on or after the start of today. Commits on success.

        """
        with store_errors():
            query = self.session.query(SnapshotMeta)
            query = query.filter(SnapshotMeta.month_id == month_id)
            meta = query.with_for_update().one_or_none()

            if meta is None:
                self.session.add(SnapshotMeta(month_id, now))

                try:
                    self.session.commit()
                except exc.IntegrityError as e:
                    # another builder created the record first
                    self.session.rollback()
                    raise errors.SnapshotAlreadyBuiltToday(
                        month_id, self.last_built_at(month_id) or now
                    ) from e

                return

            last_built_at = meta.last_built_at

            if last_built_at is not None and last_built_at >= today:
                self.session.rollback()
                raise errors.SnapshotAlreadyBuiltToday(month_id, last_built_at)

            result: Any = self.session.execute(
                update(SnapshotMeta)
                .where(SnapshotMeta.month_id == month_id)
                .where(or_(
                    SnapshotMeta.last_built_at.is_(None),
                    SnapshotMeta.last_built_at < today
                ))
                .values(last_built_at=now)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                self.session.rollback()
                raise errors.SnapshotAlreadyBuiltToday(
                    month_id, self.last_built_at(month_id) or now
                )

            self.session.commit()

    def last_built_at(self, month_id: str) -> datetime | None:
        meta = self.session.get(SnapshotMeta, month_id)
        return meta.last_built_at if meta is not None else None

    def documents(self, month_id: str) -> list[dict[str, Any]]:
        """ Returns the reservations starting in the given month, ordered
        by start.

        """
        start, end = month_range(month_id, self.timezone)

        query = self.session.query(Reservation)
        query = query.options(
            undefer(Reservation.created),
            undefer(Reservation.modified)
        )
        query = query.filter(Reservation.start >= start)
        query = query.filter(Reservation.start <= end)
        query = query.order_by(Reservation.start)

        return [reservation.as_document() for reservation in query]
