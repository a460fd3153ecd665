from __future__ import annotations

from datetime import datetime

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped

from classbook.db.models.base import ORMBase
from classbook.db.models.timestamp import TimestampMixin


class SnapshotMeta(ORMBase):
    """ One record per month, holding the time of the last build of the
    monthly snapshot. Used to guard against building twice a day.

    """

    __tablename__ = 'snapshot_meta'

    #: YYYY-MM
    month_id: Mapped[str] = mapped_column(primary_key=True)

    last_built_at: Mapped[datetime | None]

    def __init__(
        self,
        month_id: str,
        last_built_at: datetime | None = None
    ) -> None:
        self.month_id = month_id
        self.last_built_at = last_built_at


class SnapshotBlob(TimestampMixin, ORMBase):
    """ A stored snapshot artifact, see
    :class:`classbook.db.snapshot.DatabaseBlobStorage`.

    """

    __tablename__ = 'snapshot_blobs'

    path: Mapped[str] = mapped_column(primary_key=True)

    content_type: Mapped[str]

    cache_control: Mapped[str | None]

    body: Mapped[str] = mapped_column(types.Text())

    def __init__(
        self,
        path: str,
        body: str,
        content_type: str,
        cache_control: str | None = None
    ) -> None:
        self.path = path
        self.body = body
        self.content_type = content_type
        self.cache_control = cache_control
