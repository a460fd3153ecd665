from __future__ import annotations

import os
import pytest
import pytz

from datetime import datetime
from uuid import uuid4 as new_uuid

from classbook import new_engine, registry


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Generator
    from classbook.db.engine import Engine


class FixedClock:
    """ A clock service which returns the time it was last set to. """

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, *args: int, timezone: str = 'Asia/Tokyo') -> None:
        self.now = pytz.timezone(timezone).localize(datetime(*args))


def new_test_engine(dsn: str, context_name: str | None = None) -> Engine:
    context = registry.register_context(
        context_name or new_uuid().hex,
        replace=True
    )
    context.set_setting('dsn', dsn)

    return new_engine(context)


def stop_engine(engine: Engine) -> None:
    engine.rollback()
    engine.close()
    engine.session_provider.stop_service()


@pytest.fixture
def engine(dsn: str) -> Generator[Engine, None, None]:

    # clear the events before each test
    from classbook.modules import events
    for event in (e for e in dir(events) if e.startswith('on_')):
        del getattr(events, event)[:]

    engine = new_test_engine(dsn)

    yield engine

    engine.rollback()
    engine.extinguish_managed_records()
    engine.commit()
    stop_engine(engine)


@pytest.fixture
def clock(engine: Engine) -> FixedClock:
    clock = FixedClock(datetime(2025, 8, 27, 1, 0, tzinfo=pytz.UTC))
    engine.context.set_service('clock', lambda context: clock)

    return clock


@pytest.fixture(scope='session')
def dsn(
    tmp_path_factory: pytest.TempPathFactory
) -> Generator[str, None, None]:

    dsn = os.environ.get('CLASSBOOK_TEST_DSN')

    if not dsn:
        path = tmp_path_factory.mktemp('classbook') / 'classbook.db'
        dsn = f'sqlite:///{path}'

    engine = new_test_engine(dsn)
    engine.setup_database()
    engine.commit()

    yield dsn

    stop_engine(engine)
