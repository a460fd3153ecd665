from __future__ import annotations

import time

from threading import Thread

from classbook import registry
from classbook.context.session import SessionProvider
from classbook.db.engine import Engine


class SessionId(Thread):
    def __init__(self, dsn: str) -> None:
        Thread.__init__(self)
        self.session_id: int | None = None
        self.dsn = dsn

    def run(self) -> None:
        context = registry.register_context(str(id(self)), replace=True)
        context.set_setting('dsn', self.dsn)
        engine = Engine(context)
        self.session_id = id(engine.session)

        # keep both threads alive at the same time, objects with
        # non-overlapping lifetimes may have the same id
        time.sleep(0.1)

        engine.session_provider.stop_service()


def test_stop_unused_session(dsn: str) -> None:
    provider = SessionProvider(dsn)
    provider.stop_service()  # should not throw any exceptions


def test_sessionstore(dsn: str) -> None:
    t1 = SessionId(dsn)
    t2 = SessionId(dsn)

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    assert t1.session_id is not None
    assert t2.session_id is not None
    assert t1.session_id != t2.session_id


def test_connect_args() -> None:
    provider = SessionProvider('sqlite://', timeout=5)

    try:
        assert provider.backend == 'sqlite'
        assert provider.connect_args(5) == {'timeout': 5}
        assert provider.connect_args(None) == {}
        assert provider.engine.pool.size() == 5
    finally:
        provider.stop_service()


def test_session_per_context(engine: Engine) -> None:
    # the session provider is cached per context
    assert engine.session_provider is engine.session_provider
    assert engine.session is engine.store.session
    assert engine.session is engine.snapshots.session
