from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import scoped_session, sessionmaker

from classbook.context.core import StoppableService


from typing import Any


SERIALIZABLE = 'SERIALIZABLE'


class SessionProvider(StoppableService):
    """Global session utility. It provides a SERIALIZABLE session to
    classbook. If you want to override this provider, be sure to set the
    isolation_level to SERIALIZABLE as well.

    Every statement is subject to the given timeout (in seconds), so no call
    to the store blocks indefinitely.

    PostgreSQL is the supported production database. SQLite works as well,
    it serializes all writers on the database file.

    """

    def __init__(
        self,
        dsn: str,
        timeout: float | None = None,
        engine_config: dict[str, Any] | None = None,
        session_config: dict[str, Any] | None = None
    ):
        assert dsn, 'No dsn configured, set the dsn setting on the context'

        self.dsn = dsn
        self.backend = make_url(dsn).get_backend_name()

        if self.backend == 'postgresql':
            self.assert_valid_postgres_version(dsn)

        self.engine = create_engine(
            dsn, poolclass=QueuePool, pool_size=5, max_overflow=5,
            isolation_level=SERIALIZABLE,
            connect_args=self.connect_args(timeout),
            **(engine_config or {})
        )

        self.session = scoped_session(sessionmaker(
            bind=self.engine, **(session_config or {})
        ))

    def connect_args(self, timeout: float | None) -> dict[str, Any]:
        if not timeout:
            return {}

        if self.backend == 'postgresql':
            return {
                'connect_timeout': max(1, int(timeout)),
                'options': f'-c statement_timeout={int(timeout * 1000)}'
            }

        if self.backend == 'sqlite':
            # the time to wait for the lock of another writer
            return {'timeout': timeout}

        return {}

    def stop_service(self) -> None:
        """ Called by the classbook context when the session provider is being
        discarded (only in testing).

        This makes sure that replacing the session provider on the context
        doesn't leave behind any idle connections.

        """

        self.session().close()
        self.session.remove()
        self.engine.dispose()

    def get_postgres_version(self, dsn: str) -> tuple[str, int]:
        """ Returns the postgres version as a tuple (string, integer).

        Uses it's own connection to be independent from any session.

        """
        query = text("""
            SELECT current_setting('server_version'),
                   current_setting('server_version_num')
        """)

        engine = create_engine(dsn)

        try:
            with engine.connect() as connection:
                result = connection.execute(query).first()
            assert result is not None
            version, number = result
            return version, int(number)
        finally:
            engine.dispose()

    def assert_valid_postgres_version(self, dsn: str) -> str:
        v, n = self.get_postgres_version(dsn)

        # serializable snapshot isolation
        if n < 90100:
            raise RuntimeError(f'PostgreSQL 9.1+ is required, got {v}')

        return dsn
