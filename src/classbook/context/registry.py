from __future__ import annotations

import threading

from contextlib import contextmanager

from classbook.modules import errors
from classbook.context.core import Context


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterator
    from datetime import datetime

    from classbook.db.snapshot import BlobStorage


def create_default_registry() -> Registry:
    """ Creates the default registry for classbook. """

    import json

    from classbook.context.registry import Registry
    from classbook.context.session import SessionProvider
    from classbook.context.settings import set_default_settings
    from classbook.db.snapshot import DatabaseBlobStorage
    import sedate

    registry = Registry()

    def session_provider(context: Context) -> SessionProvider:
        return SessionProvider(
            context.get_setting('dsn'),
            timeout=context.get_setting('store_timeout')
        )

    def blob_storage_factory(context: Context) -> BlobStorage:
        return DatabaseBlobStorage(context)

    def clock_factory(context: Context) -> Callable[[], datetime]:
        return sedate.utcnow

    def json_dumps_factory(context: Context) -> Callable[..., str]:
        return json.dumps

    master = registry.master_context
    assert master is not None
    master.set_service('session_provider', session_provider, cache=True)
    master.set_service('blob_storage', blob_storage_factory)
    master.set_service('clock', clock_factory)
    master.set_service('json_dumps', json_dumps_factory)

    set_default_settings(master)

    master.lock()

    return registry


class Registry:
    """ Holds a number of contexts, managing their creation and defining
    the currently active context.

    A global registry instance is found in classbook::

        from classbook import registry

    Though if global state is something you need to avoid, you can create
    your own version of the registry::

        from classbook.context.registry import create_default_registry
        registry = create_default_registry()

    """

    contexts: dict[str, Context]
    master_context: Context | None = None

    def __init__(self) -> None:
        self.thread_lock = threading.RLock()

        with self.thread_lock:
            self.contexts = {}
            self.local = threading.local()

        self.master_context = self.register_context('master')

    @property
    def current_context(self) -> Context:
        if not hasattr(self.local, 'current_context'):
            self.local.current_context = self.master_context

        return self.local.current_context  # type: ignore[no-any-return]

    def is_existing_context(self, name: str) -> bool:
        return name in self.contexts

    def assert_not_locked(self, name: str) -> None:
        if self.get_context(name).locked:
            raise errors.ContextIsLocked

    def assert_exists(self, name: str) -> None:
        if not self.is_existing_context(name):
            raise errors.UnknownContext

    def assert_does_not_exist(self, name: str) -> None:
        if self.is_existing_context(name):
            raise errors.ContextAlreadyExists

    def register_context(self, name: str, replace: bool = False) -> Context:
        """ Registers a new context with the given name and returns it.

        """
        with self.thread_lock:
            if replace:
                if self.is_existing_context(name):
                    self.assert_not_locked(name)
            else:
                self.assert_does_not_exist(name)

            self.contexts[name] = Context(
                name,
                registry=self,
                parent=self.master_context,
                locked=False
            )

            return self.contexts[name]

    def switch_context(self, name: str) -> None:
        with self.thread_lock:
            self.assert_exists(name)
            self.local.current_context = self.get_context(name)

    @contextmanager
    def context(self, name: str) -> Iterator[Context]:
        previous = self.current_context.name
        self.switch_context(name)
        try:
            yield self.current_context
        finally:
            self.switch_context(previous)

    def get_current_context(self) -> Context:
        return self.current_context

    def get_context(self, name: str, autocreate: bool = False) -> Context:
        if not autocreate:
            self.assert_exists(name)
        elif not self.is_existing_context(name):
            self.register_context(name)

        return self.contexts[name]
