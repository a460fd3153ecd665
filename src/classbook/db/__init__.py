from __future__ import annotations

from classbook.db.engine import Engine


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from classbook.context.core import Context


def new_engine(
    context: Context | str | None = None,
    settings: dict[str, Any] | None = None
) -> Engine:
    """ Creates a new engine for the given context.

    :context:
        A :class:`classbook.context.core.Context` or the name of one, which
        is created if it doesn't exist yet. Defaults to the current context
        of the classbook registry.

    :settings:
        Settings applied to the context before the engine is created,
        for example ``{'dsn': 'postgresql://localhost/rooms'}``.

    """
    from classbook import registry

    if context is None:
        context = registry.current_context
    elif isinstance(context, str):
        context = registry.get_context(context, autocreate=True)

    for name, value in (settings or {}).items():
        context.set_setting(name, value)

    return Engine(context)


__all__ = ('Engine', 'new_engine')
