""" Events are called by the :class:`classbook.db.engine.Engine` and its
collaborators whenever something interesting occurs.

The implementation is very simple:

To add an event::

    from classbook.modules import events

    def on_chunk_failed(context, chunk):
        pass

    events.on_chunk_failed.append(on_chunk_failed)

To remove the same event::

    events.on_chunk_failed.remove(on_chunk_failed)

Events are called in the order they were added.
"""
from __future__ import annotations


from typing import overload
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from typing_extensions import ParamSpec

    from classbook.context.core import Context
    from classbook.db.executor import ChunkResult, ExecutionReport
    from classbook.db.planner import WritePlan
    from classbook.db.snapshot import SnapshotResult

    _P = ParamSpec('_P')


class Event(list['Callable[_P, object]']):
    """Event subscription. By http://stackoverflow.com/a/2022629

    A list of callable objects. Calling an instance of this will cause a
    call to each item in the list in ascending order by index.

    """
    # NOTE: This is only used for binding the correct `ParamSpec` for callback
    #       protocols, otherwise we have to define a pseudo-type, that doesn't
    #       look like an instance of `Event`...
    @overload
    def __init__(self, f: type[Callable[_P, object]]) -> None: ...
    @overload
    def __init__(self) -> None: ...

    def __init__(self, f: object = None) -> None:
        return

    def __call__(self, *args: _P.args, **kwargs: _P.kwargs) -> None:
        for f in self:
            f(*args, **kwargs)


on_plan_applied: Event[Context, WritePlan, ExecutionReport] = Event()
""" Called after a write plan went through the batch executor, with the
following arguments:

    :context:
        The :class:`classbook.context.core.Context` used when applying.

    :plan:
        The applied :class:`classbook.db.planner.WritePlan`.

    :report:
        The :class:`classbook.db.executor.ExecutionReport`. Note that the
        event is called for partially failed plans as well.

"""

on_chunk_failed: Event[Context, ChunkResult] = Event()
""" Called when a chunk exhausted its attempts and was given up, with the
following arguments:

    :context:
        The :class:`classbook.context.core.Context` used when applying.

    :chunk:
        The :class:`classbook.db.executor.ChunkResult` holding the failed
        entries and the reason.

"""

on_snapshot_built: Event[Context, SnapshotResult] = Event()
""" Called when a monthly snapshot was written to the blob storage, with the
following arguments:

    :context:
        The :class:`classbook.context.core.Context` used when building.

    :result:
        The :class:`classbook.db.snapshot.SnapshotResult`.

"""
