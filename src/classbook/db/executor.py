from __future__ import annotations

import logging

from classbook.context.core import ContextServicesMixin
from classbook.db.models import Slot
from classbook.db.planner import CREATE
from classbook.db.store import SlotStore, store_errors
from classbook.modules import errors
from classbook.modules import events
from classbook.modules.utils import chunked


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from classbook.context.core import Context
    from classbook.db.planner import PlanEntry, WritePlan


log = logging.getLogger('classbook')


class ChunkResult:
    """ The outcome of a single chunk of a write plan. A chunk is
    committed as a whole or not at all.

    """

    def __init__(self, index: int, entries: list[PlanEntry]):
        self.index = index
        self.entries = entries
        self.committed = False
        self.attempts = 0
        self.reason: Exception | None = None

        #: the outcome of each entry of a committed chunk by key
        self.outcomes: dict[str, str] = {}

    def __repr__(self) -> str:
        state = 'committed' if self.committed else 'failed'
        return f'<ChunkResult {self.index} {state} entries={len(self)}>'

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def failed(self) -> bool:
        return not self.committed

    def count(self, outcome: str) -> int:
        return sum(1 for o in self.outcomes.values() if o == outcome)


class ExecutionReport:
    """ Collects the chunk results of a write plan.

    Failed chunks don't stop the execution, the report lists their entries
    so they may be resubmitted by the caller.

    """

    def __init__(self, chunks: list[ChunkResult] | None = None):
        self.chunks = chunks or []

    def __repr__(self) -> str:
        return (
            f'<ExecutionReport applied={self.total_applied} '
            f'failed={self.total_failed}>'
        )

    @property
    def total(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    @property
    def total_applied(self) -> int:
        return sum(len(c) for c in self.chunks if c.committed)

    @property
    def total_failed(self) -> int:
        return sum(len(c) for c in self.chunks if c.failed)

    @property
    def failed_chunks(self) -> list[ChunkResult]:
        return [c for c in self.chunks if c.failed]

    @property
    def failed_entries(self) -> list[PlanEntry]:
        return [e for c in self.failed_chunks for e in c.entries]

    @property
    def ok(self) -> bool:
        return not self.failed_chunks

    def count(self, outcome: str) -> int:
        return sum(c.count(outcome) for c in self.chunks if c.committed)

    @property
    def created(self) -> int:
        return self.count('created')

    @property
    def unchanged(self) -> int:
        return self.count('unchanged')

    @property
    def deleted(self) -> int:
        return self.count('deleted')

    @property
    def missing(self) -> int:
        return self.count('missing')

    @property
    def skipped(self) -> int:
        return self.count('skipped')

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise errors.PartialBatchFailure(self)


class BatchExecutor(ContextServicesMixin):
    """ Applies write plans in chunks.

    The plan is split into chunks of at most max_batch_size entries, which
    are committed one after the other, each in its own transaction. A chunk
    failing with a transient error is retried up to chunk_retries times,
    after that it is given up and the next chunk is attempted.

    Conflicting writes (another occupant took a slot after planning) fail
    their chunk right away, retrying won't change the outcome. The same is
    true for any other error, malformed entries included. Either way the
    chunk is rolled back and the report is returned.

    """

    def __init__(self, context: Context, store: SlotStore | None = None):
        self.context = context
        self.store = store or SlotStore(context)

    @property
    def max_batch_size(self) -> int:
        return self.context.get_setting('max_batch_size')  # type: ignore[no-any-return]

    @property
    def chunk_retries(self) -> int:
        return self.context.get_setting('chunk_retries')  # type: ignore[no-any-return]

    def apply(self, plan: WritePlan) -> ExecutionReport:
        if plan.conflicts:
            raise errors.UnresolvedConflicts(plan.conflicts)

        report = ExecutionReport()

        for index, entries in enumerate(
            chunked(plan.entries, self.max_batch_size)
        ):
            chunk = self.apply_chunk(index, entries)
            report.chunks.append(chunk)

            if chunk.failed:
                events.on_chunk_failed(self.context, chunk)

        if not report.ok:
            log.warning(
                f'{report.total_failed} of {report.total} entries failed '
                f'in {len(report.failed_chunks)} chunk(s)'
            )

        events.on_plan_applied(self.context, plan, report)

        return report

    def apply_chunk(self, index: int, entries: list[PlanEntry]) -> ChunkResult:
        chunk = ChunkResult(index, entries)

        while chunk.attempts <= self.chunk_retries:
            chunk.attempts += 1

            try:
                outcomes = self.write(entries)
                self.commit_chunk()
            except errors.AlreadyOccupied as e:
                self.session.rollback()
                chunk.reason = e
                log.warning(f'Chunk {index} conflicts on slot {e.key}')
                break
            except errors.TransientStoreError as e:
                self.session.rollback()
                chunk.reason = e
                log.warning(
                    f'Chunk {index} failed on attempt {chunk.attempts}: {e}'
                )
                continue
            except Exception as e:
                # the flushed part of the chunk must not leak into the
                # next commit of the session
                self.session.rollback()
                chunk.reason = e
                log.exception(f'Chunk {index} failed: {e!r}')
                break
            else:
                chunk.committed = True
                chunk.reason = None
                chunk.outcomes = outcomes
                break

        return chunk

    def write(self, entries: list[PlanEntry]) -> dict[str, str]:
        outcomes: dict[str, str] = {}

        for entry in entries:
            if entry.action == CREATE:
                slot = Slot.from_payload(entry.payload)
                outcomes[entry.key] = self.store.put(slot)
            else:
                outcomes[entry.key] = self.store.delete(
                    entry.key, entry.payload
                )

        return outcomes

    def commit_chunk(self) -> None:
        with store_errors():
            self.session.commit()
