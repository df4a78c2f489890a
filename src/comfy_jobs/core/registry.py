"""Correlation table from prompt id to the handlers of the job that owns it.

Every mutation runs synchronously on the event loop, so a lookup followed by
an unregister can't interleave with stream dispatch or a bulk operation.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .types import JobObserver

logger = logging.getLogger(__name__)


async def invoke_callback(callback: Optional[Callable], *args: Any) -> None:
    """Call a sync or async callback, awaiting it if needed."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class RegistryEntry:
    """A tracked job and the transition handlers the stream drives."""
    job: Any
    handlers: JobObserver

    async def complete(self) -> None:
        await invoke_callback(self.handlers.on_completed, self.job)

    async def update(self, node: Any) -> None:
        await invoke_callback(self.handlers.on_update, self.job, node)

    async def fail(self, errors: Any) -> None:
        await invoke_callback(self.handlers.on_error, self.job, errors)

    async def cancel(self) -> None:
        await invoke_callback(self.handlers.on_cancelled, self.job)


EntryVisitor = Callable[[RegistryEntry], Union[None, Awaitable[None]]]


class JobRegistry:
    """Maps prompt ids to the entry of the active job."""

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._entries

    def ids(self) -> list[str]:
        return list(self._entries)

    def get(self, job_id: Optional[str]) -> Optional[RegistryEntry]:
        if job_id is None:
            return None
        return self._entries.get(job_id)

    def register(self, job_id: str, entry: RegistryEntry) -> None:
        """Insert or replace the entry for job_id."""
        if job_id in self._entries:
            logger.debug("Replacing registry entry for %s", job_id)
        self._entries[job_id] = entry

    def unregister(self, job_id: Optional[str]) -> Optional[RegistryEntry]:
        """Remove and return the entry for job_id, None if absent."""
        if job_id is None:
            return None
        return self._entries.pop(job_id, None)

    async def for_each_entry(self, fn: EntryVisitor) -> None:
        """Visit every tracked entry. Handlers may unregister while we iterate."""
        await self._visit(list(self._entries.items()), fn)

    async def for_entries_matching(self, ids: Iterable[str], fn: EntryVisitor) -> None:
        """Visit the tracked entries whose id is in ids."""
        wanted = set(ids)
        await self._visit(
            [(job_id, e) for job_id, e in self._entries.items() if job_id in wanted],
            fn,
        )

    async def _visit(self, items: list[tuple[str, RegistryEntry]], fn: EntryVisitor) -> None:
        for job_id, entry in items:
            # Skip entries another handler removed during this pass
            if self._entries.get(job_id) is not entry:
                continue
            try:
                await invoke_callback(fn, entry)
            except Exception:
                logger.exception("Registry visitor failed for job %s", job_id)
