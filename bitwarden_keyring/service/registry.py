"""
Object Registry — export-once bookkeeping for bus objects.

Maps a key (an object path) to the exported object, with three guarantees:

- concurrent requests for the same key run one export and share its outcome
- requests for different keys never wait on each other
- a failed export leaves no trace, so the next request retries

The check-then-insert step contains no ``await`` and is therefore atomic on
the event loop; the export itself runs outside it. Waiters suspend only on
the entry's own :class:`asyncio.Event`.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Generic, Hashable, Optional, TypeVar

from ..exceptions import ExportError

logger = logging.getLogger("bwkeyring.service")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Entry(Generic[V]):
    __slots__ = ("value", "error", "ready")

    def __init__(self):
        self.value: Optional[V] = None
        self.error: Optional[BaseException] = None
        self.ready = asyncio.Event()


class ObjectRegistry(Generic[K, V]):
    """Deduplicating key → exported object table.

    Args:
        kind: Name used in log and error messages ("item", "collection").
    """

    def __init__(self, kind: str):
        self._kind = kind
        self._entries: dict[K, _Entry[V]] = {}

    def __len__(self) -> int:
        return sum(1 for e in self._entries.values() if e.ready.is_set() and e.error is None)

    def __contains__(self, key: K) -> bool:
        return self.peek(key) is not None

    async def get_or_create(
        self,
        key: K,
        create: Callable[[], Awaitable[V]],
        refresh: Optional[Callable[[V], Awaitable[None]]] = None,
    ) -> tuple[V, bool]:
        """Return the object for ``key``, exporting it on first request.

        Args:
            key: Identifier of the object.
            create: Builds and exports the object; called at most once per
                successful export of ``key``.
            refresh: Applied to an already exported object, for example to
                replace its data snapshot under the object's own lock.

        Returns:
            Tuple of (object, created) where ``created`` is True only for the
            caller that performed the export.

        Raises:
            ExportError: If another caller's in-flight export of ``key`` failed.
            Exception: Whatever ``create`` raised, for the exporting caller.
        """
        entry = self._entries.get(key)
        if entry is not None:
            await entry.ready.wait()
            if entry.error is not None:
                raise ExportError(f"{self._kind} export failed: {key}") from entry.error
            if refresh is not None:
                await refresh(entry.value)
            return entry.value, False

        entry = _Entry()
        self._entries[key] = entry
        try:
            value = await create()
        except BaseException as err:
            if self._entries.get(key) is entry:
                del self._entries[key]
            entry.error = err
            entry.ready.set()
            logger.debug("Export of %s %s failed: %s", self._kind, key, type(err).__name__)
            raise
        entry.value = value
        entry.ready.set()
        return value, True

    def peek(self, key: K) -> Optional[V]:
        """Return the exported object for ``key`` without waiting."""
        entry = self._entries.get(key)
        if entry is None or not entry.ready.is_set() or entry.error is not None:
            return None
        return entry.value

    async def get(self, key: K) -> Optional[V]:
        """Return the object for ``key``, waiting for an in-flight export.

        Returns None when the key is unknown or its export failed.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        await entry.ready.wait()
        return entry.value if entry.error is None else None

    async def remove(self, key: K) -> Optional[V]:
        """Forget ``key`` once any in-flight export of it has finished.

        The caller reverses the export side effect for the returned object.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        await entry.ready.wait()
        if entry.error is not None or self._entries.get(key) is not entry:
            return None
        del self._entries[key]
        return entry.value

    def values(self) -> list[V]:
        return [
            e.value for e in self._entries.values()
            if e.ready.is_set() and e.error is None
        ]

    def keys(self) -> list[K]:
        return [
            k for k, e in self._entries.items()
            if e.ready.is_set() and e.error is None
        ]
