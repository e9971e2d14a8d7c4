"""
Optimistic state cache.

Holds an in-memory collection (the operator's view of sessions, access
requests, ...) and applies a tentative mutation before the store confirms
it. The prior collection is snapshotted so a failed remote call can be
undone.

Exactly one snapshot is kept: a second apply/add/remove before the first is
confirmed or rolled back overwrites it. Callers must serialize conflicting
mutations on the same collection.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from typing import Any, Callable, Generic, Hashable, Iterable, List, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Delete:
    def __repr__(self) -> str:
        return "DELETE"


# Pass as the patch to remove a record
DELETE = _Delete()

Notifier = Callable[[str, str], None]


def _log_notifier(level: str, message: str) -> None:
    if level == "error":
        logger.error(message)
    else:
        logger.info(message)


def _merge(record: Any, patch: Mapping[str, Any]) -> Any:
    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        return dataclasses.replace(record, **patch)
    if isinstance(record, Mapping):
        return {**record, **patch}
    raise TypeError(f"Cannot patch record of type {type(record).__name__}")


class OptimisticCache(Generic[T]):
    """
    Reducer with snapshot/apply/confirm/rollback over a keyed collection.
    """

    def __init__(
        self,
        items: Iterable[T] = (),
        key: str = "id",
        name: str = "record",
        notify: Optional[Notifier] = None,
    ):
        self._items: List[T] = list(items)
        self._key = key
        self._name = name
        self._notify = notify or _log_notifier
        self._snapshot: Optional[List[T]] = None
        self._pending_id: Optional[Hashable] = None

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[T]:
        return list(self._items)

    @property
    def pending(self) -> bool:
        """True while an optimistic change awaits confirm/rollback"""
        return self._snapshot is not None

    @property
    def pending_id(self) -> Optional[Hashable]:
        return self._pending_id

    def get(self, record_id: Hashable) -> Optional[T]:
        for item in self._items:
            if self._id_of(item) == record_id:
                return item
        return None

    def replace_all(self, items: Iterable[T]) -> None:
        """Load fresh server data; drops any outstanding snapshot."""
        self._items = list(items)
        self._clear()

    # ------------------------------------------------------------------
    # Optimistic mutations
    # ------------------------------------------------------------------

    def apply(self, record_id: Hashable, patch: Any, message: Optional[str] = None) -> None:
        """
        Merge patch into the matching record immediately, or remove it when
        patch is DELETE.
        """
        self._take_snapshot(record_id)

        if patch is DELETE:
            self._items = [i for i in self._items if self._id_of(i) != record_id]
        else:
            self._items = [
                _merge(i, patch) if self._id_of(i) == record_id else i
                for i in self._items
            ]

        if message:
            self._notify("info", message)
        logger.debug(f"Optimistic update applied for {self._name} {record_id}")

    def add(self, record: T, message: Optional[str] = None) -> None:
        """Prepend a new record optimistically"""
        record_id = self._id_of(record)
        self._take_snapshot(record_id)
        self._items = [record] + self._items
        if message:
            self._notify("info", message)
        logger.debug(f"Optimistically added {self._name} {record_id}")

    def remove(self, record_id: Hashable, message: Optional[str] = None) -> None:
        self.apply(record_id, DELETE, message)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def confirm(self, record_id: Optional[Hashable] = None, fresh: Optional[T] = None) -> None:
        """
        Discard the snapshot; the optimistic state is now authoritative.

        When the server returned the stored record, pass it as fresh to
        replace the optimistic copy (e.g. a temporary id becomes the real id).
        """
        if fresh is not None:
            target = record_id if record_id is not None else self._id_of(fresh)
            replaced = False
            items = []
            for item in self._items:
                if self._id_of(item) == target:
                    items.append(fresh)
                    replaced = True
                else:
                    items.append(item)
            if not replaced:
                items.insert(0, fresh)
            self._items = items

        self._clear()
        logger.debug(f"Confirmed {self._name} update {record_id if record_id is not None else ''}".rstrip())

    def rollback(self, record_id: Optional[Hashable] = None, error_message: str = "Operation failed") -> bool:
        """
        Restore the snapshot. Returns False when nothing was pending.
        """
        if self._snapshot is None:
            return False

        self._items = self._snapshot
        self._clear()
        self._notify("error", error_message)
        logger.info(f"Rolled back {self._name} update {record_id if record_id is not None else ''}".rstrip())
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _take_snapshot(self, record_id: Hashable) -> None:
        if self._snapshot is not None:
            logger.warning(
                f"Overwriting unresolved {self._name} snapshot for {self._pending_id} "
                f"with new change on {record_id}"
            )
        self._snapshot = copy.deepcopy(self._items)
        self._pending_id = record_id

    def _clear(self) -> None:
        self._snapshot = None
        self._pending_id = None

    def _id_of(self, record: Any) -> Hashable:
        if isinstance(record, Mapping):
            return record.get(self._key)
        return getattr(record, self._key)
