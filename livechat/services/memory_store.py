from __future__ import annotations

import copy
import itertools
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from livechat.services.document_store import (
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    DocumentExists,
    DocumentNotFound,
    DocumentSnapshot,
    DocumentStore,
    FieldFilter,
    Unsubscribe,
    parent_collection,
)


@dataclass
class _QueryWatch:
    collection: str
    filters: tuple[FieldFilter, ...]
    order_by: str | None
    callback: Callable[[list[DocumentSnapshot]], None]


@dataclass
class MemoryStore(DocumentStore):
    """In-process store with the same write semantics as the hosted one.

    Listeners fire synchronously after each write, and once immediately when
    registered, mirroring the initial snapshot a live listener receives.
    """

    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    fail_writes: bool = False
    fail_reads: bool = False
    _doc_watches: dict[int, tuple[str, Callable[[DocumentSnapshot], None]]] = field(default_factory=dict)
    _query_watches: dict[int, _QueryWatch] = field(default_factory=dict)
    _ids: itertools.count = field(default_factory=itertools.count)

    async def get(self, path: str) -> DocumentSnapshot:
        self._check_read()
        return self._snapshot(path)

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        self._check_write()
        existing = self.documents.get(path)
        if merge and existing is not None:
            target = copy.deepcopy(existing)
            _deep_merge(target, data)
        else:
            target = {}
            _deep_merge(target, data)
        self.documents[path] = target
        self._notify(path)

    async def create(self, path: str, data: dict[str, Any]) -> None:
        self._check_write()
        if path in self.documents:
            raise DocumentExists(path)
        target: dict[str, Any] = {}
        _deep_merge(target, data)
        self.documents[path] = target
        self._notify(path)

    async def update(self, path: str, data: dict[str, Any]) -> None:
        self._check_write()
        existing = self.documents.get(path)
        if existing is None:
            raise DocumentNotFound(path)
        target = copy.deepcopy(existing)
        for key, value in data.items():
            _assign_path(target, key.split("."), value)
        self.documents[path] = target
        self._notify(path)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        await self.create(f"{collection}/{doc_id}", data)
        return doc_id

    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        self._check_read()
        results = self._run_query(collection, filters, order_by)
        if descending:
            results.reverse()
        if limit is not None:
            results = results[:limit]
        return results

    def watch_document(
        self,
        path: str,
        on_snapshot: Callable[[DocumentSnapshot], None],
    ) -> Unsubscribe:
        watch_id = next(self._ids)
        self._doc_watches[watch_id] = (path, on_snapshot)
        on_snapshot(self._snapshot(path))
        return lambda: self._doc_watches.pop(watch_id, None)

    def watch_query(
        self,
        collection: str,
        on_snapshot: Callable[[list[DocumentSnapshot]], None],
        filters: tuple[FieldFilter, ...] = (),
        order_by: str | None = None,
    ) -> Unsubscribe:
        watch_id = next(self._ids)
        watch = _QueryWatch(collection, filters, order_by, on_snapshot)
        self._query_watches[watch_id] = watch
        on_snapshot(self._run_query(collection, filters, order_by))
        return lambda: self._query_watches.pop(watch_id, None)

    def listener_count(self) -> int:
        return len(self._doc_watches) + len(self._query_watches)

    def _snapshot(self, path: str) -> DocumentSnapshot:
        data = self.documents.get(path)
        doc_id = path.rsplit("/", 1)[-1]
        return DocumentSnapshot(doc_id, copy.deepcopy(data) if data is not None else None, path)

    def _run_query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...],
        order_by: str | None,
    ) -> list[DocumentSnapshot]:
        results = []
        for path in list(self.documents):
            if parent_collection(path) != collection:
                continue
            data = self.documents[path]
            if all(_matches(data, item) for item in filters):
                results.append(self._snapshot(path))
        if order_by:
            results = [snap for snap in results if order_by in (snap.data or {})]
            results.sort(key=lambda snap: _sort_key((snap.data or {}).get(order_by)))
        return results

    def _notify(self, path: str) -> None:
        collection = parent_collection(path)
        for watched_path, callback in list(self._doc_watches.values()):
            if watched_path == path:
                callback(self._snapshot(path))
        for watch in list(self._query_watches.values()):
            if watch.collection == collection:
                watch.callback(self._run_query(watch.collection, watch.filters, watch.order_by))

    def _check_read(self) -> None:
        if self.fail_reads:
            raise ConnectionError("store unavailable")

    def _check_write(self) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")


def _resolve(value: Any, current: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return datetime.now(UTC)
    if isinstance(value, ArrayUnion):
        items = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in items:
                items.append(item)
        return items
    if isinstance(value, ArrayRemove):
        items = list(current) if isinstance(current, list) else []
        return [item for item in items if item not in value.values]
    return copy.deepcopy(value)


def _deep_merge(target: dict[str, Any], data: dict[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, dict):
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            _deep_merge(child, value)
        else:
            target[key] = _resolve(value, target.get(key))


def _assign_path(target: dict[str, Any], parts: list[str], value: Any) -> None:
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = _resolve(value, node.get(parts[-1]))


def _matches(data: dict[str, Any], item: FieldFilter) -> bool:
    value = data.get(item.field)
    if item.op == "==":
        return value == item.value
    if item.op == "array_contains":
        return isinstance(value, list) and item.value in value
    raise ValueError(f"Unsupported filter op '{item.op}'")


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, bool):
        return (0, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, datetime):
        return (3, value.timestamp())
    return (4, str(value))
