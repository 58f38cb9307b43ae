from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from google.api_core.exceptions import AlreadyExists, NotFound
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter as FirestoreFieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

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
)

LOGGER = logging.getLogger(__name__)


class FirestoreStore(DocumentStore):
    """Cloud Firestore backend.

    Reads and writes go through the async client. Live listeners use the
    sync client's watch stream, which runs callbacks on a background thread;
    they are handed back to the event loop that registered them so that
    listeners always run on the loop thread.
    """

    def __init__(
        self,
        project: str | None = None,
        client: firestore.Client | None = None,
        async_client: firestore.AsyncClient | None = None,
    ) -> None:
        self._client = client or firestore.Client(project=project)
        self._async = async_client or firestore.AsyncClient(project=project)

    async def get(self, path: str) -> DocumentSnapshot:
        snap = await self._async.document(path).get()
        return _convert(snap)

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._async.document(path).set(_encode(data), merge=merge)

    async def create(self, path: str, data: dict[str, Any]) -> None:
        try:
            await self._async.document(path).create(_encode(data))
        except AlreadyExists as exc:
            raise DocumentExists(path) from exc

    async def update(self, path: str, data: dict[str, Any]) -> None:
        payload = {_field_path(key): value for key, value in _encode(data).items()}
        try:
            await self._async.document(path).update(payload)
        except NotFound as exc:
            raise DocumentNotFound(path) from exc

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        _, ref = await self._async.collection(collection).add(_encode(data))
        return ref.id

    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        q = _build_query(self._async.collection(collection), filters, order_by, descending)
        if limit is not None:
            q = q.limit(limit)
        return [_convert(snap) async for snap in q.stream()]

    def watch_document(
        self,
        path: str,
        on_snapshot: Callable[[DocumentSnapshot], None],
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        doc_id = path.rsplit("/", 1)[-1]

        def _callback(docs: list[Any], _changes: Any, _read_time: Any) -> None:
            snap = _convert(docs[0]) if docs else DocumentSnapshot(doc_id, None, path)
            loop.call_soon_threadsafe(on_snapshot, snap)

        watch = self._client.document(path).on_snapshot(_callback)
        return watch.unsubscribe

    def watch_query(
        self,
        collection: str,
        on_snapshot: Callable[[list[DocumentSnapshot]], None],
        filters: tuple[FieldFilter, ...] = (),
        order_by: str | None = None,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def _callback(docs: list[Any], _changes: Any, _read_time: Any) -> None:
            loop.call_soon_threadsafe(on_snapshot, [_convert(doc) for doc in docs])

        q = _build_query(self._client.collection(collection), filters, order_by, False)
        watch = q.on_snapshot(_callback)
        return watch.unsubscribe

    def close(self) -> None:
        self._client.close()


def _build_query(ref: Any, filters: tuple[FieldFilter, ...], order_by: str | None, descending: bool) -> Any:
    q = ref
    for item in filters:
        q = q.where(filter=FirestoreFieldFilter(item.field, item.op, item.value))
    if order_by:
        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        q = q.order_by(order_by, direction=direction)
    return q


def _convert(snap: Any) -> DocumentSnapshot:
    data = snap.to_dict() if snap.exists else None
    return DocumentSnapshot(snap.id, data, snap.reference.path)


def _field_path(key: str) -> str:
    # ids that start with a digit need quoting inside a field path
    return FieldPath(*key.split(".")).to_api_repr()


def _encode(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, ArrayUnion):
        return firestore.ArrayUnion(list(value.values))
    if isinstance(value, ArrayRemove):
        return firestore.ArrayRemove(list(value.values))
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value
