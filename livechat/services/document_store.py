from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

LOGGER = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
ErrorHandler = Callable[[Exception], None]
FilterOp = Literal["==", "array_contains"]


class DocumentExists(Exception):
    pass


class DocumentNotFound(Exception):
    pass


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class ArrayUnion:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class ArrayRemove:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: FilterOp
    value: Any


@dataclass
class DocumentSnapshot:
    id: str
    data: dict[str, Any] | None = None
    path: str = ""

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data or {})


@dataclass
class Subscription:
    """Unsubscribe handle. Calling it more than once is a no-op."""

    _cancel: Unsubscribe | None
    closed: bool = field(default=False)

    def __call__(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._cancel is not None:
            try:
                self._cancel()
            except Exception:
                LOGGER.exception("Unsubscribe failed")


def guarded(
    handler: Callable[..., None],
    on_error: ErrorHandler | None,
    label: str,
) -> Callable[..., None]:
    """Wrap a listener so a failing handler never kills the subscription."""

    def _wrapped(*args: Any) -> None:
        try:
            handler(*args)
        except Exception as exc:
            LOGGER.exception("Error in %s listener", label)
            if on_error is not None:
                try:
                    on_error(exc)
                except Exception:
                    LOGGER.exception("Error callback for %s raised", label)

    return _wrapped


def parent_collection(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


class DocumentStore(ABC):
    """Narrow view of a hosted document-and-subscription store.

    Paths are slash separated (``chats/{id}/messages``). Keys in ``update``
    may be dotted field paths (``profiles.u1.profilePhoto``).
    """

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot: ...

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None: ...

    @abstractmethod
    async def create(self, path: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    async def update(self, path: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str: ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]: ...

    @abstractmethod
    def watch_document(
        self,
        path: str,
        on_snapshot: Callable[[DocumentSnapshot], None],
    ) -> Unsubscribe: ...

    @abstractmethod
    def watch_query(
        self,
        collection: str,
        on_snapshot: Callable[[list[DocumentSnapshot]], None],
        filters: tuple[FieldFilter, ...] = (),
        order_by: str | None = None,
    ) -> Unsubscribe: ...

    def close(self) -> None:
        return None
