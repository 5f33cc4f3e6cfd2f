import asyncio
from typing import AsyncIterator

from layerkv.core.errors import DatastoreClosedError, NotFoundError
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.storage.adapter import BaseDatastore


class MemoryDatastore(BaseDatastore):
    """
    Reference in-memory implementation of the Datastore contract.

    Values are copied into immutable bytes on put(), so the store never
    aliases a buffer owned by the caller. The store starts opened; data
    survives a close() / open() cycle, but every operation issued while
    closed raises DatastoreClosedError.
    """

    def __init__(self) -> None:
        self._data: dict[Key, bytes] = {}
        self._closed = False

    async def open(self) -> None:
        self._closed = False

    async def close(self) -> None:
        self._closed = True

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        self._ensure_open()
        self._data[key] = bytes(value)

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        self._ensure_open()
        try:
            return self._data[key]
        except KeyError:
            raise NotFoundError(f"Not Found: {key}") from None

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        self._ensure_open()
        return key in self._data

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        self._ensure_open()
        self._data.pop(key, None)

    async def _all(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        self._ensure_open()
        # snapshot the items: writers may run between two yields
        for key, value in list(self._data.items()):
            yield Pair(key, value)

    def _ensure_open(self) -> None:
        if self._closed:
            raise DatastoreClosedError()
