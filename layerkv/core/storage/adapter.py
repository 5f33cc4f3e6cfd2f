import asyncio
from typing import AsyncIterator

from layerkv.core.helpers.iterators import AnyIterable, aiterate, drain
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Batch, Datastore
from layerkv.core.storage.pipeline import apply_query


class StagedBatch(Batch):
    """
    Batch that records operations in memory and replays them on commit
    through the bulk operations of its datastore: put_many() for the
    staged puts first, then delete_many() for the staged deletes.
    """

    def __init__(self, datastore: Datastore) -> None:
        self._datastore = datastore
        self._puts: list[Pair] = []
        self._deletes: list[Key] = []

    def put(self, key: Key, value: bytes) -> None:
        self._puts.append(Pair(key, value))

    def delete(self, key: Key) -> None:
        self._deletes.append(key)

    async def commit(self, *, signal: asyncio.Event | None = None) -> None:
        puts, self._puts = self._puts, []
        await drain(self._datastore.put_many(puts, signal=signal))

        deletes, self._deletes = self._deletes, []
        await drain(self._datastore.delete_many(deletes, signal=signal))


class BaseDatastore(Datastore):
    """
    Base class for datastores.

    Concrete stores implement the point operations and _all(); this class
    derives everything else from them:

    - put_many / get_many / delete_many delegate one element at a time to
      put / get / delete, preserving input order and stopping at the first
      failure;
    - batch() stages writes in memory (StagedBatch);
    - query() runs the query pipeline over _all().

    Stores with a native bulk or batch API override the corresponding
    method.
    """

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        raise NotImplementedError

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        raise NotImplementedError

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        raise NotImplementedError

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        raise NotImplementedError

    async def put_many(
        self,
        source: AnyIterable[Pair],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        async for pair in aiterate(source, signal):
            await self.put(pair.key, pair.value, signal=signal)
            yield pair

    async def get_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        async for key in aiterate(source, signal):
            yield await self.get(key, signal=signal)

    async def delete_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Key]:
        async for key in aiterate(source, signal):
            await self.delete(key, signal=signal)
            yield key

    def batch(self) -> Batch:
        return StagedBatch(self)

    def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        return apply_query(aiterate(self._all(q, signal=signal), signal), q)

    def _all(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        """
        Enumerate every Pair of the store, in any order. `q` is only a hint:
        a backend may use q.prefix to narrow the scan, the pipeline still
        applies every clause afterwards.
        """
        raise NotImplementedError
