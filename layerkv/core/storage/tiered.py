import asyncio
import logging
from typing import AsyncIterator

from layerkv.core.errors import NotFoundError
from layerkv.core.helpers.iterators import AnyIterable, aiterate
from layerkv.core.helpers.utils import gather_all
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Batch, Datastore


class TieredBatch(Batch):
    def __init__(self, batches: list[Batch]) -> None:
        self._batches = batches

    def put(self, key: Key, value: bytes) -> None:
        for batch in self._batches:
            batch.put(key, value)

    def delete(self, key: Key) -> None:
        for batch in self._batches:
            batch.delete(key)

    async def commit(self, *, signal: asyncio.Event | None = None) -> None:
        await gather_all(
            *(b.commit(signal=signal) for b in self._batches),
            message="Batch commit failed on one or more tiers",
        )


class TieredDatastore(Datastore):
    """
    Ordered chain of datastores, typically fast caches in front of a
    source of truth.

    Writes go to every tier: each tier is attempted and the failures are
    reported, but tiers already written are not rolled back. Reads walk the
    tiers in order and answer with the first tier holding the key. Queries
    run against the last tier only.
    """

    def __init__(self, stores: list[Datastore]) -> None:
        if not stores:
            raise ValueError("TieredDatastore needs at least one tier")

        self.stores = list(stores)
        self._logger = logging.getLogger("core.storage.tiered")

    async def open(self) -> None:
        await gather_all(
            *(s.open() for s in self.stores),
            message="Failed to open one or more tiers",
        )

    async def close(self) -> None:
        await gather_all(
            *(s.close() for s in self.stores),
            message="Failed to close one or more tiers",
        )

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        await gather_all(
            *(s.put(key, value, signal=signal) for s in self.stores),
            message=f"Put of {key} failed on one or more tiers",
        )

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        for index, store in enumerate(self.stores):
            try:
                return await store.get(key, signal=signal)
            except NotFoundError:
                self._logger.debug(f"Key {key} not found in tier {index}")

        raise NotFoundError(f"Not Found: {key}")

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        for store in self.stores:
            if await store.has(key, signal=signal):
                return True
        return False

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        await gather_all(
            *(s.delete(key, signal=signal) for s in self.stores),
            message=f"Delete of {key} failed on one or more tiers",
        )

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
        return TieredBatch([s.batch() for s in self.stores])

    def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        return self.stores[-1].query(q, signal=signal)
