import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from layerkv.core.helpers.iterators import AnyIterable, aiterate
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Batch, Datastore

KeyMapping = Callable[[Key], Key]


@dataclass(frozen=True)
class KeyTransform:
    """
    Pair of mutually inverse key mappings.

    `convert` maps a key seen by the caller to the key stored in the child
    datastore, `invert` maps a child key back. For every key going through
    the wrapper, invert(convert(k)) == k and convert(invert(k)) == k; a
    transform breaking this is a bug, not a recoverable error.
    """
    convert: KeyMapping
    invert: KeyMapping


class TransformedBatch(Batch):
    def __init__(self, batch: Batch, transform: KeyTransform) -> None:
        self._batch = batch
        self._transform = transform

    def put(self, key: Key, value: bytes) -> None:
        self._batch.put(self._transform.convert(key), value)

    def delete(self, key: Key) -> None:
        self._batch.delete(self._transform.convert(key))

    async def commit(self, *, signal: asyncio.Event | None = None) -> None:
        await self._batch.commit(signal=signal)


class KeyTransformDatastore(Datastore):
    """
    Datastore wrapper rewriting keys on their way to the child datastore,
    for example to namespace them or to reverse them.

    Point operations, bulk operations and batches convert the caller's key
    before delegating. query() hands the Query to the child unchanged and
    inverts the keys of the results: prefix, filters and orders therefore
    run against child keys, not caller keys.
    """

    def __init__(self, child: Datastore, transform: KeyTransform) -> None:
        self.child = child
        self.transform = transform

    async def open(self) -> None:
        await self.child.open()

    async def close(self) -> None:
        await self.child.close()

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        await self.child.put(self.transform.convert(key), value, signal=signal)

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        return await self.child.get(self.transform.convert(key), signal=signal)

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        return await self.child.has(self.transform.convert(key), signal=signal)

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        await self.child.delete(self.transform.convert(key), signal=signal)

    async def put_many(
        self,
        source: AnyIterable[Pair],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        async def converted() -> AsyncIterator[Pair]:
            async for pair in aiterate(source):
                yield Pair(self.transform.convert(pair.key), pair.value)

        async for pair in self.child.put_many(converted(), signal=signal):
            yield Pair(self.transform.invert(pair.key), pair.value)

    async def get_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        async def converted() -> AsyncIterator[Key]:
            async for key in aiterate(source):
                yield self.transform.convert(key)

        async for value in self.child.get_many(converted(), signal=signal):
            yield value

    async def delete_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Key]:
        async def converted() -> AsyncIterator[Key]:
            async for key in aiterate(source):
                yield self.transform.convert(key)

        async for key in self.child.delete_many(converted(), signal=signal):
            yield self.transform.invert(key)

    def batch(self) -> Batch:
        return TransformedBatch(self.child.batch(), self.transform)

    async def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        async for entry in self.child.query(q, signal=signal):
            yield self._invert_entry(entry)

    def _invert_entry(self, entry: Pair | Key) -> Pair | Key:
        if isinstance(entry, Key):
            return self.transform.invert(entry)
        return Pair(self.transform.invert(entry.key), entry.value)
