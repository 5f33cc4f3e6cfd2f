import asyncio
import logging
from typing import AsyncIterator

from layerkv.core.errors import NotFoundError, OpenFailedError
from layerkv.core.helpers.iterators import AnyIterable, amap
from layerkv.core.key import SEPARATOR, Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Batch, Datastore
from layerkv.core.storage.keytransform import KeyTransform, KeyTransformDatastore
from layerkv.core.storage.pipeline import apply_query
from layerkv.core.storage.shard import (
    README,
    README_KEY,
    SHARDING_KEY,
    ShardFunction,
    parse_shard_fun,
)

RESERVED_KEYS = frozenset({SHARDING_KEY, README_KEY})

logger = logging.getLogger("core.storage.sharding")


async def read_shard_fun(store: Datastore) -> ShardFunction:
    """
    Read back the shard function persisted in `store`.

    Raises NotFoundError if the store was never sharded and
    InvalidShardEncodingError if the persisted encoding is not valid.
    """
    raw = await store.get(SHARDING_KEY)
    return parse_shard_fun(raw)


class ShardingDatastore(Datastore):
    """
    Spreads keys over buckets of the child datastore.

    Every key is stored below a bucket named after its last namespace
    through a deterministic shard function: with NextToLast(2), Key("/hello")
    is stored as Key("/ll/hello"). The shard function is persisted in the
    child under two reserved keys (SHARDING and _README), so a later
    open_existing() can rebuild the exact same function.

    Use the create(), open_existing() and create_or_open() constructors
    rather than instantiating the class directly: they take care of the
    marker keys. open() and close() are the usual lifecycle operations,
    forwarded to the child.
    """

    def __init__(self, child: Datastore, shard: ShardFunction) -> None:
        self.shard = shard
        self.child = KeyTransformDatastore(
            child,
            KeyTransform(convert=self._convert_key, invert=self._invert_key)
        )

    def _convert_key(self, key: Key) -> Key:
        if key in RESERVED_KEYS:
            return key
        # the bucket is kept verbatim: normalizing it would turn "", "." or
        # ".." into no segment at all
        bucket = SEPARATOR + self.shard.fun(key.base_namespace())
        if str(key) == SEPARATOR:
            return Key(bucket, clean=False)
        return Key(bucket + str(key), clean=False)

    def _invert_key(self, key: Key) -> Key:
        if key in RESERVED_KEYS:
            return key
        namespaces = key.list()[1:]
        if not namespaces:
            return Key(SEPARATOR, clean=False)
        return Key(SEPARATOR + SEPARATOR.join(namespaces), clean=False)

    @classmethod
    async def create(cls, store: Datastore, shard: ShardFunction) -> "ShardingDatastore":
        """
        Write the shard marker into `store` and return the sharded view of
        it. If `store` already holds a marker, it must encode `shard`,
        otherwise OpenFailedError is raised.
        """
        if await store.has(SHARDING_KEY):
            existing = await read_shard_fun(store)
            if existing != shard:
                raise OpenFailedError(
                    f"Specified shard function {shard} does not match "
                    f"the datastore shard function {existing}"
                )
            return cls(store, existing)

        await store.put(SHARDING_KEY, f"{shard}\n".encode("utf-8"))
        await store.put(README_KEY, README.encode("utf-8"))
        logger.info(f"Created sharded datastore with {shard}")
        return cls(store, shard)

    @classmethod
    async def open_existing(cls, store: Datastore) -> "ShardingDatastore":
        """
        Rebuild the sharded view of `store` from its persisted marker.

        NotFoundError is raised when the store has never been sharded,
        InvalidShardEncodingError when the marker cannot be parsed.
        """
        shard = await read_shard_fun(store)
        logger.debug(f"Opened sharded datastore with {shard}")
        return cls(store, shard)

    @classmethod
    async def create_or_open(
        cls,
        store: Datastore,
        shard: ShardFunction
    ) -> "ShardingDatastore":
        try:
            sharded = await cls.open_existing(store)
        except NotFoundError:
            return await cls.create(store, shard)

        if sharded.shard != shard:
            raise OpenFailedError(
                f"Specified shard function {shard} does not match "
                f"the datastore shard function {sharded.shard}"
            )
        return sharded

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
        await self.child.put(key, value, signal=signal)

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        return await self.child.get(key, signal=signal)

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        return await self.child.has(key, signal=signal)

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        await self.child.delete(key, signal=signal)

    def put_many(
        self,
        source: AnyIterable[Pair],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        return self.child.put_many(source, signal=signal)

    def get_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        return self.child.get_many(source, signal=signal)

    def delete_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Key]:
        return self.child.delete_many(source, signal=signal)

    def batch(self) -> Batch:
        return self.child.batch()

    def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        # enumerate the whole child so that every clause runs on the
        # caller's keys rather than on bucketed ones
        raw = self.child.child.query(Query(), signal=signal)
        pairs = amap(raw, lambda e: Pair(self._invert_key(e.key), e.value))
        return apply_query(self._skip_reserved(pairs), q)

    @staticmethod
    async def _skip_reserved(source: AsyncIterator[Pair]) -> AsyncIterator[Pair]:
        async for pair in source:
            if pair.key not in RESERVED_KEYS:
                yield pair
