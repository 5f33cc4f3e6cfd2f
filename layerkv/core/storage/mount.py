import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator

from layerkv.core.errors import NoCoveringMountError
from layerkv.core.helpers.iterators import AnyIterable, aiterate, amap, chain
from layerkv.core.helpers.utils import gather_all
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Batch, Datastore
from layerkv.core.storage.pipeline import apply_query


@dataclass(frozen=True)
class Mount:
    prefix: Key
    datastore: Datastore

    @property
    def depth(self) -> int:
        return 0 if str(self.prefix) == "/" else len(self.prefix.list())

    def covers(self, key: Key) -> bool:
        """
        Return True if `key` is the mount prefix itself or lives below it.
        The test is segment aware: "/cool" covers "/cool/a" but not "/coolx".
        """
        depth = self.depth
        return depth == 0 or key.list()[:depth] == self.prefix.list()

    def strip(self, key: Key) -> Key:
        """Remove the mount prefix from a covered key."""
        return Key.with_namespaces(key.list()[self.depth:])

    def child_prefix(self, prefix: str | None) -> tuple[bool, str | None]:
        """
        Translate a raw query prefix into the child space of this mount.

        Return (compatible, child_prefix). An incompatible mount holds no
        key that can match `prefix` and must not be queried at all.
        """
        if prefix is None:
            return True, None

        mountpoint = "" if self.depth == 0 else str(self.prefix)

        if prefix.startswith(mountpoint):
            # the query prefix lies inside the mount
            rest = prefix[len(mountpoint):]
            return True, rest or None

        if mountpoint.startswith(prefix):
            # the whole mount lies inside the query prefix
            return True, None

        return False, None


class MountBatch(Batch):
    """
    Batch keeping the raw keys until commit(): mounts are resolved at
    commit time, so a key no mount covers fails the commit, not the call
    staging it.
    """

    def __init__(self, router: "MountDatastore") -> None:
        self._router = router
        self._puts: list[Pair] = []
        self._deletes: list[Key] = []

    def put(self, key: Key, value: bytes) -> None:
        self._puts.append(Pair(key, value))

    def delete(self, key: Key) -> None:
        self._deletes.append(key)

    async def commit(self, *, signal: asyncio.Event | None = None) -> None:
        puts, self._puts = self._puts, []
        deletes, self._deletes = self._deletes, []

        batches: dict[int, tuple[Mount, Batch]] = {}

        def batch_for(key: Key) -> tuple[Batch, Key]:
            mount = self._router.lookup(key)
            if id(mount) not in batches:
                batches[id(mount)] = (mount, mount.datastore.batch())
            return batches[id(mount)][1], mount.strip(key)

        # resolve every key first so that an uncovered key fails the
        # commit before any mount is written
        staged_puts = [(*batch_for(p.key), p.value) for p in puts]
        staged_deletes = [batch_for(k) for k in deletes]

        for batch, key, value in staged_puts:
            batch.put(key, value)
        for batch, key in staged_deletes:
            batch.delete(key)

        await gather_all(
            *(b.commit(signal=signal) for _, b in batches.values()),
            message="Batch commit failed on one or more mounts",
        )


class MountDatastore(Datastore):
    """
    Routes operations to one of several datastores by key prefix.

    Mounts are sorted by decreasing prefix depth so that the most specific
    prefix covering a key wins; mounts with the same depth keep their list
    order. The matching prefix is stripped from the key before the child
    datastore sees it.

    A key covered by no mount makes put(), get(), delete() and batch
    commits fail with NoCoveringMountError. has() answers False for it:
    nothing can exist outside of every mount. query() skips the mounts
    that cannot hold keys matching the query prefix.

    The router owns its child datastores: open() and close() are forwarded
    to all of them.
    """

    def __init__(self, mounts: list[Mount]) -> None:
        prefixes = [m.prefix for m in mounts]
        duplicates = {p for p in prefixes if prefixes.count(p) > 1}
        if duplicates:
            raise ValueError(
                f"Duplicate mount prefixes: {sorted(str(p) for p in duplicates)}"
            )

        self.mounts = sorted(mounts, key=lambda m: m.depth, reverse=True)
        self._logger = logging.getLogger("core.storage.mount")

    def lookup(self, key: Key) -> Mount:
        mount = self.find(key)
        if mount is None:
            raise NoCoveringMountError(key)
        return mount

    def find(self, key: Key) -> Mount | None:
        for mount in self.mounts:
            if mount.covers(key):
                self._logger.debug(f"Key {key} routed to mount {mount.prefix}")
                return mount
        return None

    async def open(self) -> None:
        await gather_all(
            *(m.datastore.open() for m in self.mounts),
            message="Failed to open one or more mounts",
        )

    async def close(self) -> None:
        await gather_all(
            *(m.datastore.close() for m in self.mounts),
            message="Failed to close one or more mounts",
        )

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        mount = self.lookup(key)
        await mount.datastore.put(mount.strip(key), value, signal=signal)

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        mount = self.lookup(key)
        return await mount.datastore.get(mount.strip(key), signal=signal)

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        mount = self.find(key)
        if mount is None:
            return False
        return await mount.datastore.has(mount.strip(key), signal=signal)

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        mount = self.lookup(key)
        await mount.datastore.delete(mount.strip(key), signal=signal)

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
        return MountBatch(self)

    def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        sources = []
        for mount in self.mounts:
            compatible, prefix = mount.child_prefix(q.prefix)
            if not compatible:
                continue

            # children only narrow by prefix, every other clause applies
            # to the merged stream
            results = mount.datastore.query(Query(prefix=prefix), signal=signal)
            sources.append(amap(results, self._reprefix(mount)))

        return apply_query(chain(*sources), q)

    @staticmethod
    def _reprefix(mount: Mount):
        def reprefix(pair: Pair) -> Pair:
            return Pair(mount.prefix.child(pair.key), pair.value)
        return reprefix
