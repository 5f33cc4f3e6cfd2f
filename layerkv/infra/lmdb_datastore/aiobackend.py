import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import AsyncIterator

import lmdb

from layerkv.core.errors import (
    DatastoreClosedError,
    DeleteFailedError,
    NotFoundError,
    OpenFailedError,
    ReadFailedError,
    WriteFailedError,
)
from layerkv.core.helpers.iterators import check_aborted
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Batch
from layerkv.core.storage.adapter import BaseDatastore
from layerkv.infra.lmdb_datastore.backend import LMDBBackend


class LMDBBatch(Batch):
    """
    Batch committed in a single LMDB write transaction: puts then deletes
    become visible together, or not at all.
    """

    def __init__(self, datastore: "LMDBDatastore") -> None:
        self._datastore = datastore
        self._puts: list[tuple[bytes, bytes]] = []
        self._deletes: list[bytes] = []

    def put(self, key: Key, value: bytes) -> None:
        self._puts.append((bytes(key), bytes(value)))

    def delete(self, key: Key) -> None:
        self._deletes.append(bytes(key))

    async def commit(self, *, signal: asyncio.Event | None = None) -> None:
        check_aborted(signal)
        puts, self._puts = self._puts, []
        deletes, self._deletes = self._deletes, []
        await self._datastore.write_batch(puts, deletes)


class LMDBDatastore(BaseDatastore):
    """
    Persistent datastore backed by an LMDB environment.

    LMDB is a fully synchronous library: every call is delegated to a
    ThreadPoolExecutor so the event loop is never blocked. Reads and writes
    use separate pools; LMDB serializes writers anyway, so a single writer
    thread is the default.

    Keys are stored as the UTF-8 encoding of their canonical string, which
    keeps LMDB's lexicographic order aligned with prefix queries. Query
    enumeration is paginated: each page is read inside its own short read
    transaction, so a long query never pins an old snapshot.

    The environment is opened by the constructor. close() releases it and
    the thread pools; open() acquires them again.
    """
    def __init__(
        self,
        path: str | Path,
        map_size: int = 1 << 30,
        max_readers: int = 4,
        max_writers: int = 1,
        readahead: bool = True,
        writemap: bool = False,
        sync: bool = True,
        lock: bool = True,
        page_size: int = 1024,
    ) -> None:
        self._path = Path(path)
        self._map_size = map_size
        self._max_readers = max_readers
        self._max_writers = max_writers
        self._readahead = readahead
        self._writemap = writemap
        self._sync = sync
        self._lock = lock
        self._page_size = page_size

        self._backend: LMDBBackend | None = None
        self._read_pool: ThreadPoolExecutor | None = None
        self._write_pool: ThreadPoolExecutor | None = None
        self._logger = logging.getLogger("infra.lmdb_datastore")

        self._open_backend()

    def _open_backend(self) -> None:
        try:
            self._path.mkdir(parents=True, exist_ok=True)
            self._backend = LMDBBackend(
                path=str(self._path),
                map_size=self._map_size,
                readahead=self._readahead,
                writemap=self._writemap,
                sync=self._sync,
                lock=self._lock,
            )
        except (lmdb.Error, OSError) as ex:
            raise OpenFailedError(cause=ex) from ex

        self._read_pool = ThreadPoolExecutor(max_workers=self._max_readers)
        self._write_pool = ThreadPoolExecutor(max_workers=self._max_writers)
        self._logger.info(f"Opened LMDB environment at {self._path}")

    async def open(self) -> None:
        if self._backend is None:
            await asyncio.to_thread(self._open_backend)

    async def close(self) -> None:
        backend, self._backend = self._backend, None
        if backend is None:
            return

        read_pool, write_pool = self._read_pool, self._write_pool

        def shutdown() -> None:
            read_pool.shutdown(wait=True)
            write_pool.shutdown(wait=True)
            backend.close()

        await asyncio.to_thread(shutdown)
        self._logger.info(f"Closed LMDB environment at {self._path}")

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        backend = self._ensure_open()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                self._write_pool, backend.put, bytes(key), bytes(value)
            )
        except lmdb.Error as ex:
            raise WriteFailedError(cause=ex) from ex

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        backend = self._ensure_open()
        loop = asyncio.get_running_loop()
        try:
            value = await loop.run_in_executor(
                self._read_pool, backend.get, bytes(key)
            )
        except lmdb.Error as ex:
            raise ReadFailedError(cause=ex) from ex

        if value is None:
            raise NotFoundError(f"Not Found: {key}")
        return value

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        backend = self._ensure_open()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._read_pool, backend.has, bytes(key)
            )
        except lmdb.Error as ex:
            raise ReadFailedError(cause=ex) from ex

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        backend = self._ensure_open()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                self._write_pool, backend.delete, bytes(key)
            )
        except lmdb.Error as ex:
            raise DeleteFailedError(cause=ex) from ex

    def batch(self) -> Batch:
        return LMDBBatch(self)

    async def write_batch(
        self,
        puts: list[tuple[bytes, bytes]],
        deletes: list[bytes],
    ) -> None:
        backend = self._ensure_open()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                self._write_pool, backend.write_batch, puts, deletes
            )
        except lmdb.Error as ex:
            raise WriteFailedError(cause=ex) from ex

    async def _all(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        backend = self._ensure_open()
        loop = asyncio.get_running_loop()
        prefix = q.prefix.encode("utf-8") if q.prefix else None
        next_key = None

        while True:
            try:
                page: list[tuple[bytes, bytes]] = await loop.run_in_executor(
                    self._read_pool,
                    backend.scan,
                    prefix,
                    next_key,
                    self._page_size,
                )
            except lmdb.Error as ex:
                raise ReadFailedError(cause=ex) from ex

            for key, value in page:
                yield Pair(Key(key, clean=False), value)

            if len(page) < self._page_size:
                break

            # smallest key strictly greater than the last one read
            next_key = page[-1][0] + b"\x00"

    def _ensure_open(self) -> LMDBBackend:
        if self._backend is None:
            raise DatastoreClosedError()
        return self._backend
