import asyncio
from typing import AsyncIterator, Protocol

from layerkv.core.helpers.iterators import AnyIterable
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query


class Batch(Protocol):
    """
    Write buffer returned by Datastore.batch().

    put() and delete() only stage operations: nothing is visible to
    readers before commit() succeeds. A batch belongs to its creator
    until it is committed or dropped.
    """

    def put(self, key: Key, value: bytes) -> None:
        """Stage an upsert of `value` under `key`."""

    def delete(self, key: Key) -> None:
        """Stage the removal of `key`."""

    async def commit(self, *, signal: asyncio.Event | None = None) -> None:
        """
        Apply every staged put, then every staged delete. A put followed by
        a delete of the same key therefore nets to "deleted".

        Commit does not roll back: if it fails half way, the failure is
        raised and the operations applied before it stay applied.
        """


class Datastore(Protocol):
    """
    Uniform asynchronous interface of a key-value store keyed by Key and
    holding opaque byte values.

    Backends (memory, LMDB, remote stores) and decorators (namespace,
    mount, sharding, tiered) all expose this exact operation set, so they
    can be nested freely. Every operation accepts an optional `signal`:
    an asyncio.Event that, once set, makes bulk operations stop at the
    next element boundary with an AbortedError.

    The interface offers no cross-key atomicity and no snapshot isolation:
    a query running concurrently with writes may observe any mixture of
    states.
    """

    async def open(self) -> None:
        """
        Acquire the resources needed by the datastore. Calling open() on a
        closed datastore must restore normal operation.
        """

    async def close(self) -> None:
        """
        Release every resource acquired by open(). Calling close() more than
        once is allowed. Once closed, operations fail with
        DatastoreClosedError until open() is called again.
        """

    async def put(
        self,
        key: Key,
        value: bytes,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        """Store `value` under `key`, replacing any previous value."""

    async def get(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bytes:
        """
        Return the value stored under `key`.

        Raises NotFoundError if the key does not exist.
        """

    async def has(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> bool:
        """
        Return whether a value is stored under `key`. Never raises
        NotFoundError.
        """

    async def delete(
        self,
        key: Key,
        *,
        signal: asyncio.Event | None = None
    ) -> None:
        """Remove `key`. Deleting an absent key succeeds silently."""

    def put_many(
        self,
        source: AnyIterable[Pair],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair]:
        """
        Store every Pair of `source` and yield each one once stored, in
        input order.

        Processing stops at the first failing element: every Pair stored
        before it has been yielded, then its error is raised.
        """

    def get_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        """
        Yield the value of every key of `source`, in input order. A missing
        key ends the iteration with NotFoundError.
        """

    def delete_many(
        self,
        source: AnyIterable[Key],
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Key]:
        """Delete every key of `source` and yield each one once deleted."""

    def batch(self) -> Batch:
        """Return a new, empty write buffer bound to this datastore."""

    def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        """
        Lazily produce the entries described by `q`: Pairs, or bare Keys
        when `q.keys_only` is set. See layerkv.core.storage.pipeline for
        the order in which the query clauses are applied.
        """
