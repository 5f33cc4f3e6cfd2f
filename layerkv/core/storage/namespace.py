import asyncio
import dataclasses
from typing import AsyncIterator

from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Datastore
from layerkv.core.storage.keytransform import KeyTransform, KeyTransformDatastore


class NamespaceDatastore(KeyTransformDatastore):
    """
    Wraps a datastore so that every key lives below a fixed namespace:
    with prefix Key("/abc"), Key("/foo") is stored as Key("/abc/foo").

    query() only enumerates keys of the namespace. The query prefix is
    interpreted against the caller's keys; filters and orders still see
    the child's keys, as with any KeyTransformDatastore.
    """

    def __init__(self, child: Datastore, prefix: Key) -> None:
        self.prefix = prefix
        super().__init__(
            child,
            KeyTransform(convert=self._convert, invert=self._invert)
        )

    def _is_root(self) -> bool:
        return str(self.prefix) == "/"

    def _convert(self, key: Key) -> Key:
        return self.prefix.child(key)

    def _invert(self, key: Key) -> Key:
        if self._is_root():
            return key

        if key == self.prefix:
            return Key("/", clean=False)

        if not self.prefix.is_ancestor_of(key):
            raise ValueError(f"Expected prefix ({self.prefix}) in key: {key}")

        return Key(str(key)[len(str(self.prefix)):], clean=False)

    def _contains(self, pair: Pair) -> bool:
        key = str(pair.key)
        prefix = str(self.prefix)
        return key == prefix or key.startswith(prefix + "/")

    def query(
        self,
        q: Query,
        *,
        signal: asyncio.Event | None = None
    ) -> AsyncIterator[Pair | Key]:
        if self._is_root():
            return super().query(q, signal=signal)

        prefix = str(self.prefix)
        # every caller key starts with "/", including the namespace root
        if q.prefix is not None and q.prefix != "/":
            prefix += q.prefix

        child_query = dataclasses.replace(
            q,
            prefix=prefix,
            filters=[self._contains, *q.filters],
        )
        return super().query(child_query, signal=signal)
