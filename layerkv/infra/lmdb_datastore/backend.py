import threading

import lmdb


class LMDBBackend:
    """
    Synchronous access to one named database (DBI) of an LMDB
    environment. Keys and values are raw bytes; every call runs in its
    own short-lived transaction.

    The async LMDBDatastore runs these methods in worker threads.
    """
    def __init__(
        self,
        path: str,
        db_name: bytes = b"datastore",
        map_size: int = 1 << 30,
        max_dbs: int = 8,
        readahead: bool = True,
        writemap: bool = False,
        sync: bool = True,
        lock: bool = True,
    ) -> None:
        self._env = lmdb.open(
            path,
            map_size=map_size,
            max_dbs=max_dbs,
            lock=lock,
            writemap=writemap,
            sync=sync,
            readahead=readahead,
        )
        self._db_name = db_name
        self._dbi: object | None = None
        self._dbi_lock = threading.Lock()

    def get(self, key: bytes) -> bytes | None:
        with self._env.begin(db=self._get_dbi(), write=False) as txn:
            return txn.get(key)

    def has(self, key: bytes) -> bool:
        return self.get(key) is not None

    def put(self, key: bytes, value: bytes) -> bool:
        with self._env.begin(db=self._get_dbi(), write=True) as txn:
            return txn.put(key, value)

    def delete(self, key: bytes) -> bool:
        with self._env.begin(db=self._get_dbi(), write=True) as txn:
            return txn.delete(key)

    def write_batch(
        self,
        puts: list[tuple[bytes, bytes]],
        deletes: list[bytes],
    ) -> None:
        """
        Apply `puts` then `deletes` inside a single write transaction:
        either all of them become visible or none does.
        """
        with self._env.begin(db=self._get_dbi(), write=True) as txn:
            for key, value in puts:
                txn.put(key, value)
            for key in deletes:
                txn.delete(key)

    def scan(
        self,
        prefix: bytes | None = None,
        start: bytes | None = None,
        limit: int | None = None,
    ) -> list[tuple[bytes, bytes]]:
        """
        Scan the database in ascending lexicographic key order.

        Parameters
        ----------
        prefix : bytes | None
            Only keys starting with this prefix are returned. The scan
            stops at the first key past the prefix.

        start : bytes | None
            Lexicographic lower bound (inclusive) used for pagination.
            When both are given, `start` positions the cursor and `prefix`
            bounds the scan; a `start` outside of `prefix` returns [].

        limit : int | None
            Maximum number of items to return.
        """
        if limit is not None and limit <= 0:
            return []

        items: list[tuple[bytes, bytes]] = []

        with self._env.begin(db=self._get_dbi(), write=False) as txn:
            with txn.cursor() as cursor:
                if not self._position_cursor(cursor, prefix, start):
                    return []

                while True:
                    key = cursor.key()

                    if prefix is not None and not key.startswith(prefix):
                        break

                    items.append((key, cursor.value()))
                    if limit is not None and len(items) >= limit:
                        break

                    if not cursor.next():
                        break

        return items

    def close(self) -> None:
        with self._dbi_lock:
            self._dbi = None
        self._env.close()

    def _get_dbi(self) -> object:
        with self._dbi_lock:
            if self._dbi is None:
                self._dbi = self._env.open_db(self._db_name)
            return self._dbi

    @staticmethod
    def _position_cursor(
        cursor: lmdb.Cursor,
        prefix: bytes | None,
        start: bytes | None,
    ) -> bool:
        if start is not None:
            return cursor.set_range(start)

        if prefix is not None:
            return cursor.set_range(prefix)

        return cursor.first()
