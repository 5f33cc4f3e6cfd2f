import asyncio
import os

import pytest
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict, YamlConfigSettingsSource

from layerkv.bootstrap.config.settings import LayerKVConfig
from layerkv.core.errors import AbortedError, DatastoreClosedError, NotFoundError
from layerkv.core.helpers.iterators import collect, drain
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query


class FakeLayerKVConfig(LayerKVConfig):
    model_config = SettingsConfigDict(
        env_prefix="LAYERKV_",
        extra="allow"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (YamlConfigSettingsSource(settings_cls, yaml_file=os.environ["TEST_LAYERKV_CONFIG"]),)


def by_value(a: Pair, b: Pair) -> int:
    return (a.value > b.value) - (a.value < b.value)


def by_value_desc(a: Pair, b: Pair) -> int:
    return by_value(b, a)


async def fill(store, entries: dict[str, bytes]) -> None:
    await drain(store.put_many(Pair(Key(k), v) for k, v in entries.items()))


async def query_keys(store, q: Query) -> list[str]:
    return [str(e.key) for e in await collect(store.query(q))]


QUERY_DATA = {
    "/a/one": b"1",
    "/a/two": b"2",
    "/a/three": b"3",
    "/ab/four": b"4",
    "/b/five": b"5",
}


class DatastoreContract:
    """
    Behaviour every Datastore must show, whatever it is made of.

    Subclasses named Test* provide a `store` fixture returning a fresh,
    opened datastore.
    """

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put(Key("/z/key"), b"value")
        assert await store.get(Key("/z/key")) == b"value"

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store):
        await store.put(Key("/z/key"), b"old")
        await store.put(Key("/z/key"), b"new")
        assert await store.get(Key("/z/key")) == b"new"

    @pytest.mark.asyncio
    async def test_get_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError) as ex:
            await store.get(Key("/z/missing"))
        assert ex.value.code == "ERR_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_has_and_delete(self, store):
        key = Key("/z/key")
        assert not await store.has(key)

        await store.put(key, b"value")
        assert await store.has(key)

        await store.delete(key)
        assert not await store.has(key)

        # deleting an absent key is not an error
        await store.delete(key)

    @pytest.mark.asyncio
    async def test_empty_value(self, store):
        await store.put(Key("/z/empty"), b"")
        assert await store.get(Key("/z/empty")) == b""
        assert await store.has(Key("/z/empty"))

    @pytest.mark.asyncio
    async def test_parallel_put_and_get(self, store):
        keys = [Key(f"/z/parallel/{i}") for i in range(50)]

        await asyncio.gather(*(store.put(k, str(k).encode()) for k in keys))
        values = await asyncio.gather(*(store.get(k) for k in keys))

        assert values == [str(k).encode() for k in keys]

    @pytest.mark.asyncio
    async def test_put_many_get_many_delete_many(self, store):
        pairs = [Pair(Key(f"/z/many/{i}"), f"v{i}".encode()) for i in range(10)]

        stored = await collect(store.put_many(pairs))
        assert stored == pairs

        values = await collect(store.get_many(p.key for p in pairs))
        assert values == [p.value for p in pairs]

        deleted = await collect(store.delete_many(p.key for p in pairs))
        assert deleted == [p.key for p in pairs]
        for pair in pairs:
            assert not await store.has(pair.key)

    @pytest.mark.asyncio
    async def test_get_many_stops_at_missing_key(self, store):
        await store.put(Key("/z/present"), b"1")

        out = []
        with pytest.raises(NotFoundError):
            async for value in store.get_many([Key("/z/present"), Key("/z/absent"), Key("/z/present")]):
                out.append(value)

        assert out == [b"1"]

    @pytest.mark.asyncio
    async def test_bulk_aborted_by_signal(self, store):
        signal = asyncio.Event()
        signal.set()

        with pytest.raises(AbortedError):
            await drain(store.put_many([Pair(Key("/z/aborted"), b"1")], signal=signal))

        assert not await store.has(Key("/z/aborted"))

    @pytest.mark.asyncio
    async def test_batch_commit(self, store):
        await store.put(Key("/z/old"), b"old")

        batch = store.batch()
        batch.put(Key("/a/one"), b"1")
        batch.put(Key("/q/two"), b"2")
        batch.put(Key("/q/three"), b"3")
        batch.delete(Key("/z/old"))

        # nothing is visible before commit
        assert not await store.has(Key("/a/one"))

        await batch.commit()

        keys = [Key("/a/one"), Key("/q/two"), Key("/q/three"), Key("/z/old")]
        assert [await store.has(k) for k in keys] == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_batch_put_then_delete_nets_to_deleted(self, store):
        batch = store.batch()
        batch.put(Key("/z/key"), b"1")
        batch.delete(Key("/z/key"))
        await batch.commit()

        assert not await store.has(Key("/z/key"))

    @pytest.mark.asyncio
    async def test_batch_many_prefixes(self, store):
        count = 20
        batch = store.batch()
        for i in range(count):
            batch.put(Key(f"/a/{i}"), b"a")
            batch.put(Key(f"/b/{i}"), b"b")
            batch.put(Key(f"/c/{i}"), b"c")
        await batch.commit()

        for prefix in ("/a/", "/b/", "/c/"):
            assert len(await query_keys(store, Query(prefix=prefix))) == count

    @pytest.mark.asyncio
    async def test_query_everything(self, store):
        await fill(store, QUERY_DATA)
        assert sorted(await query_keys(store, Query())) == sorted(QUERY_DATA)

    @pytest.mark.asyncio
    async def test_query_prefix_is_raw_string_prefix(self, store):
        await fill(store, QUERY_DATA)

        assert sorted(await query_keys(store, Query(prefix="/a/"))) == ["/a/one", "/a/three", "/a/two"]
        assert sorted(await query_keys(store, Query(prefix="/a"))) == ["/a/one", "/a/three", "/a/two", "/ab/four"]
        assert await query_keys(store, Query(prefix="/nothing")) == []

    @pytest.mark.asyncio
    async def test_query_filters(self, store):
        await fill(store, QUERY_DATA)

        async def odd(pair: Pair) -> bool:
            return int(pair.value) % 2 == 1

        q = Query(filters=[lambda p: int(p.value) > 1, odd])
        assert sorted(await query_keys(store, q)) == ["/a/three", "/b/five"]

    @pytest.mark.asyncio
    async def test_query_orders(self, store):
        await fill(store, QUERY_DATA)

        pairs = await collect(store.query(Query(orders=[by_value_desc])))
        assert [p.value for p in pairs] == [b"5", b"4", b"3", b"2", b"1"]

    @pytest.mark.asyncio
    async def test_query_offset_and_limit_after_order(self, store):
        await fill(store, QUERY_DATA)

        q = Query(orders=[by_value], offset=1, limit=2)
        pairs = await collect(store.query(q))
        assert [p.value for p in pairs] == [b"2", b"3"]

    @pytest.mark.asyncio
    async def test_query_limit_bounds_result_count(self, store):
        await fill(store, QUERY_DATA)

        for limit in (0, 1, 3, len(QUERY_DATA), len(QUERY_DATA) + 10):
            entries = await collect(store.query(Query(limit=limit)))
            assert len(entries) == min(limit, len(QUERY_DATA))

    @pytest.mark.asyncio
    async def test_query_offset_past_end(self, store):
        await fill(store, QUERY_DATA)
        assert await collect(store.query(Query(offset=100))) == []

    @pytest.mark.asyncio
    async def test_query_keys_only(self, store):
        await fill(store, QUERY_DATA)

        keys = await collect(store.query(Query(prefix="/b", keys_only=True)))
        assert keys == [Key("/b/five")]

    @pytest.mark.asyncio
    async def test_close_then_reopen(self, store):
        await store.put(Key("/z/key"), b"value")
        await store.close()

        with pytest.raises(DatastoreClosedError):
            await store.get(Key("/z/key"))

        await store.open()
        assert await store.get(Key("/z/key")) == b"value"
