import pytest

from layerkv.core.errors import DatastoreClosedError
from layerkv.core.helpers.iterators import collect
from layerkv.core.key import Key
from layerkv.core.models.query import Query
from layerkv.infra.memory import MemoryDatastore
from tests.helpers import DatastoreContract


@pytest.mark.ut
class TestMemoryDatastoreContract(DatastoreContract):
    @pytest.fixture
    def store(self):
        return MemoryDatastore()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_value_is_copied_on_put():
    store = MemoryDatastore()
    buffer = bytearray(b"abc")

    await store.put(Key("/k"), buffer)
    buffer[0] = ord("z")

    assert await store.get(Key("/k")) == b"abc"
    assert isinstance(await store.get(Key("/k")), bytes)


@pytest.mark.ut
@pytest.mark.asyncio
async def test_query_tolerates_writes_during_iteration():
    store = MemoryDatastore()
    for i in range(3):
        await store.put(Key(f"/{i}"), b"x")

    seen = []
    async for pair in store.query(Query()):
        seen.append(pair.key)
        await store.put(Key(f"/new/{len(seen)}"), b"y")

    assert len(seen) == 3


@pytest.mark.ut
@pytest.mark.asyncio
async def test_closed_store_rejects_every_operation():
    store = MemoryDatastore()
    await store.close()

    with pytest.raises(DatastoreClosedError):
        await store.put(Key("/k"), b"v")

    with pytest.raises(DatastoreClosedError):
        await store.has(Key("/k"))

    with pytest.raises(DatastoreClosedError):
        await store.delete(Key("/k"))

    with pytest.raises(DatastoreClosedError):
        await collect(store.query(Query()))
