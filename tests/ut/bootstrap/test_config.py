import pytest
import yaml
from pydantic import ValidationError

from layerkv.bootstrap.config.settings import (
    LMDBSettings,
    MemorySettings,
    MountRouterSettings,
    ShardingSettings,
    TieredSettings,
)
from layerkv.bootstrap.deps import build_datastore, get_config
from layerkv.core.errors import OpenFailedError
from layerkv.core.key import Key
from layerkv.core.storage.mount import MountDatastore
from layerkv.core.storage.namespace import NamespaceDatastore
from layerkv.core.storage.shard import NextToLast, SHARDING_KEY
from layerkv.core.storage.sharding import ShardingDatastore
from layerkv.core.storage.tiered import TieredDatastore
from layerkv.infra.lmdb_datastore.aiobackend import LMDBDatastore
from layerkv.infra.memory import MemoryDatastore
from tests.fake.fake_datastore import FakeDatastore
from tests.helpers import FakeLayerKVConfig


@pytest.mark.ut
def test_load_datastore_tree(config_file, monkeypatch):
    monkeypatch.setenv("TEST_LAYERKV_CONFIG", str(config_file))

    config = FakeLayerKVConfig()
    root = config.datastore

    assert isinstance(root, MountRouterSettings)
    assert [m.prefix for m in root.mounts] == ["/blocks", "/"]

    blocks = root.mounts[0].datastore
    assert isinstance(blocks, ShardingSettings)
    assert isinstance(blocks.child, LMDBSettings)
    assert blocks.child.map_size == 1 << 30
    assert blocks.child.sync is True

    tiered = root.mounts[1].datastore
    assert isinstance(tiered, TieredSettings)
    assert isinstance(tiered.tiers[0], MemorySettings)
    assert isinstance(tiered.tiers[1], LMDBSettings)


@pytest.mark.ut
def test_default_datastore_is_memory(load_config):
    config = load_config({"other": 1})
    assert isinstance(config.datastore, MemorySettings)
    assert config.model_extra == {"other": 1}


@pytest.mark.ut
@pytest.mark.parametrize(
    "datastore",
    [
        {"type": "unknown"},
        {"type": "lmdb"},
        {"type": "namespace", "prefix": "/ns"},
        {"type": "tiered", "tiers": []},
        {"type": "sharding", "shard": "/repo/flatfs/shard/v1/other/2", "child": {"type": "memory"}},
        {
            "type": "mount",
            "mounts": [
                {"prefix": "/a", "datastore": {"type": "memory"}},
                {"prefix": "a/", "datastore": {"type": "memory"}},
            ],
        },
    ],
)
def test_invalid_datastore_tree(load_config, datastore):
    with pytest.raises(ValidationError):
        load_config({"datastore": datastore})


@pytest.mark.ut
def test_get_config_reports_validation_errors(tmp_path, monkeypatch):
    file = tmp_path / "layerkv.yaml"
    file.write_text(yaml.dump({"datastore": {"type": "lmdb"}}))
    monkeypatch.setattr("layerkv.bootstrap.config.settings.get_configfile", lambda: file)

    get_config.cache_clear()
    try:
        with pytest.raises(SystemExit) as ex:
            get_config()
    finally:
        get_config.cache_clear()

    message = str(ex.value)
    assert message.startswith("Configuration validation failed:")
    assert "datastore.lmdb.path" in message


@pytest.mark.ut
@pytest.mark.asyncio
async def test_build_namespace_over_memory(load_config):
    config = load_config({
        "datastore": {"type": "namespace", "prefix": "/ns", "child": {"type": "memory"}}
    })

    store = await build_datastore(config.datastore)

    assert isinstance(store, NamespaceDatastore)
    assert isinstance(store.child, MemoryDatastore)
    assert store.prefix == Key("/ns")


@pytest.mark.it
@pytest.mark.asyncio
async def test_build_full_tree(config_file, monkeypatch):
    monkeypatch.setenv("TEST_LAYERKV_CONFIG", str(config_file))

    store = await build_datastore(FakeLayerKVConfig().datastore)
    try:
        assert isinstance(store, MountDatastore)
        blocks, root = store.mounts

        assert isinstance(blocks.datastore, ShardingDatastore)
        assert blocks.datastore.shard == NextToLast(2)
        assert isinstance(root.datastore, TieredDatastore)
        assert isinstance(root.datastore.stores[1], LMDBDatastore)

        # the shard marker was written into the LMDB child
        lmdb_child = blocks.datastore.child.child
        assert await lmdb_child.has(SHARDING_KEY)

        await store.put(Key("/blocks/hello"), b"block")
        await store.put(Key("/other"), b"value")

        assert await lmdb_child.get(Key("/ll/hello")) == b"block"
        assert await root.datastore.stores[1].get(Key("/other")) == b"value"
    finally:
        await store.close()


@pytest.fixture
def fake_leaves(monkeypatch):
    """Replace memory leaves with FakeDatastores and collect them."""
    created: list[FakeDatastore] = []

    def make() -> FakeDatastore:
        store = FakeDatastore()
        created.append(store)
        return store

    monkeypatch.setattr("layerkv.bootstrap.deps.MemoryDatastore", make)
    return created


@pytest.fixture
def failing_sharding(monkeypatch):
    async def create_or_open(store, shard):
        raise OpenFailedError("shard function mismatch")

    monkeypatch.setattr(ShardingDatastore, "create_or_open", create_or_open)


@pytest.mark.ut
@pytest.mark.asyncio
async def test_failed_sharding_closes_its_child(load_config, fake_leaves, failing_sharding):
    config = load_config({
        "datastore": {
            "type": "sharding",
            "shard": "/repo/flatfs/shard/v1/next-to-last/2",
            "child": {"type": "memory"},
        }
    })

    with pytest.raises(OpenFailedError):
        await build_datastore(config.datastore)

    assert [s.close_calls for s in fake_leaves] == [1]


@pytest.mark.ut
@pytest.mark.asyncio
async def test_failed_mount_closes_the_mounts_already_built(load_config, fake_leaves, failing_sharding):
    config = load_config({
        "datastore": {
            "type": "mount",
            "mounts": [
                {"prefix": "/a", "datastore": {"type": "memory"}},
                {"prefix": "/b", "datastore": {"type": "tiered", "tiers": [{"type": "memory"}]}},
                {
                    "prefix": "/c",
                    "datastore": {
                        "type": "sharding",
                        "shard": "/repo/flatfs/shard/v1/prefix/1",
                        "child": {"type": "memory"},
                    },
                },
            ],
        }
    })

    with pytest.raises(OpenFailedError):
        await build_datastore(config.datastore)

    assert [s.close_calls for s in fake_leaves] == [1, 1, 1]
