from typing import Callable

import pytest
import yaml

from tests.fake.fake_datastore import FakeDatastore
from tests.helpers import FakeLayerKVConfig


@pytest.fixture
def fake_store() -> FakeDatastore:
    return FakeDatastore()


@pytest.fixture
def config_file(tmp_path):
    file = tmp_path / "layerkv.yaml"

    data = {
        "datastore": {
            "type": "mount",
            "mounts": [
                {
                    "prefix": "/blocks",
                    "datastore": {
                        "type": "sharding",
                        "shard": "/repo/flatfs/shard/v1/next-to-last/2",
                        "child": {"type": "lmdb", "path": str(tmp_path / "data" / "blocks")},
                    },
                },
                {
                    "prefix": "/",
                    "datastore": {
                        "type": "tiered",
                        "tiers": [
                            {"type": "memory"},
                            {"type": "lmdb", "path": str(tmp_path / "data" / "root")},
                        ],
                    },
                },
            ],
        }
    }

    file.write_text(yaml.dump(data))
    return file


@pytest.fixture
def load_config(tmp_path, monkeypatch) -> Callable[[dict], FakeLayerKVConfig]:
    """Write `data` as a YAML configuration file and load it."""
    def load(data: dict) -> FakeLayerKVConfig:
        file = tmp_path / "config.yaml"
        file.write_text(yaml.dump(data))
        monkeypatch.setenv("TEST_LAYERKV_CONFIG", str(file))
        return FakeLayerKVConfig()

    return load
