import asyncio
import json
import logging
from functools import lru_cache

from pydantic import ValidationError

from layerkv.bootstrap.config.settings import (
    DatastoreSettings,
    LayerKVConfig,
    LMDBSettings,
    MemorySettings,
    MountRouterSettings,
    NamespaceSettings,
    ShardingSettings,
    TieredSettings,
)
from layerkv.core.key import Key
from layerkv.core.ports.datastore import Datastore
from layerkv.core.storage.mount import Mount, MountDatastore
from layerkv.core.storage.namespace import NamespaceDatastore
from layerkv.core.storage.shard import parse_shard_fun
from layerkv.core.storage.sharding import ShardingDatastore
from layerkv.core.storage.tiered import TieredDatastore
from layerkv.infra.lmdb_datastore.aiobackend import LMDBDatastore
from layerkv.infra.memory import MemoryDatastore

logger = logging.getLogger("bootstrap.deps")


@lru_cache
def get_config() -> LayerKVConfig:
    try:
        return LayerKVConfig()  # type: ignore[call-arg]
    except FileNotFoundError as ex:
        raise SystemExit(f"Provide a correct configuration file path: {ex}")
    except ValidationError as ex:
        msg = ["Configuration validation failed:"]
        errs = json.loads(ex.json())
        for err in errs:
            msg.append(f"  {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}")
        raise SystemExit("\n".join(msg))


async def build_datastore(node: DatastoreSettings) -> Datastore:
    """
    Build the datastore tree described by `node`, leaves first.

    Sharding nodes need their child to read or write the shard marker, so
    the tree is built asynchronously. If any step fails, the children
    already built are closed before the error is re-raised.
    """
    match node:
        case MemorySettings():
            return MemoryDatastore()

        case LMDBSettings():
            return LMDBDatastore(
                path=node.path,
                map_size=node.map_size,
                max_readers=node.max_readers,
                max_writers=node.max_writers,
                sync=node.sync,
            )

        case NamespaceSettings():
            child = await build_datastore(node.child)
            try:
                return NamespaceDatastore(child, Key(node.prefix))
            except Exception:
                await _discard([child])
                raise

        case MountRouterSettings():
            children = await _build_all([m.datastore for m in node.mounts])
            try:
                return MountDatastore([
                    Mount(Key(m.prefix), child)
                    for m, child in zip(node.mounts, children)
                ])
            except Exception:
                await _discard(children)
                raise

        case TieredSettings():
            tiers = await _build_all(node.tiers)
            try:
                return TieredDatastore(tiers)
            except Exception:
                await _discard(tiers)
                raise

        case ShardingSettings():
            child = await build_datastore(node.child)
            try:
                return await ShardingDatastore.create_or_open(
                    child, parse_shard_fun(node.shard)
                )
            except Exception:
                await _discard([child])
                raise

    raise ValueError(f"Unsupported datastore type: {node!r}")


async def _build_all(nodes: list[DatastoreSettings]) -> list[Datastore]:
    built: list[Datastore] = []
    try:
        for node in nodes:
            built.append(await build_datastore(node))
    except Exception:
        await _discard(built)
        raise
    return built


async def _discard(stores: list[Datastore]) -> None:
    # the build failure is what the caller sees, close failures are only logged
    results = await asyncio.gather(*(s.close() for s in stores), return_exceptions=True)
    for store, result in zip(stores, results):
        if isinstance(result, Exception):
            logger.warning(f"Failed to close {store!r} after a build failure: {result}")
