from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource, YamlConfigSettingsSource

from layerkv.bootstrap.config.loader import get_configfile
from layerkv.core.errors import InvalidShardEncodingError
from layerkv.core.key import Key
from layerkv.core.storage.shard import parse_shard_fun


class MemorySettings(BaseModel):
    type: Literal["memory"] = "memory"


class LMDBSettings(BaseModel):
    type: Literal["lmdb"] = "lmdb"

    path: Annotated[
        Path,
        Field(
            description=(
                "Directory of the LMDB environment.\n"
                "It is created if missing and must be writable and persistent "
                "across restarts."
            )
        )
    ]

    map_size: Annotated[
        int,
        Field(
            description="Maximum size of the LMDB memory map, in bytes.",
            default=1 << 30
        )
    ]

    max_readers: Annotated[
        int,
        Field(
            description="Number of threads serving read operations.",
            default=4
        )
    ]

    max_writers: Annotated[
        int,
        Field(
            description="Number of threads serving write operations.",
            default=1
        )
    ]

    sync: Annotated[
        bool,
        Field(
            description="Flush buffers to disk on every commit.",
            default=True
        )
    ]


class NamespaceSettings(BaseModel):
    type: Literal["namespace"] = "namespace"

    prefix: Annotated[
        str,
        Field(description="Namespace every key of the child is stored below.")
    ]

    child: Annotated["DatastoreSettings", Field(description="Wrapped datastore.")]


class MountSettings(BaseModel):
    prefix: Annotated[
        str,
        Field(description="Key prefix routed to this datastore.")
    ]

    datastore: Annotated["DatastoreSettings", Field(description="Mounted datastore.")]


class MountRouterSettings(BaseModel):
    type: Literal["mount"] = "mount"

    mounts: Annotated[
        list[MountSettings],
        Field(
            description=(
                "Mounted datastores. The most specific prefix covering a key "
                "wins; prefixes must be unique."
            ),
            default_factory=list
        )
    ]

    @field_validator("mounts")
    @classmethod
    def validate_unique_prefixes(cls, v: list[MountSettings]) -> list[MountSettings]:
        prefixes = [str(Key(m.prefix)) for m in v]
        if len(prefixes) != len(set(prefixes)):
            raise ValueError(f"Mount prefixes must be unique, got {prefixes}")
        return v


class TieredSettings(BaseModel):
    type: Literal["tiered"] = "tiered"

    tiers: Annotated[
        list["DatastoreSettings"],
        Field(
            description=(
                "Tiers, fastest first. Writes go to every tier, reads are "
                "served by the first tier holding the key."
            ),
            min_length=1
        )
    ]


class ShardingSettings(BaseModel):
    type: Literal["sharding"] = "sharding"

    shard: Annotated[
        str,
        Field(
            description=(
                "Shard function encoding, for example\n"
                "/repo/flatfs/shard/v1/next-to-last/2"
            ),
            default="/repo/flatfs/shard/v1/next-to-last/2"
        )
    ]

    child: Annotated["DatastoreSettings", Field(description="Sharded datastore.")]

    @field_validator("shard")
    @classmethod
    def validate_shard(cls, v: str) -> str:
        try:
            parse_shard_fun(v)
        except InvalidShardEncodingError as ex:
            raise ValueError(str(ex)) from ex
        return v


DatastoreSettings = Annotated[
    Union[
        MemorySettings,
        LMDBSettings,
        NamespaceSettings,
        MountRouterSettings,
        TieredSettings,
        ShardingSettings,
    ],
    Field(discriminator="type")
]

NamespaceSettings.model_rebuild()
MountSettings.model_rebuild()
MountRouterSettings.model_rebuild()
TieredSettings.model_rebuild()
ShardingSettings.model_rebuild()


class LayerKVConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LAYERKV_",
        extra="allow"
    )

    datastore: Annotated[
        DatastoreSettings,
        Field(
            description=(
                "Datastore tree.\n"
                "Each node has a `type` (memory, lmdb, namespace, mount, tiered,\n"
                "sharding); decorators nest their children under `child`,\n"
                "`mounts` or `tiers`."
            ),
            default_factory=MemorySettings
        )
    ]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (YamlConfigSettingsSource(settings_cls, yaml_file=get_configfile()),)
