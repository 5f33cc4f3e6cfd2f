import re

from layerkv.core.errors import InvalidShardEncodingError
from layerkv.core.key import Key

PREFIX = "/repo/flatfs/shard/"
VERSION = "v1"

SHARDING_FN = "SHARDING"
README_FN = "_README"

SHARDING_KEY = Key(SHARDING_FN)
README_KEY = Key(README_FN)

README = """This is a sharded datastore.

Every key is stored below a directory derived from its last namespace by
the sharding function recorded in the SHARDING key, for example:

    /repo/flatfs/shard/v1/next-to-last/2

The functions available are:

    prefix/N        the first N characters of the name, padded with '_'
    suffix/N        the last N characters of the name, padded with '_'
    next-to-last/N  the N characters preceding the last character of
                    the name, padded with '_'

The SHARDING key must not be modified once the datastore holds data:
keys written with one function cannot be found with another one.
"""

_ENCODING = re.compile(
    re.escape(PREFIX) + r"(?P<version>[^/]+)/(?P<name>[^/]+)/(?P<param>[0-9]+)"
)


class ShardFunction:
    """
    Deterministic mapping from the last namespace of a key to the name of
    the bucket it is stored in. A shard function is fully described by its
    name and its integer parameter, see the canonical string returned by
    str().
    """

    name: str = ""

    def __init__(self, param: int) -> None:
        if param < 0:
            raise ValueError(f"Shard parameter must not be negative, got {param}")
        self.param = param

    def fun(self, s: str) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return f"{PREFIX}{VERSION}/{self.name}/{self.param}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.param})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShardFunction):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))


class Prefix(ShardFunction):
    name = "prefix"

    def fun(self, s: str) -> str:
        return s.ljust(self.param, "_")[:self.param]


class Suffix(ShardFunction):
    name = "suffix"

    def fun(self, s: str) -> str:
        if self.param == 0:
            return ""
        return s.rjust(self.param, "_")[-self.param:]


class NextToLast(ShardFunction):
    name = "next-to-last"

    def fun(self, s: str) -> str:
        s = s.rjust(self.param + 1, "_")
        offset = len(s) - self.param - 1
        return s[offset:offset + self.param]


SHARD_FUNCTIONS: dict[str, type[ShardFunction]] = {
    Prefix.name: Prefix,
    Suffix.name: Suffix,
    NextToLast.name: NextToLast,
}


def parse_shard_fun(s: str | bytes) -> ShardFunction:
    """
    Parse the canonical encoding of a shard function:

        /repo/flatfs/shard/v1/<prefix|suffix|next-to-last>/<param>

    Leading and trailing whitespace, like the newline written in the
    SHARDING key, is ignored. Anything else raises
    InvalidShardEncodingError.
    """
    if isinstance(s, (bytes, bytearray, memoryview)):
        try:
            s = bytes(s).decode("utf-8")
        except UnicodeDecodeError as ex:
            raise InvalidShardEncodingError(f"Shard encoding is not UTF-8: {ex}") from ex

    s = s.strip()
    if not s:
        raise InvalidShardEncodingError("Empty shard string")

    if not s.startswith(PREFIX):
        raise InvalidShardEncodingError(f"Invalid or no path prefix: {s}")

    match = _ENCODING.fullmatch(s)
    if match is None:
        raise InvalidShardEncodingError(f"Malformed shard string: {s}")

    version = match.group("version")
    if version != VERSION:
        raise InvalidShardEncodingError(f"Expected '{VERSION}' version, got '{version}'")

    name = match.group("name")
    shard_cls = SHARD_FUNCTIONS.get(name)
    if shard_cls is None:
        raise InvalidShardEncodingError(f"Unknown sharding function: {name}")

    return shard_cls(int(match.group("param")))
