import builtins
import posixpath
import uuid
from typing import Any, Iterable

from layerkv.core.errors import InvalidKeyError

SEPARATOR = "/"


class Key:
    """
    Hierarchical identifier of a stored record.

    A Key is an immutable, path-like sequence of namespaces separated by
    "/". Keys are hierarchical: a key can be the ancestor or the
    descendant of another one, exactly like paths in a file system:

        Key("/Comedy")
        Key("/Comedy/MontyPython")

    Every namespace may be parametrized with a type, using the
    "type:name" notation:

        Key("/Comedy/MontyPython/Actor:JohnCleese")
        Key("/Comedy/MontyPython/Sketch:CheeseShop/Character:Mousebender")

    The canonical representation always starts with "/", never ends with
    "/" (except for the root key itself) and has "." and ".." segments
    resolved. Two keys are equal if and only if their canonical strings
    are equal.
    """

    __slots__ = ("_string",)

    def __init__(self, s: "str | bytes | Key", clean: bool = True) -> None:
        if isinstance(s, Key):
            s = s._string
        elif isinstance(s, (bytes, bytearray, memoryview)):
            try:
                s = bytes(s).decode("utf-8")
            except UnicodeDecodeError as ex:
                raise InvalidKeyError(f"Key is not valid UTF-8: {ex}") from ex

        if not isinstance(s, str):
            raise InvalidKeyError(f"Invalid key: {s!r}")

        if clean:
            s = self._clean(s)

        if not s or not s.startswith(SEPARATOR):
            raise InvalidKeyError(f"Invalid key: {s!r}")

        self._string = s

    @staticmethod
    def _clean(s: str) -> str:
        if not s:
            return SEPARATOR

        if not s.startswith(SEPARATOR):
            s = SEPARATOR + s

        s = posixpath.normpath(s)

        # POSIX keeps exactly two leading slashes, keys never do
        if s.startswith("//"):
            s = SEPARATOR + s.lstrip(SEPARATOR)

        if len(s) > 1:
            s = s.rstrip(SEPARATOR)

        return s

    @classmethod
    def with_namespaces(cls, namespaces: Iterable[str]) -> "Key":
        """
        Construct a key out of a list of namespaces.

            Key.with_namespaces(["one", "two"]) == Key("/one/two")
        """
        return cls(SEPARATOR.join(namespaces))

    @classmethod
    def random(cls) -> "Key":
        return cls(uuid.uuid4().hex)

    @staticmethod
    def is_key(value: Any) -> bool:
        return isinstance(value, Key)

    def __str__(self) -> str:
        return self._string

    def __repr__(self) -> str:
        return f"Key({self._string!r})"

    def __bytes__(self) -> bytes:
        return self._string.encode("utf-8")

    def to_bytes(self) -> bytes:
        return bytes(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self._string == other._string

    def __hash__(self) -> int:
        return hash(self._string)

    def __lt__(self, other: "Key") -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.less(other)

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_string"):
            raise AttributeError("Key is immutable")
        super().__setattr__(name, value)

    def less(self, other: "Key") -> bool:
        """
        Return True if this key sorts before `other`.

        Namespaces are compared one by one, lexicographically. When one
        key is a strict prefix of the other, the shorter key sorts first.
        """
        return self.list() < other.list()

    def list(self) -> builtins.list[str]:
        """
        Return the namespaces making up this key.

            Key("/Comedy/MontyPython/Actor:JohnCleese").list()
            # ["Comedy", "MontyPython", "Actor:JohnCleese"]

        The root key is made of a single, empty namespace.
        """
        return self._string.split(SEPARATOR)[1:]

    def namespaces(self) -> builtins.list[str]:
        return self.list()

    def base_namespace(self) -> str:
        """The most specific namespace, "Actor:JohnCleese" in the example above."""
        return self.list()[-1]

    def type(self) -> str:
        """The type of the base namespace, "Actor" in "Actor:JohnCleese"."""
        return namespace_type(self.base_namespace())

    def name(self) -> str:
        """The name of the base namespace, "JohnCleese" in "Actor:JohnCleese"."""
        return namespace_value(self.base_namespace())

    def instance(self, name: str) -> "Key":
        """
        Return an instance of this type key.

            Key("/Comedy/MontyPython/Actor").instance("JohnCleese")
            # Key("/Comedy/MontyPython/Actor:JohnCleese")
        """
        return Key(self._string + ":" + name)

    def path(self) -> "Key":
        """
        Return the parent key extended with the type of this key.

            Key("/Comedy/MontyPython/Actor:JohnCleese").path()
            # Key("/Comedy/MontyPython/Actor")
        """
        return Key(str(self.parent()) + SEPARATOR + self.type())

    def parent(self) -> "Key":
        namespaces = self.list()
        if len(namespaces) == 1:
            return Key(SEPARATOR, clean=False)

        return Key.with_namespaces(namespaces[:-1])

    def child(self, key: "Key") -> "Key":
        """
        Return `key` nested below this key.

            Key("/Comedy/MontyPython").child(Key("Actor:JohnCleese"))
            # Key("/Comedy/MontyPython/Actor:JohnCleese")
        """
        if self._string == SEPARATOR:
            return key
        if key._string == SEPARATOR:
            return self

        return Key(self._string + key._string, clean=False)

    def reverse(self) -> "Key":
        return Key.with_namespaces(reversed(self.list()))

    def is_ancestor_of(self, other: "Key") -> bool:
        """Strict prefix test: Key("/Comedy") is an ancestor of Key("/Comedy/MontyPython")."""
        if other._string == self._string:
            return False
        return other._string.startswith(self._string)

    def is_descendant_of(self, other: "Key") -> bool:
        if other._string == self._string:
            return False
        return self._string.startswith(other._string)

    def is_top_level(self) -> bool:
        return len(self.list()) == 1

    def concat(self, *keys: "Key") -> "Key":
        """Return a new key made of this key followed by all `keys`."""
        namespaces = self.list()
        for key in keys:
            namespaces.extend(key.list())

        return Key.with_namespaces(namespaces)


def namespace_type(namespace: str) -> str:
    """The first component of a namespace: "foo" in "foo:bar"."""
    parts = namespace.split(":")
    if len(parts) < 2:
        return ""
    return ":".join(parts[:-1])


def namespace_value(namespace: str) -> str:
    """The last component of a namespace: "baz" in "foo:bar:baz"."""
    return namespace.split(":")[-1]
