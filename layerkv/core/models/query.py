from dataclasses import dataclass, field
from typing import Awaitable, Callable

from layerkv.core.key import Key


@dataclass(frozen=True)
class Pair:
    """
    A key associated with its value. This is the record unit stored by
    put_many() and returned by query().
    """
    key: Key
    value: bytes


Filter = Callable[[Pair], bool | Awaitable[bool]]
"""
Predicate applied to every Pair of a query. It may return a plain
bool or an awaitable resolving to one.
"""

Order = Callable[[Pair, Pair], int]
"""
Comparator used to sort query results. Returns a negative number, zero or
a positive number, like the cmp functions accepted by functools.cmp_to_key.
"""


@dataclass
class Query:
    """
    Declarative request over the whole key space of a datastore.

    A Query has no backing store: it only describes which entries
    query() should produce. Every clause is optional and the clauses are
    always applied in the same order, see layerkv.core.storage.pipeline.
    """
    prefix: str | None = None
    """
    Raw string prefix the canonical key must start with. This is not
    hierarchy aware: prefix "/a" matches both "/a/b" and "/ab".
    """

    filters: list[Filter] = field(default_factory=list)
    """
    Predicates combined with a logical AND, applied in list order.
    """

    orders: list[Order] = field(default_factory=list)
    """
    Comparators applied in list order, each one re-sorting the whole
    result set produced so far.
    """

    offset: int | None = None
    """
    Number of leading entries to skip once filtered and ordered.
    """

    limit: int | None = None
    """
    Maximum number of entries to produce.
    """

    keys_only: bool = False
    """
    When set, query() yields bare Keys instead of Pairs.
    """
