"""
Query pipeline.

A Query is applied to the raw enumeration of a datastore as a chain of
lazy transformations, always in the same order and only for the clauses
the Query sets:

    1. prefix     keep keys whose canonical string starts with q.prefix
    2. filters    keep pairs accepted by every filter, in list order
    3. orders     fully re-sort with every comparator, in list order
    4. offset     skip the first q.offset entries
    5. limit      stop after q.limit entries
    6. keys_only  yield bare keys instead of pairs

Every stage is lazy except the order stages, which need to materialize
everything upstream of them.
"""
from collections.abc import AsyncIterable, AsyncIterator

from layerkv.core.helpers.iterators import afilter, amap, askip, atake, sort_all
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query


def apply_query(
    source: AsyncIterable[Pair],
    q: Query
) -> AsyncIterator[Pair | Key]:
    it: AsyncIterable = source

    if q.prefix is not None:
        prefix = q.prefix
        it = afilter(it, lambda e: str(e.key).startswith(prefix))

    for f in q.filters:
        it = afilter(it, f)

    for order in q.orders:
        it = sort_all(it, order)

    if q.offset is not None:
        it = askip(it, q.offset)

    if q.limit is not None:
        it = atake(it, q.limit)

    if q.keys_only:
        it = amap(it, lambda e: e.key)

    return aiter(it)
