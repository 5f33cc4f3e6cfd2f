import asyncio
import functools
import inspect
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from typing import Any, Awaitable, TypeVar

from layerkv.core.errors import AbortedError

T = TypeVar("T")
U = TypeVar("U")

AnyIterable = Iterable[T] | AsyncIterable[T]


def check_aborted(signal: asyncio.Event | None) -> None:
    """Raise AbortedError if the cancellation signal has been set."""
    if signal is not None and signal.is_set():
        raise AbortedError()


async def aiterate(
    source: AnyIterable[T],
    signal: asyncio.Event | None = None
) -> AsyncIterator[T]:
    """
    Iterate over a sync or async iterable, checking the abort signal
    before every element.
    """
    check_aborted(signal)
    if isinstance(source, AsyncIterable):
        async for item in source:
            check_aborted(signal)
            yield item
    else:
        for item in source:
            check_aborted(signal)
            yield item


async def afilter(
    source: AsyncIterable[T],
    predicate: Callable[[T], bool | Awaitable[bool]]
) -> AsyncIterator[T]:
    async for item in source:
        keep = predicate(item)
        if inspect.isawaitable(keep):
            keep = await keep
        if keep:
            yield item


async def amap(
    source: AsyncIterable[T],
    func: Callable[[T], U]
) -> AsyncIterator[U]:
    async for item in source:
        yield func(item)


async def askip(source: AsyncIterable[T], count: int) -> AsyncIterator[T]:
    index = 0
    async for item in source:
        if index >= count:
            yield item
        index += 1


async def atake(source: AsyncIterable[T], limit: int) -> AsyncIterator[T]:
    if limit <= 0:
        return

    taken = 0
    async for item in source:
        yield item
        taken += 1
        if taken >= limit:
            return


async def sort_all(
    source: AsyncIterable[T],
    comparator: Callable[[T, T], int]
) -> AsyncIterator[T]:
    """
    Collect every value of `source` then yield them sorted with
    `comparator`. This forces the materialization of the whole upstream.
    """
    values = await collect(source)
    for item in sorted(values, key=functools.cmp_to_key(comparator)):
        yield item


async def chain(*sources: AsyncIterable[T]) -> AsyncIterator[T]:
    for source in sources:
        async for item in source:
            yield item


async def collect(source: AnyIterable[T]) -> list[T]:
    return [item async for item in aiterate(source)]


async def drain(source: AsyncIterable[Any]) -> None:
    async for _ in source:
        pass
