import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import Any


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s] : %(message)s',
    )


def replace_start_with(s: str, prefix: str) -> str:
    """Remove `prefix` from the start of `s` if it is there."""
    if prefix and s.startswith(prefix):
        return s[len(prefix):]
    return s


def raise_collected(errors: Sequence[BaseException], message: str) -> None:
    """
    Re-raise the failures collected from several children.

    A single failure is re-raised untouched so that callers can keep
    matching on its type. Several failures are raised together as an
    ExceptionGroup, none of them is dropped.
    """
    if not errors:
        return

    for error in errors:
        # cancellation wins over regular failures
        if not isinstance(error, Exception):
            raise error

    if len(errors) == 1:
        raise errors[0]

    raise ExceptionGroup(message, list(errors))


async def gather_all(*coros: Awaitable[Any], message: str) -> list[Any]:
    """
    Run `coros` concurrently, wait for all of them and report every
    failure through raise_collected().
    """
    results = await asyncio.gather(*coros, return_exceptions=True)
    errors = [r for r in results if isinstance(r, BaseException)]
    raise_collected(errors, message)
    return results
