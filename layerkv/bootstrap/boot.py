import argparse
import asyncio
import logging
import sys

from layerkv.bootstrap.config.loader import get_cli_args
from layerkv.bootstrap.deps import build_datastore, get_config
from layerkv.core.errors import DatastoreError, NotFoundError
from layerkv.core.helpers.utils import setup_logging
from layerkv.core.key import Key
from layerkv.core.models.query import Pair, Query
from layerkv.core.ports.datastore import Datastore

logger = logging.getLogger("bootstrap.boot")


async def run_command(store: Datastore, args: argparse.Namespace) -> int:
    """Run the sub-command held by `args` against `store`, return the exit status."""
    match args.command:
        case "put":
            await store.put(Key(args.key), args.value.encode("utf-8"))

        case "get":
            try:
                value = await store.get(Key(args.key))
            except NotFoundError as ex:
                print(ex, file=sys.stderr)
                return 1
            print(value.decode("utf-8", errors="replace"))

        case "has":
            found = await store.has(Key(args.key))
            print("true" if found else "false")
            return 0 if found else 1

        case "delete":
            await store.delete(Key(args.key))

        case "query":
            q = Query(
                prefix=args.prefix,
                offset=args.offset,
                limit=args.limit,
                keys_only=args.keys_only,
            )
            async for entry in store.query(q):
                if isinstance(entry, Pair):
                    print(f"{entry.key}\t{entry.value.decode('utf-8', errors='replace')}")
                else:
                    print(entry)

    return 0


async def run(args: argparse.Namespace) -> int:
    config = get_config()
    store = await build_datastore(config.datastore)
    try:
        await store.open()
        return await run_command(store, args)
    finally:
        await store.close()


def main():
    cli = get_cli_args()

    setup_logging(cli.log_level)

    try:
        status = asyncio.run(run(cli))
    except DatastoreError as ex:
        logger.error(f"{ex.code}: {ex}")
        status = 2
    except KeyboardInterrupt:
        status = 130

    raise SystemExit(status)
