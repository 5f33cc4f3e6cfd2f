import argparse
import os
from functools import lru_cache
from pathlib import Path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="layerkv",
        description=(
            "Operate a LayerKV datastore.\n\n"
            "LayerKV composes key-value datastores (memory, LMDB, namespaces,\n"
            "mounts, tiers, shards) into a single tree described by a YAML\n"
            "configuration file."
        ),
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to a LayerKV configuration file"
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=(
            "Logging verbosity.\n"
            "Choose among: DEBUG, INFO, WARNING, ERROR, CRITICAL.\n\n"
            "DEBUG    → verbose output, useful for tracing tier and mount lookups.\n"
            "INFO     → standard operational logs (default).\n"
            "WARNING  → only warnings and errors.\n"
            "ERROR    → only errors.\n"
            "CRITICAL → only critical failures."
        ),
    )

    commands = parser.add_subparsers(dest="command", required=True)

    put = commands.add_parser("put", help="Store a value under a key")
    put.add_argument("key", help="Key, for example /users/alice")
    put.add_argument("value", help="Value, stored as UTF-8")

    get = commands.add_parser("get", help="Print the value stored under a key")
    get.add_argument("key")

    has = commands.add_parser("has", help="Tell whether a key is present")
    has.add_argument("key")

    delete = commands.add_parser("delete", help="Remove a key")
    delete.add_argument("key")

    query = commands.add_parser(
        "query",
        help="List the entries of the datastore",
        formatter_class=argparse.RawTextHelpFormatter
    )
    query.add_argument(
        "--prefix",
        type=str,
        default=None,
        help="Only list keys whose string starts with this prefix"
    )
    query.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of entries to list"
    )
    query.add_argument(
        "--offset",
        type=int,
        default=None,
        help="Number of entries to skip first"
    )
    query.add_argument(
        "--keys-only",
        action="store_true",
        help="Print keys without values"
    )

    return parser


@lru_cache
def get_cli_args() -> argparse.Namespace:
    return build_parser().parse_args()


@lru_cache
def get_configfile() -> Path:
    args = get_cli_args()

    # Priority: CLI > ENV > default file in current working directory
    raw = args.config or os.getenv("LAYERKV_CONFIG")

    if raw is None:
        file = Path.cwd() / "layerkv.yaml"
    else:
        file = Path(raw)

    if not file.is_file():
        raise SystemExit(
            f"[config] Configuration file not found: '{file}'.\n"
            "  - Use --config <file.yaml>\n"
            "  - Or set the LAYERKV_CONFIG environment variable\n"
            "  - Or place a 'layerkv.yaml' file in the current working directory."
        )

    return file
