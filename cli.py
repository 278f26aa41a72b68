"""CLI entry point for shiori.

Parses arguments, configures logging and dispatches to commands/.
"""

import argparse
import sys

import commands
from commands.context import app_context
from models.config import settings
from ui.components import console
from utils.exceptions import ShioriError
from utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shiori",
        description="Manga source registry and library synchronizer.",
    )
    parser.add_argument("--debug", "-d", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Available commands")

    sources = subparsers.add_parser("sources", help="List sources")
    sources.add_argument("--remote", "-r", action="store_true", help="Include repository entries")
    sources.set_defaults(handler=commands.list_sources)

    install = subparsers.add_parser("install", help="Install an extension")
    install.add_argument("key")
    install.add_argument("--builtin", action="store_true", help="Register a bundled plugin")
    install.set_defaults(handler=commands.install)

    update = subparsers.add_parser("update", help="Update one or all extensions")
    update.add_argument("key", nargs="?")
    update.set_defaults(handler=commands.update)

    uninstall = subparsers.add_parser("uninstall", help="Disable an extension")
    uninstall.add_argument("key")
    uninstall.add_argument("--purge", action="store_true", help="Also delete stored manga of the source")
    uninstall.set_defaults(handler=commands.uninstall)

    search = subparsers.add_parser("search", help="Search a source")
    search.add_argument("source")
    search.add_argument("query", nargs="?", default="")
    search.add_argument("--page", "-p", type=int, default=1)
    search.set_defaults(handler=commands.search)

    add = subparsers.add_parser("add", help="Add a manga to the library")
    add.add_argument("source")
    add.add_argument("id")
    add.set_defaults(handler=commands.add)

    remove = subparsers.add_parser("remove", help="Remove a manga from the library")
    remove.add_argument("source")
    remove.add_argument("id")
    remove.set_defaults(handler=commands.remove)

    library = subparsers.add_parser("library", help="List the library")
    library.set_defaults(handler=commands.library)

    sync = subparsers.add_parser("sync", help="Check the library for new chapters")
    sync.add_argument("--watch", "-w", type=float, metavar="MINUTES", help="Repeat every MINUTES")
    sync.set_defaults(handler=commands.sync)

    updates = subparsers.add_parser("updates", help="Show new chapters")
    updates.add_argument("--all", "-a", action="store_true", help="Include seen updates")
    updates.add_argument("--ack", action="store_true", help="Mark shown updates as seen")
    updates.add_argument("--limit", "-n", type=int, default=None)
    updates.set_defaults(handler=commands.updates)

    history = subparsers.add_parser("history", help="Recently read chapters")
    history.add_argument("--cursor")
    history.add_argument("--limit", "-n", type=int, default=20)
    history.set_defaults(handler=commands.history)

    repo_index = subparsers.add_parser("repo-index", help="Generate index.json for a repository directory")
    repo_index.add_argument("directory")
    repo_index.add_argument("--strict", action="store_true", help="Fail on the first broken package")
    repo_index.set_defaults(handler=commands.repo_index, standalone=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(debug=args.debug)

    try:
        if getattr(args, "standalone", False):
            return args.handler(args)
        with app_context(settings) as ctx:
            return args.handler(args, ctx)
    except ShioriError as e:
        logger.debug(f"{args.command} failed: {e!r}")
        console.print(f"[error]{e}[/error]")
        return 1


def cli() -> None:
    """Entry point for CLI."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
