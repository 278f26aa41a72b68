"""Command handlers for the shiori CLI.

Each module handles one group of subcommands:
- sources.py: Extension listing, install, update, uninstall
- library.py: Search, library membership, reading history
- sync.py: Library synchronization
- updates.py: Updates feed
- repo.py: Extension repository index generation
"""

from commands.library import add, history, library, remove, search
from commands.repo import repo_index
from commands.sources import install, list_sources, uninstall, update
from commands.sync import sync
from commands.updates import updates

__all__ = [
    "add",
    "history",
    "install",
    "library",
    "list_sources",
    "remove",
    "repo_index",
    "search",
    "sync",
    "uninstall",
    "update",
    "updates",
]
