"""Library command handlers.

This module handles:
- Searching a source
- Adding/removing manga to the library
- Reading history
"""

from rich.table import Table

from commands.context import AppContext
from ui.components import console, loading


def search(args, ctx: AppContext) -> int:
    with loading(f"Searching {args.source}..."):
        results = ctx.sources.search(args.source, args.query, args.page)
    if not results:
        console.print("[warning]No results[/warning]")
        return 0

    table = Table(title=f"{args.source}: {args.query}", header_style="menu.title")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("")
    for manga in results:
        table.add_row(manga.provider_id, manga.title, "[success]in library[/success]" if manga.favorite else "")
    console.print(table)
    return 0


def add(args, ctx: AppContext) -> int:
    with loading("Fetching manga..."):
        manga = ctx.sources.add_to_library(args.source, args.id)
    chapters = ctx.repository.get_chapters(manga)
    console.print(f"[success]Added {manga.title} ({len(chapters)} chapters)[/success]")
    return 0


def remove(args, ctx: AppContext) -> int:
    manga = ctx.repository.set_favorite(args.source, args.id, False)
    console.print(f"[success]Removed {manga.title} from library[/success]")
    return 0


def library(args, ctx: AppContext) -> int:
    favorites = ctx.repository.get_favorites()
    if not favorites:
        console.print("[menu.muted]Library is empty[/menu.muted]")
        return 0

    table = Table(title="Library", header_style="menu.title")
    table.add_column("Source")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Last synced")
    for source_key, mangas in favorites.items():
        for manga in mangas:
            synced = manga.last_synced_at.strftime("%Y-%m-%d %H:%M") if manga.last_synced_at else "never"
            table.add_row(source_key, manga.provider_id, manga.title, synced)
    console.print(table)
    return 0


def history(args, ctx: AppContext) -> int:
    entries, cursor = ctx.history.list_history(cursor=args.cursor, limit=args.limit)
    if not entries:
        console.print("[menu.muted]No reading history[/menu.muted]")
        return 0

    table = Table(title="History", header_style="menu.title")
    table.add_column("Manga")
    table.add_column("Chapter")
    table.add_column("Page", justify="right")
    table.add_column("Read at")
    for entry in entries:
        table.add_row(
            entry.manga_key,
            entry.chapter_id,
            "done" if entry.completed else str(entry.last_page_read + 1),
            entry.read_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    if cursor:
        console.print(f"[menu.muted]More: --cursor {cursor}[/menu.muted]")
    return 0
