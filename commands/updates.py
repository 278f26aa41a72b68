"""Updates feed command handler."""

from commands.context import AppContext
from ui.components import console, updates_table
from utils.exceptions import NotFoundError


def updates(args, ctx: AppContext) -> int:
    """Show unseen updates (all with --all); --ack marks them seen."""
    rows = ctx.repository.get_updates(unseen_only=not args.all, limit=args.limit)
    if not rows:
        console.print("[menu.muted]No updates[/menu.muted]")
        return 0

    mangas = {}
    for update in rows:
        if update.manga_key in mangas:
            continue
        try:
            mangas[update.manga_key] = ctx.repository.get_manga(update.source_key, update.manga_id)
        except NotFoundError:
            pass  # purged source
    console.print(updates_table(rows, mangas))

    if args.ack:
        count = ctx.repository.mark_updates_seen([u.id for u in rows])
        console.print(f"[success]Marked {count} update(s) as seen[/success]")
    return 0
