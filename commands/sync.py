"""Library synchronization command handler."""

import threading

from commands.context import AppContext
from models.report import SyncState
from ui.components import console, loading, report_table


def sync(args, ctx: AppContext) -> int:
    """Run one sync pass (or keep running with --watch MINUTES)."""
    if args.watch:
        stop = threading.Event()
        console.print(f"[info]Syncing every {args.watch} minute(s), Ctrl+C to stop[/info]")
        try:
            ctx.synchronizer.run_forever(args.watch * 60, stop)
        except KeyboardInterrupt:
            stop.set()
            ctx.synchronizer.cancel()
        return 0

    try:
        with loading("Synchronizing library..."):
            report = ctx.synchronizer.run()
    except KeyboardInterrupt:
        ctx.synchronizer.cancel()
        console.print("[warning]Sync cancelled[/warning]")
        return 130

    console.print(report_table(report))
    console.print(f"[info]{report.new_chapter_count} new chapter(s)[/info]")
    return 0 if report.state == SyncState.COMPLETED else 1
