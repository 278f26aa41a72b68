"""Extension repository maintenance command handler."""

from pathlib import Path

from services.index_service import generate_index
from ui.components import console, sources_table


def repo_index(args, ctx=None) -> int:
    """Regenerate index.json for a repository directory."""
    entries = generate_index(Path(args.directory), strict=args.strict)
    console.print(sources_table([], entries))
    console.print(f"[success]Wrote {Path(args.directory) / 'index.json'}[/success]")
    return 0
