"""Reusable UI components: console, loading(), report tables.

- console: themed rich Console shared by all commands
- loading(): spinner shown while extensions or the repository are busy
- *_table(): rich tables for sources, updates and sync reports
"""

from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.table import Table
from rich.theme import Theme

from models.models import ExtensionDescriptor, ManifestEntry, Manga, SourceState, Update
from models.report import SyncReport, SyncState

# Catppuccin Mocha Theme
CATPPUCCIN_MOCHA = Theme(
    {
        "menu.title": "bold #cba6f7",  # Purple header
        "menu.text": "#cdd6f4",  # Light text
        "menu.muted": "#6c7086",  # Muted gray
        "info": "#89dceb",  # Sky blue for info
        "success": "#a6e3a1",  # Green for success
        "warning": "#f9e2af",  # Yellow for warnings
        "error": "#f38ba8",  # Red for errors
    }
)

console = Console(theme=CATPPUCCIN_MOCHA)

STATE_STYLES = {
    SourceState.INSTALLED: "success",
    SourceState.UPDATE_AVAILABLE: "warning",
    SourceState.DISABLED: "menu.muted",
    SourceState.AVAILABLE: "info",
    SyncState.COMPLETED: "success",
    SyncState.PARTIALLY_FAILED: "warning",
    SyncState.CANCELLED: "menu.muted",
}


@contextmanager
def loading(msg: str = "Loading...") -> Iterator[None]:
    """Display a transient spinner while the block runs.

    Usage:
        with loading("Fetching manifest..."):
            manifest = loader.fetch_manifest()
    """
    with Live(
        Spinner("dots", text=msg),
        console=console,
        refresh_per_second=12.5,
        transient=True,  # Spinner disappears after completion
    ):
        yield


def _styled(state) -> str:
    style = STATE_STYLES.get(state, "menu.text")
    return f"[{style}]{state.value}[/{style}]"


def sources_table(
    descriptors: list[ExtensionDescriptor], manifest: list[ManifestEntry] | None = None
) -> Table:
    """Installed sources, plus repository entries that are not installed."""
    table = Table(title="Sources", header_style="menu.title")
    table.add_column("Key")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Kind")
    table.add_column("State")

    known = set()
    for descriptor in descriptors:
        known.add(descriptor.key)
        table.add_row(
            descriptor.key,
            descriptor.name,
            descriptor.version,
            descriptor.kind.value,
            _styled(descriptor.state),
        )
    for entry in manifest or []:
        if entry.key in known:
            continue
        known.add(entry.key)
        table.add_row(entry.key, entry.name, entry.version, entry.kind.value, _styled(SourceState.AVAILABLE))
    return table


def updates_table(updates: list[Update], mangas: dict[str, Manga]) -> Table:
    table = Table(title="Updates", header_style="menu.title")
    table.add_column("#", justify="right")
    table.add_column("Manga")
    table.add_column("Chapter")
    table.add_column("Discovered")
    table.add_column("")

    for update in updates:
        manga = mangas.get(update.manga_key)
        flags = []
        if not update.seen:
            flags.append("[info]new[/info]")
        if update.backfilled:
            flags.append("[menu.muted]backfilled[/menu.muted]")
        table.add_row(
            str(update.id),
            manga.title if manga else update.manga_key,
            update.chapter_id,
            update.discovered_at.strftime("%Y-%m-%d %H:%M"),
            " ".join(flags),
        )
    return table


def report_table(report: SyncReport) -> Table:
    """One row per source, failures listed below their source."""
    title = f"Sync {_styled(report.state)}"
    table = Table(title=title, header_style="menu.title")
    table.add_column("Source")
    table.add_column("Manga synced", justify="right")
    table.add_column("New chapters", justify="right")
    table.add_column("Failures")

    for source in report.sources:
        failures = [
            f"[error]{failure.kind}[/error] {failure.manga_key or ''} {failure.message}".strip()
            for failure in source.failures
        ]
        if source.skipped:
            failures.append(f"[menu.muted]{len(source.skipped)} skipped (cancelled)[/menu.muted]")
        table.add_row(
            source.source_key,
            str(len(source.mangas)),
            str(sum(len(m.new_chapters) for m in source.mangas)),
            "\n".join(failures) or "[success]-[/success]",
        )
    return table
