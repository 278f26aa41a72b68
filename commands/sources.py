"""Source (extension) management command handlers.

This module handles:
- Listing installed and available sources
- Installing, updating and uninstalling extensions
"""

from commands.context import AppContext
from ui.components import console, loading, sources_table
from utils.exceptions import ExtensionError, NotFoundError


def list_sources(args, ctx: AppContext) -> int:
    """Show installed sources; with --remote also repository entries."""
    manifest = None
    if args.remote:
        with loading("Fetching extension repository..."):
            manifest = ctx.loader.fetch_manifest()
        ctx.loader.refresh_states(manifest)
    console.print(sources_table(ctx.store.list(), manifest))
    return 0


def install(args, ctx: AppContext) -> int:
    if args.builtin:
        descriptors = ctx.loader.register_builtin_plugins([args.key])
        console.print(f"[success]Registered builtin source {descriptors[0].key}[/success]")
        return 0
    with loading(f"Installing {args.key}..."):
        entry = ctx.loader.manifest_entry(args.key)
        descriptor = ctx.loader.install(entry)
    console.print(f"[success]Installed {descriptor.key} v{descriptor.version}[/success]")
    return 0


def update(args, ctx: AppContext) -> int:
    keys = [args.key] if args.key else [d.key for d in ctx.store.list() if d.is_active]
    with loading("Fetching extension repository..."):
        manifest = ctx.loader.fetch_manifest()

    failed = 0
    for key in keys:
        try:
            before = ctx.store.get(key).version
            descriptor = ctx.loader.update(key, manifest)
        except NotFoundError:
            if args.key:
                raise
            continue  # builtin or delisted source
        except ExtensionError as e:
            console.print(f"[error]{key}: {e}[/error]")
            failed += 1
            continue
        if descriptor.version != before:
            console.print(f"[success]Updated {key} {before} -> {descriptor.version}[/success]")
        else:
            console.print(f"[menu.muted]{key} is up to date ({descriptor.version})[/menu.muted]")
    return 1 if failed else 0


def uninstall(args, ctx: AppContext) -> int:
    ctx.loader.uninstall(args.key)
    if args.purge:
        count = ctx.repository.purge_source(args.key)
        console.print(f"[warning]Deleted {count} stored row(s) of {args.key}[/warning]")
    console.print(f"[success]Uninstalled {args.key}[/success]")
    return 0
