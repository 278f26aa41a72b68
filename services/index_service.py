"""Extension repository index generation.

A repository is a static directory served over HTTP:

    repo/
        index.json
        library/mangasee.py
        library/...

generate_index() loads every module package under ``library/``, checks
that it satisfies the capability contract and writes ``index.json``.
"""

from pathlib import Path

from pydantic import ValidationError

from extensions.base import LIB_VERSION, release
from extensions.module import load_module_capability
from models.models import ExtensionKind, ManifestEntry
from utils.exceptions import IncompatibleExtensionError
from utils.logging import get_logger
from utils.persistence import JSONStore

logger = get_logger(__name__)

LIBRARY_DIR = "library"
INDEX_FILE = "index.json"


def build_entry(package: Path, root: Path) -> ManifestEntry:
    """Describe one module package.

    Raises:
        IncompatibleExtensionError: If the package does not load or verify
    """
    capability = load_module_capability(package, module_stem=f"index_{package.stem}")
    try:
        return ManifestEntry(
            key=capability.key,
            name=getattr(capability, "name", "") or capability.key,
            version=getattr(capability, "version", "0.0.0"),
            lib_version=getattr(capability, "lib_version", LIB_VERSION),
            kind=ExtensionKind.MODULE,
            path=package.relative_to(root).as_posix(),
            icon=getattr(capability, "icon", None),
        )
    except ValidationError as e:
        raise IncompatibleExtensionError(f"{package.name}: invalid metadata: {e}", capability.key) from e
    finally:
        release(capability)


def generate_index(directory: Path, strict: bool = False) -> list[ManifestEntry]:
    """Write ``index.json`` for a repository directory.

    Args:
        directory: Repository root (packages are read from ``library/``)
        strict: Raise on the first broken package instead of skipping it

    Returns:
        The entries written, sorted by key
    """
    root = Path(directory)
    entries: dict[str, ManifestEntry] = {}
    for package in sorted((root / LIBRARY_DIR).glob("*.py")):
        if package.name.startswith("_"):
            continue
        try:
            entry = build_entry(package, root)
        except IncompatibleExtensionError as e:
            if strict:
                raise
            logger.warning(f"Skipping {package.name}: {e}")
            continue
        if entry.key in entries:
            raise IncompatibleExtensionError(
                f"Duplicate source key {entry.key} in {package.name} and {entries[entry.key].path}",
                entry.key,
            )
        entries[entry.key] = entry

    index = [entries[key] for key in sorted(entries)]
    JSONStore(root / INDEX_FILE).save([e.model_dump(mode="json") for e in index])
    logger.info(f"Wrote {len(index)} entr{'y' if len(index) == 1 else 'ies'} to {root / INDEX_FILE}")
    return index
