"""In-process extension modules.

A module package is a single ``.py`` file that defines one class providing
the capability contract (usually a SourceCapability subclass). Optional
module-level ``create(config: dict)`` factory takes precedence.
"""

import importlib.util
import inspect
import sys
from collections.abc import Callable
from pathlib import Path
from types import ModuleType

from extensions.base import SourceCapability, missing_contract_methods
from utils.exceptions import IncompatibleExtensionError
from utils.logging import get_logger

logger = get_logger(__name__)

MODULE_NAMESPACE = "shiori_extensions"


def import_extension_module(path: Path, module_stem: str | None = None) -> ModuleType:
    """Import a package file under a private namespace.

    Raises:
        IncompatibleExtensionError: If the file cannot be imported
    """
    path = Path(path)
    module_name = f"{MODULE_NAMESPACE}.{module_stem or path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise IncompatibleExtensionError(f"Could not load module spec for {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise IncompatibleExtensionError(f"Failed to import extension {path.name}: {e}") from e
    return module


def _find_capability_class(module: ModuleType) -> type | None:
    for _name, obj in inspect.getmembers(module, inspect.isclass):
        if obj.__module__ != module.__name__:
            continue  # imported helpers, SourceCapability itself
        if inspect.isabstract(obj):
            continue
        if issubclass(obj, SourceCapability) or not missing_contract_methods(obj):
            return obj
    return None


def instantiate(factory: Callable[..., object], *args, origin: str = "") -> object:
    """Call an extension's factory or constructor.

    Raises:
        IncompatibleExtensionError: Whatever the extension code raised
    """
    try:
        return factory(*args)
    except Exception as e:
        raise IncompatibleExtensionError(
            f"Cannot instantiate {origin}: {type(e).__name__}: {e}"
        ) from e


def load_module_capability(
    path: Path, config: dict | None = None, module_stem: str | None = None
) -> SourceCapability:
    """Instantiate the capability defined in a module package.

    Raises:
        IncompatibleExtensionError: Missing contract surface or empty key
    """
    module = import_extension_module(path, module_stem)
    factory = getattr(module, "create", None)

    if callable(factory):
        capability = instantiate(factory, config or {}, origin=f"{Path(path).name}:create")
    else:
        cls = _find_capability_class(module)
        if cls is None:
            raise IncompatibleExtensionError(f"No capability class found in {Path(path).name}")
        capability = instantiate(cls, origin=cls.__name__)

    verify_capability(capability, origin=Path(path).name)
    logger.debug(f"Loaded module extension {capability.key} from {path}")
    return capability


def verify_capability(capability: object, origin: str = "") -> None:
    """Check the contract surface and the source key."""
    missing = missing_contract_methods(capability)
    if missing:
        raise IncompatibleExtensionError(
            f"Extension {origin} lacks contract methods: {', '.join(missing)}"
        )
    key = getattr(capability, "key", "")
    if not isinstance(key, str) or not key.strip():
        raise IncompatibleExtensionError(f"Extension {origin} declares no source key")
