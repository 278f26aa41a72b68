"""Extension loader: install, update, uninstall and resolve source extensions.

Installed capabilities live in a copy-on-write dict, so resolve() never
waits on an install, update or uninstall in progress. Lifecycle operations
are serialized per source key only.
"""

import importlib
import json
import re
import threading
from os import listdir
from os.path import abspath, dirname, isfile, join
from pathlib import Path

import requests
from pydantic import TypeAdapter, ValidationError

from extensions.base import CONTRACT_METHODS, LIB_VERSION, SourceCapability, release
from extensions.module import instantiate, load_module_capability, verify_capability
from extensions.process import ProcessCapability
from extensions.remote import RemoteCapability
from extensions.rpc import RpcCapability
from models.config import ExtensionSettings
from models.models import (
    ExtensionDescriptor,
    ExtensionKind,
    ManifestEntry,
    SourceKey,
    SourceState,
)
from services.descriptor_store import DescriptorStore
from utils.exceptions import (
    AlreadyInstalledError,
    FetchFailedError,
    IncompatibleExtensionError,
    NotFoundError,
    NotInstalledError,
    SourceError,
)
from utils.locks import KeyedLocks
from utils.logging import get_logger
from utils.versions import compare_versions, parse_version

logger = get_logger(__name__)

BUILTIN_PREFIX = "builtin:"
_manifest_adapter = TypeAdapter(list[ManifestEntry])


def get_resource_path(relative_path):
    """Get the path to bundled resources (the builtin plugins/ directory)."""
    return join(dirname(dirname(abspath(__file__))), relative_path)


def _module_stem(key: str, version: str) -> str:
    return re.sub(r"\W", "_", f"{key}_{version}")


class ExtensionLoader:
    """Resolves source keys to invocable capabilities and manages artifacts."""

    def __init__(
        self,
        store: DescriptorStore,
        config: ExtensionSettings,
        session: requests.Session | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.session = session or requests.Session()
        self._capabilities: dict[SourceKey, SourceCapability] = {}
        self._publish_lock = threading.Lock()
        self._key_locks = KeyedLocks()

    # ========== Registry ==========

    def _publish(self, key: SourceKey, capability: SourceCapability | None) -> None:
        """Swap the capability for a key; readers see old or new, never a partial dict."""
        with self._publish_lock:
            capabilities = dict(self._capabilities)
            previous = capabilities.pop(key, None)
            if capability is not None:
                capabilities[key] = capability
            self._capabilities = capabilities
        if previous is not None and previous is not capability:
            release(previous)

    def loaded(self) -> list[SourceKey]:
        """Keys of capabilities currently held in memory."""
        return sorted(self._capabilities)

    def resolve(self, key: SourceKey) -> SourceCapability:
        """Get the invocable capability for a source.

        Raises:
            NotInstalledError: Unknown, disabled or unloadable source
        """
        capability = self._capabilities.get(key)
        if capability is not None:
            return capability

        with self._key_locks.hold(key):
            capability = self._capabilities.get(key)
            if capability is not None:
                return capability
            try:
                descriptor = self.store.get(key)
            except NotFoundError as e:
                raise NotInstalledError(f"Source {key} is not installed", key) from e
            if not descriptor.is_active:
                raise NotInstalledError(f"Source {key} is {descriptor.state.value}", key)
            try:
                capability = self._build_from_descriptor(descriptor)
            except IncompatibleExtensionError as e:
                raise NotInstalledError(f"Source {key} failed to load: {e}", key) from e
            self._publish(key, capability)
            return capability

    def register(self, capability: SourceCapability, package: str = "") -> ExtensionDescriptor:
        """Register an in-process capability (builtin plugins, tests).

        Args:
            capability: Capability instance honoring the contract
            package: Optional "builtin:module:Class" reference for reloads
        """
        verify_capability(capability, origin=type(capability).__name__)
        descriptor = ExtensionDescriptor(
            key=capability.key,
            name=getattr(capability, "name", "") or capability.key,
            version=getattr(capability, "version", "0.0.0"),
            lib_version=getattr(capability, "lib_version", LIB_VERSION),
            base_url=getattr(capability, "base_url", ""),
            headers=dict(getattr(capability, "headers", None) or {}),
            kind=ExtensionKind.MODULE,
            package=package,
            state=SourceState.INSTALLED,
        )
        with self._key_locks.hold(capability.key):
            self.store.upsert(descriptor)
            self._publish(capability.key, capability)
        logger.info(f"Registered source {capability.key} v{capability.version}")
        return descriptor

    def register_builtin_plugins(self, plugins: list[str] | None = None) -> list[ExtensionDescriptor]:
        """Register the bundled plugins/ modules.

        Args:
            plugins: Optional list of module names to load (default: all)
        """
        path = get_resource_path("plugins/")
        system = {"__init__.py"}
        names = (
            plugins
            if plugins is not None
            else sorted(
                file[:-3]
                for file in listdir(path)
                if isfile(join(path, file)) and file.endswith(".py") and file not in system
            )
        )
        descriptors = []
        for name in names:
            try:
                module = importlib.import_module("plugins." + name)
            except ImportError as e:
                raise NotFoundError(f"No builtin plugin named {name}") from e
            capability = instantiate(module.create, {}, origin=f"plugins.{name}:create")
            reference = f"{BUILTIN_PREFIX}plugins.{name}"
            descriptors.append(self.register(capability, package=reference))
        return descriptors

    # ========== Remote repository ==========

    def fetch_manifest(self) -> list[ManifestEntry]:
        """Download and parse the repository's index.json.

        Raises:
            FetchFailedError: Repository unreachable or manifest malformed
        """
        url = f"{self.config.repository_url.rstrip('/')}/index.json"
        try:
            resp = self.session.get(url, timeout=self.config.fetch_timeout_seconds)
            resp.raise_for_status()
            return _manifest_adapter.validate_python(resp.json())
        except requests.RequestException as e:
            raise FetchFailedError(f"Cannot fetch extension manifest: {e}") from e
        except (ValueError, ValidationError) as e:
            raise FetchFailedError(f"Malformed extension manifest at {url}: {e}") from e

    def manifest_entry(self, key: SourceKey, manifest: list[ManifestEntry] | None = None) -> ManifestEntry:
        """Latest manifest entry for a key.

        Raises:
            NotFoundError: If the repository does not list the key
        """
        manifest = manifest if manifest is not None else self.fetch_manifest()
        entries = [entry for entry in manifest if entry.key == key]
        if not entries:
            raise NotFoundError(f"Extension {key} is not in the repository")
        return max(entries, key=lambda entry: parse_version(entry.version))

    def _download(self, entry: ManifestEntry) -> bytes:
        url = f"{self.config.repository_url.rstrip('/')}/{entry.path.lstrip('/')}"
        try:
            resp = self.session.get(url, timeout=self.config.fetch_timeout_seconds)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise FetchFailedError(f"Cannot download {entry.key} from {url}: {e}", entry.key) from e
        return resp.content

    # ========== Lifecycle ==========

    def install(self, entry: ManifestEntry) -> ExtensionDescriptor:
        """Install an extension from a manifest entry.

        Returns the existing descriptor unchanged when the same version is
        already installed.

        Raises:
            AlreadyInstalledError: A newer version is installed
            FetchFailedError: Repository unreachable
            IncompatibleExtensionError: Contract surface missing or key mismatch
        """
        with self._key_locks.hold(entry.key):
            existing = self._existing(entry.key)
            if existing is not None and existing.is_active:
                order = compare_versions(entry.version, existing.version)
                if order == 0:
                    logger.debug(f"{entry.key} v{existing.version} already installed")
                    return existing
                if order < 0:
                    raise AlreadyInstalledError(
                        f"{entry.key} v{existing.version} is newer than v{entry.version}",
                        entry.key,
                    )

            self._check_lib_version(entry)
            payload = self._download(entry)
            package_path = self._stage(entry, payload)
            try:
                capability, package = self._build_from_entry(entry, payload, package_path)
            except Exception:
                if package_path is not None:
                    package_path.unlink(missing_ok=True)
                raise

            descriptor = ExtensionDescriptor(
                key=entry.key,
                name=entry.name,
                version=entry.version,
                lib_version=entry.lib_version,
                base_url=getattr(capability, "base_url", ""),
                headers=dict(getattr(capability, "headers", None) or {}),
                kind=entry.kind,
                package=package,
                icon=entry.icon,
                state=SourceState.INSTALLED,
            )
            self.store.upsert(descriptor)
            self._publish(entry.key, capability)
            if existing is not None:
                self._discard_package(existing, keep=package)

        logger.info(f"Installed {entry.key} v{entry.version} ({entry.kind.value})")
        return descriptor

    def update(self, key: SourceKey, manifest: list[ManifestEntry] | None = None) -> ExtensionDescriptor:
        """Install the latest repository version of an installed extension.

        No-op (returns the current descriptor) when already current.

        Raises:
            NotInstalledError: Key unknown locally or disabled
            NotFoundError: Key not listed in the repository
        """
        current = self._existing(key)
        if current is None or not current.is_active:
            raise NotInstalledError(f"Source {key} is not installed", key)

        entry = self.manifest_entry(key, manifest)
        if compare_versions(entry.version, current.version) <= 0:
            if current.state == SourceState.UPDATE_AVAILABLE:
                return self.store.set_state(key, SourceState.INSTALLED)
            return current
        return self.install(entry)

    def uninstall(self, key: SourceKey) -> ExtensionDescriptor:
        """Disable a source and release its capability.

        Manga, chapters, pages and history of the source are kept.

        Raises:
            NotInstalledError: Unknown key
        """
        with self._key_locks.hold(key):
            descriptor = self._existing(key)
            if descriptor is None:
                raise NotInstalledError(f"Source {key} is not installed", key)
            descriptor = self.store.set_state(key, SourceState.DISABLED)
            self._publish(key, None)
            self._discard_package(descriptor)
        logger.info(f"Uninstalled {key}")
        return descriptor

    def refresh_states(self, manifest: list[ManifestEntry] | None = None) -> list[ExtensionDescriptor]:
        """Flag installed extensions that have a newer repository version."""
        manifest = manifest if manifest is not None else self.fetch_manifest()
        latest: dict[SourceKey, ManifestEntry] = {}
        for entry in manifest:
            known = latest.get(entry.key)
            if known is None or compare_versions(entry.version, known.version) > 0:
                latest[entry.key] = entry

        descriptors = []
        for descriptor in self.store.list():
            entry = latest.get(descriptor.key)
            if descriptor.is_active and entry is not None:
                newer = compare_versions(entry.version, descriptor.version) > 0
                state = SourceState.UPDATE_AVAILABLE if newer else SourceState.INSTALLED
                if state != descriptor.state:
                    descriptor = self.store.set_state(descriptor.key, state)
            descriptors.append(descriptor)
        return descriptors

    def close(self) -> None:
        for key in self.loaded():
            self._publish(key, None)
        self.session.close()

    # ========== Internals ==========

    def _existing(self, key: SourceKey) -> ExtensionDescriptor | None:
        try:
            return self.store.get(key)
        except NotFoundError:
            return None

    @staticmethod
    def _check_lib_version(entry: ManifestEntry) -> None:
        if parse_version(entry.lib_version)[0] != parse_version(LIB_VERSION)[0]:
            raise IncompatibleExtensionError(
                f"{entry.key} targets contract v{entry.lib_version}, host provides v{LIB_VERSION}",
                entry.key,
            )

    def _stage(self, entry: ManifestEntry, payload: bytes) -> Path | None:
        if entry.kind == ExtensionKind.REMOTE:
            return None
        directory = Path(self.config.extensions_dir)
        directory.mkdir(parents=True, exist_ok=True)
        suffix = Path(entry.path).suffix or ".py"
        path = directory / f"{_module_stem(entry.key, entry.version)}{suffix}"
        path.write_bytes(payload)
        if entry.kind == ExtensionKind.PROCESS and suffix != ".py":
            path.chmod(0o755)
        return path

    def _build_from_entry(
        self, entry: ManifestEntry, payload: bytes, package_path: Path | None
    ) -> tuple[SourceCapability, str]:
        if entry.kind == ExtensionKind.MODULE:
            capability = load_module_capability(
                package_path, module_stem=_module_stem(entry.key, entry.version)
            )
            package = str(package_path)
        elif entry.kind == ExtensionKind.PROCESS:
            capability = ProcessCapability(
                entry.key, package_path, timeout=self.config.call_timeout_seconds
            )
            self._describe(capability)
            package = str(package_path)
        else:
            endpoint = self._remote_endpoint(entry, payload)
            capability = RemoteCapability(
                entry.key, endpoint, timeout=self.config.call_timeout_seconds, session=self.session
            )
            self._describe(capability)
            package = endpoint

        if capability.key != entry.key:
            release(capability)
            raise IncompatibleExtensionError(
                f"Package declares key {capability.key!r}, manifest says {entry.key!r}", entry.key
            )
        return capability, package

    @staticmethod
    def _remote_endpoint(entry: ManifestEntry, payload: bytes) -> str:
        try:
            endpoint = json.loads(payload)["endpoint"]
        except (ValueError, KeyError, TypeError) as e:
            raise IncompatibleExtensionError(f"{entry.key}: remote package has no endpoint", entry.key) from e
        if not isinstance(endpoint, str) or not endpoint.startswith(("http://", "https://")):
            raise IncompatibleExtensionError(f"{entry.key}: invalid endpoint {endpoint!r}", entry.key)
        return endpoint

    @staticmethod
    def _describe(capability: RpcCapability) -> None:
        """Handshake with an out-of-process extension and adopt its metadata."""
        try:
            meta = capability.describe()
        except SourceError as e:
            capability.close()
            raise IncompatibleExtensionError(f"{capability.key}: describe failed: {e}", capability.key) from e
        missing = [name for name in CONTRACT_METHODS if name not in meta.get("methods", [])]
        if missing:
            capability.close()
            raise IncompatibleExtensionError(
                f"{capability.key} lacks contract methods: {', '.join(missing)}", capability.key
            )
        declared = meta.get("key")
        if not isinstance(declared, str) or not declared.strip():
            capability.close()
            raise IncompatibleExtensionError(f"{capability.key} declares no source key", capability.key)
        capability.key = declared
        capability.name = meta.get("name", capability.name)
        capability.version = meta.get("version", capability.version)
        capability.base_url = meta.get("base_url", capability.base_url)
        capability.headers = dict(meta.get("headers") or {})

    def _build_from_descriptor(self, descriptor: ExtensionDescriptor) -> SourceCapability:
        metadata = descriptor.model_dump(include={"name", "version", "base_url", "headers"})
        if descriptor.package.startswith(BUILTIN_PREFIX):
            module_name = descriptor.package[len(BUILTIN_PREFIX):]
            try:
                module = importlib.import_module(module_name)
            except Exception as e:
                raise IncompatibleExtensionError(f"Cannot import {module_name}: {e}", descriptor.key) from e
            factory = getattr(module, "create", None)
            if not callable(factory):
                raise IncompatibleExtensionError(f"{module_name} has no create() factory", descriptor.key)
            capability = instantiate(factory, {}, origin=f"{module_name}:create")
            verify_capability(capability, origin=module_name)
            return capability
        if descriptor.kind == ExtensionKind.MODULE:
            path = Path(descriptor.package)
            if not path.is_file():
                raise IncompatibleExtensionError(f"Package missing: {path}", descriptor.key)
            return load_module_capability(path, module_stem=_module_stem(descriptor.key, descriptor.version))
        if descriptor.kind == ExtensionKind.PROCESS:
            if not Path(descriptor.package).is_file():
                raise IncompatibleExtensionError(f"Package missing: {descriptor.package}", descriptor.key)
            return ProcessCapability(
                descriptor.key,
                descriptor.package,
                timeout=self.config.call_timeout_seconds,
                metadata=metadata,
            )
        return RemoteCapability(
            descriptor.key,
            descriptor.package,
            timeout=self.config.call_timeout_seconds,
            session=self.session,
            metadata=metadata,
        )

    def _discard_package(self, descriptor: ExtensionDescriptor, keep: str | None = None) -> None:
        if descriptor.kind == ExtensionKind.REMOTE or descriptor.package.startswith(BUILTIN_PREFIX):
            return
        if not descriptor.package or descriptor.package == keep:
            return
        try:
            Path(descriptor.package).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove old package {descriptor.package}: {e}")
