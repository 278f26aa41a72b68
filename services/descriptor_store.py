"""Extension descriptor store.

Canonical record of known/installed extensions. Side effects are confined to
the database: no network access and no module loading happen here.
"""

from pydantic import ValidationError

from models.models import ExtensionDescriptor, SourceKey, SourceState
from utils.exceptions import NotFoundError, StoreUnavailableError
from utils.logging import get_logger
from utils.storage import Database

logger = get_logger(__name__)

PREFIX = "ext:"


class DescriptorStore:
    """CRUD over ExtensionDescriptor rows."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def list(self) -> list[ExtensionDescriptor]:
        """All known descriptors, sorted by source key."""
        descriptors = []
        for key in self.db.keys(PREFIX):
            raw = self.db.get(key)
            if raw is None:
                continue
            descriptors.append(self._parse(key, raw))
        return descriptors

    def get(self, source_key: SourceKey) -> ExtensionDescriptor:
        """Get a descriptor.

        Raises:
            NotFoundError: If the key is unknown
            StoreUnavailableError: If the database is unreachable
        """
        raw = self.db.get(PREFIX + source_key)
        if raw is None:
            raise NotFoundError(f"Unknown source: {source_key}")
        return self._parse(PREFIX + source_key, raw)

    def upsert(self, descriptor: ExtensionDescriptor) -> None:
        self.db.set(PREFIX + descriptor.key, descriptor.model_dump(mode="json"))
        logger.debug(f"Stored descriptor {descriptor.key} v{descriptor.version} ({descriptor.state.value})")

    def remove(self, source_key: SourceKey) -> None:
        """Delete a descriptor (silently succeeds if key doesn't exist)."""
        self.db.delete(PREFIX + source_key)

    def set_state(self, source_key: SourceKey, state: SourceState) -> ExtensionDescriptor:
        descriptor = self.get(source_key).model_copy(update={"state": state})
        self.upsert(descriptor)
        return descriptor

    def header_policy(self, source_key: SourceKey) -> dict[str, str]:
        """Header overrides the relay applies for this source."""
        return dict(self.get(source_key).headers)

    @staticmethod
    def _parse(key: str, raw: dict) -> ExtensionDescriptor:
        try:
            return ExtensionDescriptor.model_validate(raw)
        except ValidationError as e:
            raise StoreUnavailableError(f"Corrupt descriptor row {key}: {e}") from e
