"""Custom exception hierarchy for shiori.

Provides specific exception types for different failure scenarios,
making error handling more precise and testable.

Extension calls may only surface the three SourceError subclasses
(SourceUnreachableError, SourceProtocolError, RateLimitedError).
"""


class ShioriError(Exception):
    """Base exception for all shiori errors."""

    pass


class NotFoundError(ShioriError):
    """Raised when a referenced entity (source, manga, chapter) is absent."""

    pass


class StoreUnavailableError(ShioriError):
    """Raised when the backing store cannot be reached (transient)."""

    pass


class PersistenceError(ShioriError):
    """Raised when JSON file I/O operations fail."""

    pass


class ConfigError(ShioriError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidCursorError(ShioriError):
    """Raised when a pagination cursor cannot be decoded."""

    pass


# ========== Extension lifecycle ==========


class ExtensionError(ShioriError):
    """Base class for install/update/resolve failures."""

    def __init__(self, message: str = "", source_key: str | None = None):
        super().__init__(message)
        self.source_key = source_key


class IncompatibleExtensionError(ExtensionError):
    """Raised when a package does not implement the capability contract."""

    pass


class FetchFailedError(ExtensionError):
    """Raised when the remote extension repository is unreachable."""

    pass


class AlreadyInstalledError(ExtensionError):
    """Raised when an equal-or-newer version of the extension is installed."""

    pass


class NotInstalledError(ExtensionError):
    """Raised when resolving a source that is not installed (or disabled)."""

    pass


# ========== Capability calls ==========


class SourceError(ShioriError):
    """Base class for failures surfaced by a capability call or the relay."""

    kind = "source_error"

    def __init__(self, message: str = "", source_key: str | None = None):
        super().__init__(message)
        self.source_key = source_key


class SourceUnreachableError(SourceError):
    """Network-level failure, including call timeouts."""

    kind = "source_unreachable"


class SourceProtocolError(SourceError):
    """Provider response did not parse into the expected shape."""

    kind = "source_protocol_error"


class RateLimitedError(SourceError):
    """Provider signaled backoff. Callers must not retry immediately."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str = "",
        source_key: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, source_key)
        self.retry_after = retry_after


SOURCE_ERROR_KINDS = {
    cls.kind: cls for cls in (SourceUnreachableError, SourceProtocolError, RateLimitedError)
}
