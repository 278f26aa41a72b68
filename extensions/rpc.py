"""Shared JSON envelope for out-of-process capabilities.

Request:  {"method": "chapter_list", "params": {"provider_id": "..."}}
Response: {"result": ...} or {"error": {"kind": "rate_limited", "message": "...", "retry_after": 30}}

The "describe" method returns the extension's metadata:
    {"key": ..., "name": ..., "version": ..., "base_url": ..., "headers": {...}, "methods": [...]}
"""

from abc import abstractmethod
from typing import Any

from pydantic import TypeAdapter, ValidationError

from extensions.base import SourceCapability
from models.models import ChapterSummary, MangaDetail, MangaSummary, PageRef
from utils.exceptions import (
    NotFoundError,
    RateLimitedError,
    SourceProtocolError,
    SourceUnreachableError,
)

_manga_list = TypeAdapter(list[MangaSummary])
_chapter_list = TypeAdapter(list[ChapterSummary])
_page_list = TypeAdapter(list[PageRef])


def decode_envelope(source_key: str, payload: Any) -> Any:
    """Return the result of a response envelope or raise its error."""
    if not isinstance(payload, dict):
        raise SourceProtocolError(f"{source_key}: response is not an object", source_key)
    if "error" in payload and payload["error"]:
        error = payload["error"]
        if not isinstance(error, dict):
            raise SourceProtocolError(f"{source_key}: {error}", source_key)
        kind = error.get("kind", "")
        message = error.get("message", "")
        if kind == "not_found":
            raise NotFoundError(f"{source_key}: {message}")
        if kind == RateLimitedError.kind:
            raise RateLimitedError(message, source_key, retry_after=error.get("retry_after"))
        if kind == SourceUnreachableError.kind:
            raise SourceUnreachableError(message, source_key)
        raise SourceProtocolError(message or f"{source_key}: error {kind!r}", source_key)
    if "result" not in payload:
        raise SourceProtocolError(f"{source_key}: response has no result", source_key)
    return payload["result"]


class RpcCapability(SourceCapability):
    """Capability whose methods are forwarded as JSON requests."""

    def __init__(self, key: str, metadata: dict[str, Any] | None = None) -> None:
        self.key = key
        metadata = metadata or {}
        self.name = metadata.get("name", key)
        self.version = metadata.get("version", "0.0.0")
        self.base_url = metadata.get("base_url", "")
        self.headers = dict(metadata.get("headers", {}))

    @abstractmethod
    def _send(self, request: dict[str, Any]) -> Any:
        """Transport one request and return the decoded JSON response."""

    def call(self, method: str, **params) -> Any:
        return decode_envelope(self.key, self._send({"method": method, "params": params}))

    def describe(self) -> dict[str, Any]:
        result = self.call("describe")
        if not isinstance(result, dict):
            raise SourceProtocolError(f"{self.key}: describe returned {type(result).__name__}", self.key)
        return result

    def list_manga(self, query: str, page: int = 1) -> list[MangaSummary]:
        return self._parse(_manga_list, self.call("list_manga", query=query, page=page))

    def manga_detail(self, provider_id: str) -> MangaDetail:
        return self._parse(MangaDetail, self.call("manga_detail", provider_id=provider_id))

    def chapter_list(self, provider_id: str) -> list[ChapterSummary]:
        return self._parse(_chapter_list, self.call("chapter_list", provider_id=provider_id))

    def page_list(self, provider_id: str, chapter_id: str) -> list[PageRef]:
        return self._parse(
            _page_list,
            self.call("page_list", provider_id=provider_id, chapter_id=chapter_id),
        )

    def _parse(self, model, data: Any):
        try:
            if isinstance(model, TypeAdapter):
                return model.validate_python(data)
            return model.model_validate(data)
        except ValidationError as e:
            raise SourceProtocolError(f"{self.key}: unexpected response shape: {e}", self.key) from e
