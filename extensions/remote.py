"""Remote RPC capability: the extension runs behind an HTTP endpoint."""

from typing import Any

import requests

from extensions.rpc import RpcCapability
from utils.exceptions import RateLimitedError, SourceProtocolError, SourceUnreachableError


def retry_after_seconds(response: requests.Response) -> float | None:
    """Parse a numeric Retry-After header."""
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class RemoteCapability(RpcCapability):
    """POSTs request envelopes to ``endpoint`` with a shared requests.Session."""

    def __init__(
        self,
        key: str,
        endpoint: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(key, metadata)
        self.endpoint = endpoint
        self.timeout = timeout
        self._owns_session = session is None
        self.session = session or requests.Session()

    def _send(self, request: dict[str, Any]) -> Any:
        try:
            resp = self.session.post(self.endpoint, json=request, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceUnreachableError(f"{self.key}: {e}", self.key) from e

        if resp.status_code == 429:
            raise RateLimitedError(
                f"{self.key}: rate limited", self.key, retry_after=retry_after_seconds(resp)
            )
        if resp.status_code >= 500:
            raise SourceUnreachableError(f"{self.key}: HTTP {resp.status_code}", self.key)
        if resp.status_code >= 400:
            raise SourceProtocolError(f"{self.key}: HTTP {resp.status_code}", self.key)
        try:
            return resp.json()
        except ValueError as e:
            raise SourceProtocolError(f"{self.key}: response is not JSON", self.key) from e

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
