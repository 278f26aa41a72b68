"""Hotlink-bypass relay.

Image hosts of many sources reject requests that do not look like they come
from the source's own pages. The relay replays such fetches with the
source's header policy and streams the body back unmodified.

Nothing is cached here.
"""

from collections.abc import Iterator
from dataclasses import dataclass

import requests

from models.config import RelaySettings
from models.models import SourceKey
from services.descriptor_store import DescriptorStore
from utils.exceptions import SourceUnreachableError
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RelayResponse:
    """Origin response handed back to the caller."""

    status_code: int
    content_type: str
    _response: requests.Response
    chunk_size: int = 64 * 1024

    def iter_bytes(self) -> Iterator[bytes]:
        """Body chunks as received from the origin. Closes the connection when exhausted."""
        try:
            for chunk in self._response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            raise SourceUnreachableError(f"Relay stream interrupted: {e}") from e
        finally:
            self._response.close()

    def read(self) -> bytes:
        return b"".join(self.iter_bytes())

    def close(self) -> None:
        self._response.close()


class HotlinkRelay:
    """Fetches remote resources on behalf of a source."""

    def __init__(
        self,
        store: DescriptorStore,
        config: RelaySettings,
        session: requests.Session | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.session = session or requests.Session()

    def headers_for(self, source_key: SourceKey) -> dict[str, str]:
        """Outbound headers: defaults first, source overrides win.

        Raises:
            NotFoundError: If the source is unknown
        """
        descriptor = self.store.get(source_key)
        headers = {"User-Agent": self.config.user_agent}
        if descriptor.base_url:
            headers["Referer"] = descriptor.base_url
        headers.update(descriptor.headers)
        return headers

    def fetch(self, source_key: SourceKey, url: str) -> RelayResponse:
        """Fetch a URL with the spoofed headers of a source.

        Raises:
            NotFoundError: If the source is unknown
            SourceUnreachableError: On connection errors, timeouts or an
                error status from the origin
        """
        headers = self.headers_for(source_key)
        try:
            resp = self.session.get(
                url, headers=headers, stream=True, timeout=self.config.timeout_seconds
            )
        except requests.RequestException as e:
            logger.warning(f"Relay fetch for {source_key} failed: {url}: {e}")
            raise SourceUnreachableError(f"Relay fetch failed: {e}", source_key) from e
        try:
            resp.raise_for_status()
        except requests.RequestException as e:
            resp.close()
            logger.warning(f"Relay fetch for {source_key} failed: {url}: {e}")
            raise SourceUnreachableError(f"Relay fetch failed: {e}", source_key) from e

        logger.debug(f"Relaying {url} for {source_key} ({resp.status_code})")
        return RelayResponse(
            status_code=resp.status_code,
            content_type=resp.headers.get("Content-Type", "application/octet-stream"),
            _response=resp,
            chunk_size=self.config.chunk_size,
        )

    def close(self) -> None:
        self.session.close()
