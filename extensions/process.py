"""Subprocess-backed capability.

The extension is an executable script. Every call starts it with the
request envelope on stdin and reads the response envelope from stdout, so a
crashing or misbehaving extension never shares memory with shiori.
"""

import json
import subprocess
import sys
from pathlib import Path
from typing import Any

from extensions.rpc import RpcCapability
from utils.exceptions import SourceProtocolError, SourceUnreachableError
from utils.logging import get_logger

logger = get_logger(__name__)


class ProcessCapability(RpcCapability):
    """Runs ``python <script>`` (or ``<script>`` when executable) per call."""

    def __init__(
        self,
        key: str,
        script: Path | str,
        timeout: float = 30.0,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(key, metadata)
        self.script = Path(script)
        self.timeout = timeout

    def _command(self) -> list[str]:
        if self.script.suffix == ".py":
            return [sys.executable, str(self.script)]
        return [str(self.script)]

    def _send(self, request: dict[str, Any]) -> Any:
        try:
            completed = subprocess.run(
                self._command(),
                input=json.dumps(request),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise SourceUnreachableError(f"{self.key}: extension process timed out", self.key) from e
        except OSError as e:
            raise SourceUnreachableError(f"{self.key}: cannot start extension: {e}", self.key) from e

        if completed.returncode != 0:
            logger.debug(f"{self.key} stderr: {completed.stderr.strip()[:500]}")
            raise SourceProtocolError(
                f"{self.key}: extension exited with code {completed.returncode}", self.key
            )
        try:
            return json.loads(completed.stdout)
        except ValueError as e:
            raise SourceProtocolError(f"{self.key}: invalid JSON on stdout", self.key) from e
