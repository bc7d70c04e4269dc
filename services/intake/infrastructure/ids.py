from __future__ import annotations

import secrets


class HexIdProvider:
    """Ids usable as storage path segments and Redis keys."""

    def __init__(self, prefix: str = "", nbytes: int = 12) -> None:
        self._prefix = prefix
        self._nbytes = nbytes

    def generate(self) -> str:
        token = secrets.token_hex(self._nbytes)
        return f"{self._prefix}_{token}" if self._prefix else token
