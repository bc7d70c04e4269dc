from __future__ import annotations

from enum import Enum


class Capability(str, Enum):
    """Outcome of probing an optional external command."""

    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"

    @property
    def usable(self) -> bool:
        return self is not Capability.UNAVAILABLE
