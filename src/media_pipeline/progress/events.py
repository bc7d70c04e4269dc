"""Progress events relayed per client id, and the snapshot they fold into."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping


class EventKind(str, Enum):
    STAGE = "stage"
    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"


class Stage(str, Enum):
    COMPRESSING = "compressing"
    GENERATING_ASSETS = "generating_assets"
    ASSEMBLING = "assembling"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.COMPRESSING,
    Stage.GENERATING_ASSETS,
    Stage.ASSEMBLING,
)

STAGE_MESSAGES: dict[Stage, str] = {
    Stage.COMPRESSING: "Compressing video...",
    Stage.GENERATING_ASSETS: "Generating thumbnail and previews...",
    Stage.ASSEMBLING: "Publishing files...",
}

TERMINAL_STATUSES = frozenset({"done", "error"})


def stage_index(stage: Stage | str | None) -> int:
    if stage is None:
        return -1
    return STAGE_ORDER.index(Stage(stage))


def clamp_percent(value: float) -> int:
    return max(0, min(100, int(value)))


@dataclass(frozen=True)
class ProgressEvent:
    kind: EventKind
    client_id: str
    stage: Stage | None = None
    percent: int | None = None
    message: str | None = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def stage_entered(cls, client_id: str, stage: Stage | str) -> "ProgressEvent":
        return cls(kind=EventKind.STAGE, client_id=client_id, stage=Stage(stage))

    @classmethod
    def progressed(cls, client_id: str, percent: float) -> "ProgressEvent":
        return cls(
            kind=EventKind.PROGRESS, client_id=client_id, percent=clamp_percent(percent)
        )

    @classmethod
    def done(cls, client_id: str) -> "ProgressEvent":
        return cls(kind=EventKind.DONE, client_id=client_id)

    @classmethod
    def failed(cls, client_id: str, message: str) -> "ProgressEvent":
        return cls(kind=EventKind.ERROR, client_id=client_id, message=message)

    @property
    def terminal(self) -> bool:
        return self.kind in (EventKind.DONE, EventKind.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "clientId": self.client_id,
            "stage": self.stage.value if self.stage else None,
            "percent": self.percent,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProgressEvent":
        stage = payload.get("stage")
        percent = payload.get("percent")
        return cls(
            kind=EventKind(payload["type"]),
            client_id=str(payload["clientId"]),
            stage=Stage(stage) if stage else None,
            percent=int(percent) if percent is not None else None,
            message=payload.get("message"),
            timestamp=float(payload.get("timestamp") or time.time()),
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    """Latest known state for one client id.

    ``apply`` returns ``None`` for events that are not ahead of the snapshot:
    an earlier or repeated stage, a percent that does not move forward within
    the current stage, or anything after a terminal event.
    """

    client_id: str
    status: str = "processing"
    stage: Stage | None = None
    percent: int = 0
    message: str | None = None
    version: int = 0
    updated_at: float = field(default_factory=time.time)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def apply(self, event: ProgressEvent) -> "ProgressSnapshot | None":
        if self.terminal:
            return None

        if event.kind is EventKind.STAGE:
            if event.stage is None or stage_index(event.stage) <= stage_index(self.stage):
                return None
            changes: dict[str, Any] = {
                "stage": event.stage,
                "percent": 0,
                "message": STAGE_MESSAGES.get(event.stage),
            }
        elif event.kind is EventKind.PROGRESS:
            if event.percent is None or event.percent <= self.percent:
                return None
            changes = {"percent": event.percent}
        elif event.kind is EventKind.DONE:
            changes = {"status": "done", "percent": 100, "message": "Processing complete"}
        else:
            changes = {"status": "error", "message": event.message or "Processing failed"}

        return replace(
            self, version=self.version + 1, updated_at=event.timestamp, **changes
        )

    def as_events(self) -> list[ProgressEvent]:
        """Events that rebuild this snapshot for a subscriber that just joined."""
        events: list[ProgressEvent] = []
        if self.stage is not None:
            events.append(
                ProgressEvent(
                    EventKind.STAGE, self.client_id, stage=self.stage,
                    timestamp=self.updated_at,
                )
            )
        if self.percent:
            events.append(
                ProgressEvent(
                    EventKind.PROGRESS, self.client_id, percent=self.percent,
                    timestamp=self.updated_at,
                )
            )
        if self.status == "done":
            events.append(
                ProgressEvent(EventKind.DONE, self.client_id, timestamp=self.updated_at)
            )
        elif self.status == "error":
            events.append(
                ProgressEvent(
                    EventKind.ERROR, self.client_id, message=self.message,
                    timestamp=self.updated_at,
                )
            )
        return events

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "status": self.status,
            "stage": self.stage.value if self.stage else None,
            "percent": self.percent,
            "message": self.message,
            "version": self.version,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProgressSnapshot":
        stage = payload.get("stage")
        return cls(
            client_id=str(payload["clientId"]),
            status=str(payload.get("status") or "processing"),
            stage=Stage(stage) if stage else None,
            percent=int(payload.get("percent") or 0),
            message=payload.get("message") or None,
            version=int(payload.get("version") or 0),
            updated_at=float(payload.get("updatedAt") or time.time()),
        )
