from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class JobStage(str, Enum):
    RECEIVED = "received"
    COMPRESSING = "compressing"
    GENERATING_ASSETS = "generating_assets"
    ASSEMBLING = "assembling"
    DONE = "done"
    ERROR = "error"


_NEXT_STAGE = {
    JobStage.RECEIVED: JobStage.COMPRESSING,
    JobStage.COMPRESSING: JobStage.GENERATING_ASSETS,
    JobStage.GENERATING_ASSETS: JobStage.ASSEMBLING,
    JobStage.ASSEMBLING: JobStage.DONE,
}


class InvalidStageTransition(RuntimeError):
    """Raised when a job skips or re-enters a stage."""


class TranscodeFailed(RuntimeError):
    """Raised when the transcoder exits with a non-zero status."""


class PipelineStageFailure(RuntimeError):
    """A stage could not produce its output."""


@dataclass
class JobState:
    job_id: str
    stage: JobStage = JobStage.RECEIVED
    percent: int = 0

    @property
    def terminal(self) -> bool:
        return self.stage in (JobStage.DONE, JobStage.ERROR)

    def advance(self, stage: JobStage) -> None:
        if _NEXT_STAGE.get(self.stage) is not stage:
            raise InvalidStageTransition(
                f"Job {self.job_id} cannot move from {self.stage.value} to {stage.value}"
            )
        self.stage = stage
        self.percent = 100 if stage is JobStage.DONE else 0

    def record_progress(self, percent: int) -> bool:
        """Store ``percent`` if it moves forward; report whether it did."""
        if self.terminal or percent <= self.percent:
            return False
        self.percent = min(100, percent)
        return True

    def fail(self) -> None:
        if self.terminal:
            raise InvalidStageTransition(
                f"Job {self.job_id} already finished as {self.stage.value}"
            )
        self.stage = JobStage.ERROR
