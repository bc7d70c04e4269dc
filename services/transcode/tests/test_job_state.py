import pytest

from services.transcode.domain.job import InvalidStageTransition, JobStage, JobState
from services.transcode.domain.quality import quality_profile


def test_stages_advance_in_order():
    state = JobState("job")

    for stage in (
        JobStage.COMPRESSING,
        JobStage.GENERATING_ASSETS,
        JobStage.ASSEMBLING,
        JobStage.DONE,
    ):
        state.advance(stage)

    assert state.stage is JobStage.DONE
    assert state.percent == 100


def test_skipping_a_stage_is_rejected():
    state = JobState("job")
    state.advance(JobStage.COMPRESSING)

    with pytest.raises(InvalidStageTransition):
        state.advance(JobStage.ASSEMBLING)


def test_reentering_a_stage_is_rejected():
    state = JobState("job")
    state.advance(JobStage.COMPRESSING)

    with pytest.raises(InvalidStageTransition):
        state.advance(JobStage.COMPRESSING)


def test_error_is_reachable_from_any_running_stage_but_is_final():
    state = JobState("job")
    state.advance(JobStage.COMPRESSING)
    state.fail()

    assert state.stage is JobStage.ERROR
    with pytest.raises(InvalidStageTransition):
        state.fail()
    with pytest.raises(InvalidStageTransition):
        state.advance(JobStage.GENERATING_ASSETS)


def test_progress_is_monotonic_and_reset_per_stage():
    state = JobState("job")
    state.advance(JobStage.COMPRESSING)

    assert state.record_progress(40)
    assert not state.record_progress(30)
    assert state.percent == 40

    state.advance(JobStage.GENERATING_ASSETS)
    assert state.percent == 0


def test_quality_profiles():
    assert quality_profile("high").crf == 18
    assert quality_profile(None).max_width == 1280
    assert quality_profile("LOW").video_bitrate == "500k"
    with pytest.raises(ValueError):
        quality_profile("ultra")
