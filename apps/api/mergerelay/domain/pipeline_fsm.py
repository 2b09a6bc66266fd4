"""Merge pipeline lifecycle transition rules."""

from enum import Enum

from mergerelay.errors import PipelineTransitionError


class PipelineStage(str, Enum):
    IDLE = "IDLE"
    DOWNLOADING = "DOWNLOADING"
    MERGING = "MERGING"
    UPLOADING = "UPLOADING"
    STREAMING = "STREAMING"
    RETURNING = "RETURNING"
    CLEANUP = "CLEANUP"
    DONE = "DONE"
    FAILED = "FAILED"


_TERMINAL_STATES: set[PipelineStage] = {PipelineStage.DONE}

_ALLOWED_TRANSITIONS: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.IDLE: {PipelineStage.DOWNLOADING, PipelineStage.FAILED},
    PipelineStage.DOWNLOADING: {PipelineStage.MERGING, PipelineStage.FAILED},
    PipelineStage.MERGING: {
        PipelineStage.UPLOADING,
        PipelineStage.STREAMING,
        PipelineStage.RETURNING,
        PipelineStage.FAILED,
    },
    PipelineStage.UPLOADING: {PipelineStage.STREAMING, PipelineStage.RETURNING, PipelineStage.FAILED},
    PipelineStage.STREAMING: {PipelineStage.CLEANUP, PipelineStage.FAILED},
    PipelineStage.RETURNING: {PipelineStage.CLEANUP, PipelineStage.FAILED},
    PipelineStage.FAILED: {PipelineStage.CLEANUP},
    PipelineStage.CLEANUP: {PipelineStage.DONE},
    PipelineStage.DONE: set(),
}


def allowed_next_stages(stage: PipelineStage) -> list[PipelineStage]:
    """Return deterministically ordered allowed successors for a stage."""
    return sorted(_ALLOWED_TRANSITIONS.get(stage, set()), key=lambda s: s.value)


def ensure_transition(old_stage: PipelineStage, new_stage: PipelineStage) -> None:
    """Validate transition according to lifecycle rules."""
    if old_stage in _TERMINAL_STATES:
        raise PipelineTransitionError(f"Terminal stage {old_stage.value} cannot be mutated")

    if new_stage not in _ALLOWED_TRANSITIONS.get(old_stage, set()):
        allowed = ", ".join(s.value for s in allowed_next_stages(old_stage))
        raise PipelineTransitionError(
            f"Invalid stage transition {old_stage.value} -> {new_stage.value} (allowed: {allowed})"
        )
