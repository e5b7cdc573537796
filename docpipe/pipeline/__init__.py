"""Pipeline orchestration: the document status state machine and batch runner."""

from docpipe.pipeline.orchestrator import PipelineOrchestrator
from docpipe.pipeline.state_machine import STAGE_TRANSITIONS, StageTransition, cooldown_for

__all__ = [
    "STAGE_TRANSITIONS",
    "PipelineOrchestrator",
    "StageTransition",
    "cooldown_for",
]
