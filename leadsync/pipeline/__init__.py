"""CRM -> campaign sync pipeline."""

from .exclusions import ExclusionChecker, ExclusionResult
from .orchestrator import PipelineOptions, PipelineOrchestrator, RunGuard
from .builder import build_pipeline, preflight

__all__ = [
    "ExclusionChecker",
    "ExclusionResult",
    "PipelineOptions",
    "PipelineOrchestrator",
    "RunGuard",
    "build_pipeline",
    "preflight",
]
