"""
IoT Sentinel Core - Pipeline Orchestration.

Ties together the registry, fingerprint matcher, risk assessor, policy
engine and enforcement dispatcher, and drives periodic re-assessment.
"""

from iotsentinel.core.pipeline import PipelineOrchestrator, ProcessingResult
from iotsentinel.core.scheduler import AssessmentScheduler, CycleResult, is_due

__all__ = [
    "AssessmentScheduler",
    "CycleResult",
    "PipelineOrchestrator",
    "ProcessingResult",
    "is_due",
]
