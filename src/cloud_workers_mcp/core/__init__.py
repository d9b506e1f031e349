"""Session lifecycle: state machine, review rounds and the polling loop."""

from .loop import CloudWorkerLoop, PollError, PollReport
from .outcomes import OutcomeExtractor, fallback_outcomes
from .reviewer import (
    CodexReviewCapability,
    NoPatchContentError,
    ReviewCapability,
    ReviewContext,
    ReviewError,
    ReviewOrchestrator,
    UnavailableReviewCapability,
)
from .state_machine import InvalidTransitionError
from .task_analyzer import TaskAnalysis, analyze_task, suggestion_message

__all__ = [
    "CloudWorkerLoop",
    "CodexReviewCapability",
    "InvalidTransitionError",
    "NoPatchContentError",
    "OutcomeExtractor",
    "PollError",
    "PollReport",
    "ReviewCapability",
    "ReviewContext",
    "ReviewError",
    "ReviewOrchestrator",
    "TaskAnalysis",
    "UnavailableReviewCapability",
    "analyze_task",
    "fallback_outcomes",
    "suggestion_message",
]
