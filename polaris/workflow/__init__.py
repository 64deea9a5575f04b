"""
Workflow - the durable step engine and the workflows that run on it.

The process-message workflow is imported from polaris.workflow.process_message;
it pulls in the agent and tool layers, which themselves use the engine.
"""

from .engine import (
    CancelRule,
    Event,
    FailureContext,
    NonRetriableError,
    RetryPolicy,
    RunCancelled,
    StepContext,
    StepFailedError,
    WorkflowEngine,
)
from .steps import MemoryStepStore, MongoStepStore

__all__ = [
    "CancelRule",
    "Event",
    "FailureContext",
    "MemoryStepStore",
    "MongoStepStore",
    "NonRetriableError",
    "RetryPolicy",
    "RunCancelled",
    "StepContext",
    "StepFailedError",
    "WorkflowEngine",
]
