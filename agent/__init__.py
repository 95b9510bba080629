"""
Agent package - bounded, tool-using agent runtime.

This package contains the run controller and the policies it composes:
- events: AgentEvent and RunStatus
- errors: error taxonomy and classification
- retry: retry with exponential backoff
- circuit_breaker: per-dependency circuit breakers and their registry
- file_tracker: file staleness tracking for safe edits
- steps: per-step records (tool calls, outcomes, usage)
- history: typed conversation history, message conversion, context window
- loop_control: stop conditions and the LoopController
- prepare_step: per-step request preparation pipeline
- checkpoints: risk/confidence scoring and the approval gate
- lock, cancellation: single-run lock and cooperative cancellation
- services: shared process-wide services
- llm: LLM provider protocol and resilient wrapper
- core: AgentRunController
"""

from .core import AgentRunController
from .events import AgentEvent, RunStatus
from .errors import (
    AgentError,
    FatalError,
    TransientError,
    ToolError,
    ValidationError,
    FileAlreadyExistsError,
    FileOutdatedError,
    CircuitOpenError,
    AlreadyRunningError,
    RunInterruptedError,
    ClassifiedError,
    classify_error,
)
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState
from .file_tracker import FileTracker
from .retry import RetryOptions, retry_with_backoff
from .steps import ToolCall, ToolOutcome, Step, Usage, ModelResponse
from .loop_control import LoopController, StopDecision
from .prepare_step import StepContext, StepPreparationPipeline, combine_prepare_steps
from .checkpoints import CheckpointGate, CheckpointRequest, CheckpointDecision
from .services import AgentServices, create_services
from .llm import LLMClient, ResilientLLM

__all__ = [
    "AgentRunController",
    "AgentEvent",
    "RunStatus",
    "AgentError",
    "FatalError",
    "TransientError",
    "ToolError",
    "ValidationError",
    "FileAlreadyExistsError",
    "FileOutdatedError",
    "CircuitOpenError",
    "AlreadyRunningError",
    "RunInterruptedError",
    "ClassifiedError",
    "classify_error",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "FileTracker",
    "RetryOptions",
    "retry_with_backoff",
    "ToolCall",
    "ToolOutcome",
    "Step",
    "Usage",
    "ModelResponse",
    "LoopController",
    "StopDecision",
    "StepContext",
    "StepPreparationPipeline",
    "combine_prepare_steps",
    "CheckpointGate",
    "CheckpointRequest",
    "CheckpointDecision",
    "AgentServices",
    "create_services",
    "LLMClient",
    "ResilientLLM",
]
