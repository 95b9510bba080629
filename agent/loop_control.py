"""
Stop conditions for the agent loop.

Each condition is a pure predicate over the steps taken so far. The
LoopController evaluates all of them in registration order after every step
and stops when any one holds.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .steps import Step

StopCondition = Callable[[Sequence[Step]], bool]

VALIDATE_TOOL = "validate"

_DONE_SIGNAL = re.compile(r"\b(complete|completed|finished|done)\b", re.IGNORECASE)

COMPLETION_PHRASES = (
    "task is complete", "task complete", "completed successfully",
    "all done", "implementation is complete", "task has been completed",
    "work is done", "changes have been applied", "successfully implemented",
)


def estimate_cost(steps: Sequence[Step], pricing: Dict[str, float]) -> float:
    """USD cost of `steps` given per-1K token prices {"input": .., "output": ..}"""
    input_tokens = sum(s.usage.input_tokens for s in steps)
    output_tokens = sum(s.usage.output_tokens for s in steps)
    return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1000


def count_tool_errors(steps: Sequence[Step]) -> int:
    return sum(1 for s in steps for r in s.tool_results if r.is_error)


def step_count_is(max_steps: int) -> StopCondition:
    def condition(steps: Sequence[Step]) -> bool:
        return len(steps) >= max_steps
    return condition


def budget_exceeded(max_cost: float, pricing: Dict[str, float]) -> StopCondition:
    def condition(steps: Sequence[Step]) -> bool:
        return estimate_cost(steps, pricing) >= max_cost
    return condition


def error_threshold(max_errors: int) -> StopCondition:
    def condition(steps: Sequence[Step]) -> bool:
        return count_tool_errors(steps) >= max_errors
    return condition


def validation_passed(tool_name: str = VALIDATE_TOOL) -> StopCondition:
    def condition(steps: Sequence[Step]) -> bool:
        if not steps:
            return False
        last = steps[-1]
        if not any(c.name == tool_name for c in last.tool_calls):
            return False
        return any(r.tool_name == tool_name and not r.is_error for r in last.tool_results)
    return condition


def signals_completion(text: str) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return bool(_DONE_SIGNAL.search(text)) or any(p in lowered for p in COMPLETION_PHRASES)


def completion_detected() -> StopCondition:
    def condition(steps: Sequence[Step]) -> bool:
        if not steps:
            return False
        last = steps[-1]
        return not last.tool_calls and signals_completion(last.text)
    return condition


def tool_sequence_completed(sequence: Sequence[str]) -> StopCondition:
    """True once the tools in `sequence` have been called in that order (gaps allowed)."""
    wanted = list(sequence)

    def condition(steps: Sequence[Step]) -> bool:
        idx = 0
        for s in steps:
            for call in s.tool_calls:
                if idx < len(wanted) and call.name == wanted[idx]:
                    idx += 1
        return idx == len(wanted)
    return condition


def timeout_reached(seconds: float, clock: Callable[[], float] = time.monotonic) -> StopCondition:
    """True once `seconds` have passed since the condition was created."""
    started = clock()

    def condition(steps: Sequence[Step]) -> bool:
        return clock() - started >= seconds
    return condition


@dataclass
class StopDecision:
    stop: bool = False
    reasons: List[str] = field(default_factory=list)

    @property
    def reason(self) -> Optional[str]:
        return self.reasons[0] if self.reasons else None

    def __bool__(self) -> bool:
        return self.stop


class LoopController:
    def __init__(self, conditions: Optional[List[Tuple[str, StopCondition]]] = None):
        self._conditions: List[Tuple[str, StopCondition]] = list(conditions or [])

    def add(self, reason: str, condition: StopCondition) -> "LoopController":
        self._conditions.append((reason, condition))
        return self

    @property
    def reasons(self) -> List[str]:
        return [r for r, _ in self._conditions]

    def should_stop(self, steps: Sequence[Step]) -> StopDecision:
        reasons = [reason for reason, condition in self._conditions if condition(steps)]
        return StopDecision(stop=bool(reasons), reasons=reasons)


def default_loop_controller(config, pricing: Dict[str, float]) -> LoopController:
    """Standard stop conditions: step cap, cost cap, error cap, validation, completion."""
    return LoopController([
        (f"Reached step limit ({config.max_steps})", step_count_is(config.max_steps)),
        (f"Cost budget exhausted (${config.max_cost_usd:.2f})", budget_exceeded(config.max_cost_usd, pricing)),
        (f"Too many tool errors ({config.error_threshold})", error_threshold(config.error_threshold)),
        ("Validation passed", validation_passed()),
        ("Task completion detected", completion_detected()),
    ])
