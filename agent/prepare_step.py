"""
Per-step request preparation.

Before each model call the controller runs a pipeline of handlers. A handler
receives a StepContext and returns a partial override dict; recognised keys
are ``messages``, ``model``, ``system``, ``active_tools`` and ``tool_choice``.
Handlers run in order, each seeing the messages and model chosen by the ones
before it, and overrides are merged last-write-wins.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from .loop_control import count_tool_errors
from .steps import Step

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    messages: List[Dict[str, Any]]
    step_number: int
    steps: Sequence[Step] = field(default_factory=list)
    model: str = ""


PrepareStepHandler = Callable[[StepContext], Dict[str, Any]]

CAUTION_CLAUSE = (
    "IMPORTANT: You have encountered multiple errors. Please proceed more carefully, "
    "validate your actions, and read files before editing them."
)
WRAP_UP_CLAUSE = (
    "IMPORTANT: You have taken many steps. Consider summarizing your progress "
    "and focusing on completing the main objective."
)


class StepPreparationPipeline:
    def __init__(self, handlers: Optional[Sequence[PrepareStepHandler]] = None):
        self.handlers: List[PrepareStepHandler] = list(handlers or [])

    def add(self, handler: PrepareStepHandler) -> "StepPreparationPipeline":
        self.handlers.append(handler)
        return self

    def prepare(self, context: StepContext) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        current = context
        for handler in self.handlers:
            result = handler(current) or {}
            merged.update(result)
            if "messages" in result or "model" in result:
                current = replace(
                    current,
                    messages=result.get("messages", current.messages),
                    model=result.get("model", current.model),
                )
        return merged

    __call__ = prepare


def combine_prepare_steps(*handlers: PrepareStepHandler) -> StepPreparationPipeline:
    return StepPreparationPipeline(handlers)


def _keep_first_and_last(messages: List[Dict[str, Any]], keep_last: int) -> List[Dict[str, Any]]:
    if keep_last <= 0:
        return messages[:1]
    return messages[:1] + messages[1:][-keep_last:]


# ------------------------------------------------------------------
# Standard handlers
# ------------------------------------------------------------------

def context_manager(max_messages: int = 20) -> PrepareStepHandler:
    """Keep the first message and the most recent ``max_messages - 1``."""
    def handler(ctx: StepContext) -> Dict[str, Any]:
        if len(ctx.messages) <= max_messages:
            return {}
        return {"messages": _keep_first_and_last(ctx.messages, max_messages - 1)}
    return handler


def tool_result_summarizer(max_length: int = 1000) -> PrepareStepHandler:
    def handler(ctx: StepContext) -> Dict[str, Any]:
        changed = False
        out: List[Dict[str, Any]] = []
        for msg in ctx.messages:
            content = msg.get("content")
            if msg.get("role") == "tool" and isinstance(content, str) and len(content) > max_length:
                msg = dict(msg, content=(
                    content[:max_length]
                    + f"\n\n[Content truncated from {len(content)} to {max_length} characters]"
                ))
                changed = True
            out.append(msg)
        return {"messages": out} if changed else {}
    return handler


def adaptive_system_prompt(base_prompt: str, recent_steps: int = 5, error_limit: int = 2,
                           long_run_step: int = 10) -> PrepareStepHandler:
    """Add a caution clause after repeated tool errors, or a wrap-up clause on long runs."""
    def handler(ctx: StepContext) -> Dict[str, Any]:
        recent = list(ctx.steps)[-recent_steps:]
        if count_tool_errors(recent) >= error_limit:
            return {"system": f"{base_prompt}\n\n{CAUTION_CLAUSE}"}
        if ctx.step_number > long_run_step:
            return {"system": f"{base_prompt}\n\n{WRAP_UP_CLAUSE}"}
        return {"system": base_prompt}
    return handler


def token_budget_manager(max_tokens: int = 2000) -> PrepareStepHandler:
    """Halve the message list, keeping the first message, when over budget."""
    def handler(ctx: StepContext) -> Dict[str, Any]:
        total = sum(math.ceil(len(str(m.get("content", ""))) / 4) for m in ctx.messages)
        if total <= max_tokens:
            return {}
        remainder = len(ctx.messages) - 1
        kept = _keep_first_and_last(ctx.messages, remainder // 2)
        logger.info(f"Token budget {max_tokens} exceeded ({total}), kept {len(kept)} messages")
        return {"messages": kept}
    return handler


PHASE_TOOLS = [
    (2, ["read_file", "read_multiple_files", "list", "grep_search"]),
    (5, ["read_file", "grep_search", "validate", "get_terminal_output"]),
    (10, ["read_file", "create", "edit", "validate"]),
]
FINAL_PHASE_TOOLS = ["validate", "bash", "run_in_terminal", "get_terminal_output", "read_file"]


def phase_based_tool_selector(phases=None, final_tools=None) -> PrepareStepHandler:
    """Explore first, then edit, then verify."""
    phases = phases or PHASE_TOOLS
    final_tools = final_tools or FINAL_PHASE_TOOLS

    def handler(ctx: StepContext) -> Dict[str, Any]:
        for upto, tools in phases:
            if ctx.step_number <= upto:
                return {"active_tools": list(tools), "tool_choice": "auto"}
        return {"active_tools": list(final_tools), "tool_choice": "auto"}
    return handler


def dynamic_model_selector(strong_model: str, switch_at_step: int = 3,
                           min_messages: int = 10) -> PrepareStepHandler:
    def handler(ctx: StepContext) -> Dict[str, Any]:
        if ctx.step_number >= switch_at_step and len(ctx.messages) > min_messages:
            return {"model": strong_model}
        return {}
    return handler


def sequential_workflow(workflow: Sequence[str]) -> PrepareStepHandler:
    """Force tool ``workflow[i]`` on step ``i + 1``."""
    def handler(ctx: StepContext) -> Dict[str, Any]:
        idx = ctx.step_number - 1
        if 0 <= idx < len(workflow):
            tool = workflow[idx]
            return {"active_tools": [tool], "tool_choice": {"type": "tool", "name": tool}}
        return {}
    return handler


def default_pipeline(config, base_prompt: str, strong_model: Optional[str] = None) -> StepPreparationPipeline:
    pipeline = combine_prepare_steps(
        context_manager(config.context_max_messages),
        tool_result_summarizer(config.tool_result_max_chars),
        adaptive_system_prompt(base_prompt),
        token_budget_manager(config.step_token_budget),
    )
    if strong_model and config.model_upgrade_step > 0:
        pipeline.add(dynamic_model_selector(strong_model, config.model_upgrade_step))
    return pipeline
