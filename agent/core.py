"""
AgentRunController: drives one bounded, tool-using run at a time.

Flow:
1. start() takes the run lock, records the history length and appends the user message
2. Each step: prepare messages, call the model, record the step
3. Read-only tool calls run immediately; anything else waits for approval
   (checkpoint for risky operations, then tool confirmation)
4. After each step the stop conditions are evaluated
5. Errors and interruptions roll history back to where the run started
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from config import agent_config, model_config, get_context_window, get_model_pricing

from .cancellation import CancellationToken
from .checkpoints import (
    CheckpointDecision,
    CheckpointGate,
    CheckpointHandler,
    CheckpointRequest,
    Evidence,
    HIGH,
    RISK_ORDER,
)
from .errors import AlreadyRunningError, RunInterruptedError, ToolError, classify_error
from .events import AgentEvent, RunStatus
from .history import (
    AssistantMessageItem,
    HistoryItem,
    ToolFailureItem,
    ToolRequestItem,
    ToolResultItem,
    UserMessageItem,
    apply_context_window,
    item_to_dict,
    to_messages,
)
from .llm import LLMClient
from .lock import RunLock
from .loop_control import LoopController, count_tool_errors, default_loop_controller, VALIDATE_TOOL
from .prepare_step import StepContext, StepPreparationPipeline, default_pipeline
from .prompts import compose_system_prompt
from .services import AgentServices
from .steps import Step, ToolCall, ToolOutcome

logger = logging.getLogger(__name__)

EventListener = Callable[[AgentEvent], Union[None, Awaitable[None]]]

REJECTED_BY_USER = "Tool call rejected by user. Reconsider the task and propose a different approach."
REJECTED_AT_CHECKPOINT = "Operation rejected by user at checkpoint. Choose a safer approach."


@dataclass
class _Run:
    token: CancellationToken
    start_length: int
    steps: List[Step] = field(default_factory=list)
    pending_calls: Optional[Tuple[ToolCall, ...]] = None
    pending_checkpoint: Optional[CheckpointRequest] = None


class AgentRunController:
    def __init__(
        self,
        llm: LLMClient,
        tools: Any,
        services: AgentServices,
        config=agent_config,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        pipeline: Optional[StepPreparationPipeline] = None,
        loop_controller: Optional[LoopController] = None,
        checkpoint_gate: Optional[CheckpointGate] = None,
        on_event: Optional[EventListener] = None,
        safe_tools: Optional[Sequence[str]] = None,
        context_window: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.llm = llm
        self.tools = tools
        self.services = services
        self.config = config
        self.model = model or model_config.model_id
        self.system_prompt = system_prompt or compose_system_prompt(tools.working_directory, tools.tool_names)
        self.pipeline = pipeline or default_pipeline(config, self.system_prompt, model_config.strong_model_id)
        self.loop_controller = loop_controller or default_loop_controller(config, get_model_pricing(self.model))
        self.gate = checkpoint_gate or CheckpointGate()
        self.on_event = on_event
        self.safe_tools = frozenset(tools.safe_tools if safe_tools is None else safe_tools)
        self.context_window = context_window
        self.lock = RunLock(config.lock_timeout_seconds, clock=clock)

        self._history: List[HistoryItem] = []
        self._status = RunStatus.IDLE
        self._error: Optional[str] = None
        self._run: Optional[_Run] = None
        self._last_steps: List[Step] = []
        self._event_tasks: set = set()
        self.metrics: Dict[str, float] = {
            "llm_requests": 0,
            "tool_calls_success": 0,
            "tool_calls_failed": 0,
            "tool_time_seconds": 0.0,
        }

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def history(self) -> Tuple[HistoryItem, ...]:
        return tuple(self._history)

    @property
    def steps(self) -> Tuple[Step, ...]:
        run = self._run
        return tuple(run.steps if run else self._last_steps)

    @property
    def pending_tool_request(self) -> Optional[Tuple[ToolCall, ...]]:
        run = self._run
        return run.pending_calls if run else None

    @property
    def pending_checkpoint(self) -> Optional[CheckpointRequest]:
        run = self._run
        return run.pending_checkpoint if run else None

    def snapshot(self) -> Dict[str, Any]:
        pending = self.pending_tool_request
        checkpoint = self.pending_checkpoint
        return {
            "status": self._status.value,
            "error": self._error,
            "model": self.model,
            "history_length": len(self._history),
            "steps": len(self.steps),
            "pending_tool_request": [c.to_dict() for c in pending] if pending else None,
            "pending_checkpoint": checkpoint.to_dict() if checkpoint else None,
            "metrics": dict(self.metrics),
        }

    def history_as_dicts(self) -> List[Dict[str, Any]]:
        return [item_to_dict(item) for item in self._history]

    def set_checkpoint_handler(self, handler: CheckpointHandler) -> None:
        self.gate.set_handler(handler)

    def clear_checkpoint_handler(self) -> None:
        self.gate.clear_handler()

    # ------------------------------------------------------------------
    # Events and state transitions
    # ------------------------------------------------------------------

    def _emit(self, type: str, content: str = "", data: Optional[Dict[str, Any]] = None) -> None:
        if self.on_event is None:
            return
        try:
            result = self.on_event(AgentEvent(type=type, content=content, data=data))
        except Exception:
            logger.exception(f"Event listener failed for {type}")
            return
        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug(f"No running loop for async listener, dropped {type} event")
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = loop.create_task(result)
            self._event_tasks.add(task)
            task.add_done_callback(self._event_tasks.discard)

    def _set_status(self, status: RunStatus) -> None:
        if status == self._status:
            return
        logger.info(f"Agent status: {self._status.value} -> {status.value}")
        self._status = status
        self._emit("status", status.value)

    def _append(self, item: HistoryItem) -> None:
        self._history.append(item)
        self._emit("history", data=item_to_dict(item))

    def _rollback(self, run: _Run) -> None:
        removed = len(self._history) - run.start_length
        if removed > 0:
            del self._history[run.start_length:]
            logger.warning(f"Rolled back {removed} history items to length {run.start_length}")

    def _end_run(self, run: _Run) -> None:
        run.pending_calls = None
        run.pending_checkpoint = None
        self._last_steps = run.steps
        self._run = None
        self.lock.release()

    def _finish(self, run: _Run, reason: str) -> None:
        if run is not self._run:
            return
        logger.info(f"Run finished after {len(run.steps)} steps: {reason}")
        self._end_run(run)
        self._set_status(RunStatus.IDLE)
        self._emit("stop", reason)

    def _fail(self, run: _Run, exc: BaseException) -> None:
        if run is not self._run:
            logger.warning(f"Ignoring error from abandoned run: {exc}")
            return
        classified = classify_error(exc)
        logger.error(f"Agent run failed ({classified.kind}): {exc}", exc_info=exc)
        self._rollback(run)
        run.token.cancel()
        self._end_run(run)
        self._error = str(exc)
        self._set_status(RunStatus.ERROR)
        self._emit("error", str(exc), {"kind": classified.kind, "details": classified.details})

    def _interrupt(self, run: _Run) -> None:
        if run is not self._run:
            return
        logger.info("Run interrupted by user")
        self._rollback(run)
        self._end_run(run)
        self._set_status(RunStatus.INTERRUPTED)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._settle()
            return
        loop.call_later(self.config.settle_delay_seconds, self._settle)

    def _settle(self) -> None:
        if self._status == RunStatus.INTERRUPTED:
            self._set_status(RunStatus.IDLE)

    def _suspend(self, run: _Run, calls: Tuple[ToolCall, ...],
                 checkpoint: Optional[CheckpointRequest] = None) -> None:
        run.pending_calls = calls
        run.pending_checkpoint = checkpoint
        if checkpoint is not None:
            self._set_status(RunStatus.CHECKPOINT_REQUEST)
            self._emit("checkpoint_request", checkpoint.description, checkpoint.to_dict())
        else:
            self._set_status(RunStatus.TOOL_REQUEST)
            self._emit("tool_request", data={"calls": [c.to_dict() for c in calls]})

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def _begin(self, user_input: str) -> _Run:
        forced = self.lock.acquire()
        if forced and self._run is not None:
            stale = self._run
            logger.warning("Abandoning stale run")
            stale.token.cancel()
            self._rollback(stale)
            stale.pending_calls = None
            stale.pending_checkpoint = None
            self._run = None
        run = _Run(token=CancellationToken(), start_length=len(self._history))
        self._run = run
        self._error = None
        self._append(UserMessageItem(user_input))
        self._set_status(RunStatus.RESPONDING)
        return run

    async def start(self, user_input: str) -> None:
        """Run the agent on `user_input` until it finishes or suspends for approval.

        Raises AlreadyRunningError while another run holds the lock.
        """
        run = self._begin(user_input)
        await self._drive(run)

    def start_in_background(self, user_input: str) -> "asyncio.Task":
        """Like start(), but lock errors surface here and the run continues as a task."""
        loop = asyncio.get_running_loop()
        run = self._begin(user_input)
        return loop.create_task(self._drive(run))

    def stop(self) -> None:
        run = self._run
        if run is None:
            return
        run.token.cancel()
        if self._status in (RunStatus.TOOL_REQUEST, RunStatus.CHECKPOINT_REQUEST):
            self._interrupt(run)

    async def confirm_tool(self) -> None:
        run = self._run
        if run is None or self._status != RunStatus.TOOL_REQUEST or not run.pending_calls:
            logger.warning(f"confirm_tool ignored in status {self._status.value}")
            return
        calls = run.pending_calls
        run.pending_calls = None

        async def execute() -> bool:
            await self._execute_calls(run, calls)
            return True

        await self._drive(run, first=execute)

    async def reject_tool(self) -> None:
        run = self._run
        if run is None or self._status != RunStatus.TOOL_REQUEST or not run.pending_calls:
            logger.warning(f"reject_tool ignored in status {self._status.value}")
            return
        await self._resume_rejected(run, REJECTED_BY_USER)

    async def confirm_checkpoint(self) -> None:
        run = self._run
        if run is None or self._status != RunStatus.CHECKPOINT_REQUEST:
            logger.warning(f"confirm_checkpoint ignored in status {self._status.value}")
            return
        self._suspend(run, run.pending_calls)

    async def reject_checkpoint(self) -> None:
        run = self._run
        if run is None or self._status != RunStatus.CHECKPOINT_REQUEST:
            logger.warning(f"reject_checkpoint ignored in status {self._status.value}")
            return
        await self._resume_rejected(run, REJECTED_AT_CHECKPOINT)

    async def _resume_rejected(self, run: _Run, reason: str) -> None:
        calls = run.pending_calls
        run.pending_calls = None
        run.pending_checkpoint = None
        self._set_status(RunStatus.RESPONDING)

        async def reject() -> bool:
            self._reject_calls(run, calls, reason)
            return True

        await self._drive(run, first=reject)

    def reset(self) -> None:
        """Clear conversation history. Only allowed while no run is active."""
        if self._run is not None:
            raise AlreadyRunningError("Cannot reset while a run is active")
        self._history = []
        self._last_steps = []
        self._error = None
        self._set_status(RunStatus.IDLE)

    def clear_error(self) -> None:
        if self._status == RunStatus.ERROR:
            self._error = None
            self._set_status(RunStatus.IDLE)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _drive(self, run: _Run, first: Optional[Callable[[], Awaitable[bool]]] = None) -> None:
        try:
            if first is not None:
                if not await first() or self._should_stop(run):
                    return
            while run is self._run:
                if not await self._step(run):
                    return
                if self._should_stop(run):
                    return
        except RunInterruptedError:
            self._interrupt(run)
        except Exception as e:
            self._fail(run, e)

    def _should_stop(self, run: _Run) -> bool:
        if run is not self._run:
            return True
        decision = self.loop_controller.should_stop(run.steps)
        if decision:
            self._finish(run, "; ".join(decision.reasons))
            return True
        return False

    async def _step(self, run: _Run) -> bool:
        """One model turn. Returns False when the run ended or suspended."""
        run.token.raise_if_cancelled()
        self._set_status(RunStatus.RESPONDING)

        messages = to_messages(self._history, self.system_prompt)
        overrides = self.pipeline.prepare(StepContext(
            messages=messages,
            step_number=len(run.steps) + 1,
            steps=list(run.steps),
            model=self.model,
        ))
        messages = list(overrides.get("messages", messages))
        model = overrides.get("model", self.model)
        system = overrides.get("system")
        if system is not None:
            if messages and messages[0].get("role") == "system":
                messages[0] = dict(messages[0], content=system)
            else:
                messages.insert(0, {"role": "system", "content": system})
        messages = apply_context_window(messages, self.context_window or get_context_window(model))
        tools = self.tools.definitions(overrides.get("active_tools"))

        self.metrics["llm_requests"] += 1
        response = await run.token.guard(
            self.llm.step(messages, model, tools=tools, tool_choice=overrides.get("tool_choice"))
        )
        if run is not self._run:
            return False

        step = Step(text=response.text, tool_calls=list(response.tool_calls), usage=response.usage)
        run.steps.append(step)
        if response.text:
            self._append(AssistantMessageItem(response.text))

        if not step.tool_calls:
            self._finish(run, "Model returned no tool calls")
            return False

        calls = tuple(step.tool_calls)
        self._append(ToolRequestItem(calls))
        return await self._route_tool_calls(run, calls)

    async def _route_tool_calls(self, run: _Run, calls: Tuple[ToolCall, ...]) -> bool:
        """Execute, reject or suspend on `calls`. Returns False when suspended."""
        if all(c.name in self.safe_tools for c in calls):
            await self._execute_calls(run, calls)
            return True

        checkpoint = self._riskiest_checkpoint(run, calls)
        if self.gate.has_handler or self.config.auto_approve_tools:
            decision: CheckpointDecision = await run.token.guard(self.gate.request_checkpoint(checkpoint))
            if run is not self._run:
                return False
            if not decision.approved:
                self._reject_calls(run, calls, decision.reason or "Operation denied at checkpoint")
                return True
            if self.config.auto_approve_tools:
                await self._execute_calls(run, calls)
                return True
            self._suspend(run, calls)
            return False

        if RISK_ORDER[checkpoint.risk_level] >= RISK_ORDER[HIGH]:
            self._suspend(run, calls, checkpoint)
        else:
            self._suspend(run, calls)
        return False

    def _riskiest_checkpoint(self, run: _Run, calls: Sequence[ToolCall]) -> CheckpointRequest:
        evidence_base = Evidence(
            has_validated=any(
                r.tool_name == VALIDATE_TOOL and not r.is_error
                for s in run.steps for r in s.tool_results
            ),
            error_count=count_tool_errors(run.steps),
        )
        best: Optional[CheckpointRequest] = None
        for call in calls:
            if call.name in self.safe_tools:
                continue
            path = (call.arguments or {}).get("path")
            evidence = Evidence(
                has_read_file=bool(path) and self.services.file_tracker.is_tracked(self.tools.resolve_path(path)),
                has_validated=evidence_base.has_validated,
                error_count=evidence_base.error_count,
            )
            request = self.gate.checkpoint_for_tool_call(call, evidence)
            if best is None or RISK_ORDER[request.risk_level] > RISK_ORDER[best.risk_level]:
                best = request
        return best

    async def _execute_calls(self, run: _Run, calls: Sequence[ToolCall]) -> None:
        self._set_status(RunStatus.EXECUTING_TOOL)
        step = run.steps[-1]
        for call in calls:
            run.token.raise_if_cancelled()
            started = time.monotonic()
            failure: Optional[ToolError] = None
            try:
                output = await self.tools.execute(call.name, call.arguments, cancel_token=run.token)
            except ToolError as e:
                failure = e
            finally:
                self.metrics["tool_time_seconds"] += time.monotonic() - started

            if run is not self._run:
                logger.warning(f"Dropping {call.name} result from abandoned run")
                raise RunInterruptedError()

            if failure is not None:
                self.metrics["tool_calls_failed"] += 1
                logger.info(f"Tool {call.name} failed: {failure}")
                step.tool_results.append(ToolOutcome(call.id, call.name, str(failure), is_error=True))
                self._append(ToolFailureItem(call.id, call.name, str(failure)))
            else:
                self.metrics["tool_calls_success"] += 1
                step.tool_results.append(ToolOutcome(call.id, call.name, output))
                self._append(ToolResultItem(call.id, call.name, output))
        run.token.raise_if_cancelled()
        self._set_status(RunStatus.RESPONDING)

    def _reject_calls(self, run: _Run, calls: Sequence[ToolCall], reason: str) -> None:
        step = run.steps[-1]
        for call in calls:
            step.tool_results.append(ToolOutcome(call.id, call.name, reason, is_error=True))
            self._append(ToolFailureItem(call.id, call.name, reason))
        self._set_status(RunStatus.RESPONDING)
