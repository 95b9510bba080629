"""
Tests for stop conditions and the LoopController.
"""

from agent.loop_control import (
    LoopController,
    budget_exceeded,
    completion_detected,
    count_tool_errors,
    default_loop_controller,
    error_threshold,
    estimate_cost,
    signals_completion,
    step_count_is,
    timeout_reached,
    tool_sequence_completed,
    validation_passed,
)
from agent.steps import Step, ToolCall, ToolOutcome, Usage

PRICING = {"input": 0.003, "output": 0.015}


def step(text="", calls=(), results=(), input_tokens=0, output_tokens=0):
    return Step(
        text=text,
        tool_calls=[ToolCall(id=f"id-{n}", name=n) for n in calls],
        tool_results=[ToolOutcome(f"id-{n}", n, "out", is_error=err) for n, err in results],
        usage=Usage(input_tokens, output_tokens),
    )


def test_step_count():
    cond = step_count_is(3)
    assert not cond([step(), step()])
    assert cond([step(), step(), step()])


def test_cost_estimate_and_budget():
    steps = [step(input_tokens=1000, output_tokens=1000), step(input_tokens=1000)]
    assert abs(estimate_cost(steps, PRICING) - 0.021) < 1e-9
    assert not budget_exceeded(0.05, PRICING)(steps)
    assert budget_exceeded(0.02, PRICING)(steps)


def test_error_threshold_counts_across_steps():
    steps = [
        step(calls=["edit"], results=[("edit", True)]),
        step(calls=["bash", "read_file"], results=[("bash", True), ("read_file", False)]),
    ]
    assert count_tool_errors(steps) == 2
    assert error_threshold(2)(steps)
    assert not error_threshold(3)(steps)


def test_validation_passed_only_on_last_step():
    ok = step(calls=["validate"], results=[("validate", False)])
    failed = step(calls=["validate"], results=[("validate", True)])
    later = step(calls=["read_file"], results=[("read_file", False)])

    cond = validation_passed()
    assert cond([ok])
    assert not cond([failed])
    assert not cond([ok, later])
    assert not cond([])


def test_completion_signals():
    assert signals_completion("The task is complete.")
    assert signals_completion("All done!")
    assert signals_completion("I have finished the refactor")
    assert not signals_completion("I will now read the file")
    assert not signals_completion("")


def test_completion_requires_no_tool_calls():
    cond = completion_detected()
    assert cond([step(text="Done.")])
    assert not cond([step(text="Done.", calls=["bash"])])
    assert not cond([step(text="Working on it")])


def test_tool_sequence():
    cond = tool_sequence_completed(["read_file", "edit", "validate"])
    assert not cond([step(calls=["read_file"]), step(calls=["validate", "edit"])])
    assert cond([step(calls=["read_file"]), step(calls=["grep_search", "edit"]), step(calls=["validate"])])


def test_timeout():
    now = [0.0]
    cond = timeout_reached(30, clock=lambda: now[0])
    assert not cond([])
    now[0] = 30.0
    assert cond([])


def test_controller_reports_every_matching_reason_in_order():
    controller = LoopController()
    controller.add("steps", step_count_is(1)).add("errors", error_threshold(1)).add("never", lambda s: False)
    decision = controller.should_stop([step(calls=["bash"], results=[("bash", True)])])

    assert decision
    assert decision.reasons == ["steps", "errors"]
    assert decision.reason == "steps"
    assert controller.reasons == ["steps", "errors", "never"]


def test_controller_continue():
    decision = LoopController([("steps", step_count_is(5))]).should_stop([step()])
    assert not decision
    assert decision.reason is None


def test_default_controller(agent_cfg):
    controller = default_loop_controller(agent_cfg, PRICING)
    assert len(controller.reasons) == 5
    steps = [step(calls=["read_file"]) for _ in range(agent_cfg.max_steps)]
    assert controller.should_stop(steps).reason == f"Reached step limit ({agent_cfg.max_steps})"
