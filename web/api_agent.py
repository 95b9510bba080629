"""
Agent run control REST API endpoints.

The UI drives a run through these: start it, watch status and history, answer
tool and checkpoint requests, or stop it.
"""

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from agent import AlreadyRunningError, RunStatus
import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/status")
async def status():
    return _state.get_controller().snapshot()


@router.get("/api/history")
async def history():
    return {"items": _state.get_controller().history_as_dicts()}


@router.get("/api/diagnostics")
async def diagnostics():
    """Circuit breaker states and tracked-file counts."""
    services = _state.get_controller().services
    return {
        "circuit_breakers": services.circuit_breakers.stats(),
        "tracked_files": services.file_tracker.tracked_count,
        "terminal_sessions": _state.get_controller().tools.sessions.ids(),
    }


@router.post("/api/run")
async def run(request: Request):
    body = await request.json()
    user_input = (body.get("input") or "").strip()
    if not user_input:
        return JSONResponse({"ok": False, "error": "input is required"}, status_code=400)
    controller = _state.get_controller()
    try:
        _state.track_task(controller.start_in_background(user_input))
    except AlreadyRunningError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=409)
    return {"ok": True, "status": controller.status.value}


@router.post("/api/stop")
async def stop():
    controller = _state.get_controller()
    controller.stop()
    return {"ok": True, "status": controller.status.value}


def _expect(status: RunStatus):
    controller = _state.get_controller()
    if controller.status != status:
        return controller, JSONResponse(
            {"ok": False, "error": f"Agent is {controller.status.value}, not {status.value}"},
            status_code=409,
        )
    return controller, None


@router.post("/api/tool/confirm")
async def confirm_tool():
    controller, err = _expect(RunStatus.TOOL_REQUEST)
    if err:
        return err
    _state.track_task(asyncio.ensure_future(controller.confirm_tool()))
    return {"ok": True}


@router.post("/api/tool/reject")
async def reject_tool():
    controller, err = _expect(RunStatus.TOOL_REQUEST)
    if err:
        return err
    _state.track_task(asyncio.ensure_future(controller.reject_tool()))
    return {"ok": True}


@router.post("/api/checkpoint/confirm")
async def confirm_checkpoint():
    controller, err = _expect(RunStatus.CHECKPOINT_REQUEST)
    if err:
        return err
    await controller.confirm_checkpoint()
    return {"ok": True, "status": controller.status.value}


@router.post("/api/checkpoint/reject")
async def reject_checkpoint():
    controller, err = _expect(RunStatus.CHECKPOINT_REQUEST)
    if err:
        return err
    _state.track_task(asyncio.ensure_future(controller.reject_checkpoint()))
    return {"ok": True}


@router.post("/api/reset")
async def reset():
    controller = _state.get_controller()
    try:
        controller.reset()
    except AlreadyRunningError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=409)
    return {"ok": True}
