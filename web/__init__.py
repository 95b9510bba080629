"""
Bedrock Agent Runtime: HTTP control surface.
FastAPI app exposing the agent run controller to a UI.

Run:  python -m web [--port 8765] [--dir /path/to/project]
"""

import logging

from fastapi import FastAPI

import web.state as _state
from web import api_agent

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title="Bedrock Agent Runtime")


@app.on_event("shutdown")
async def _on_shutdown():
    """Stop the active run and kill background terminal sessions."""
    controller = _state._controller
    if controller is None:
        return
    controller.stop()
    controller.tools.sessions.kill_all()
    logger.info("Shutdown: stopped agent and terminal sessions")


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(api_agent.router)
