"""
CLI entry point for the Bedrock Agent Runtime web server.

Run:  python -m web [--port 8765] [--dir /path/to/project]
"""

import argparse
import logging
import os

import web.state as _state
from agent import AgentRunController, ResilientLLM, RetryOptions, create_services
from bedrock_service import BedrockService
from config import agent_config, model_config
from tools import ToolExecutor


def _setup_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    for name in ("web", "agent", "tools", "bedrock_service"):
        log = logging.getLogger(name)
        log.setLevel(level)
        if not log.handlers:
            h = logging.StreamHandler()
            h.setLevel(level)
            h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
            log.addHandler(h)


def build_controller(working_directory: str, model_id: str) -> AgentRunController:
    """Wire services, the Bedrock provider and the tool executor into a controller."""
    services = create_services(agent_config)
    provider = BedrockService(model_id=model_id)
    llm = ResilientLLM(
        provider,
        services.circuit_breakers,
        retry_options=RetryOptions.from_config(agent_config),
    )
    tools = ToolExecutor.from_config(services, agent_config, working_directory=working_directory)
    return AgentRunController(llm, tools, services, config=agent_config, model=model_id)


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Bedrock Agent Runtime: HTTP control server")
    parser.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--dir", default=agent_config.working_directory, help="Working directory for the agent")
    parser.add_argument("--model", default=model_config.model_id, help="Bedrock model id")
    parser.add_argument("--auto-approve", action="store_true",
                        help="Let the checkpoint gate approve tool calls without a human")
    args = parser.parse_args()

    working_directory = os.path.abspath(os.path.expanduser(args.dir))
    if not os.path.isdir(working_directory):
        print(f"\n  Error: directory not found: {working_directory}")
        print(f"  Hint: use the full path, e.g. --dir ~/Desktop/my-project\n")
        raise SystemExit(1)

    if args.auto_approve:
        agent_config.auto_approve_tools = True

    _setup_logging(agent_config.log_level)

    _state._controller = build_controller(working_directory, args.model)

    print(f"\n  {agent_config.title}")
    print(f"  http://{args.host}:{args.port}")
    print(f"  Working directory: {working_directory}")
    print(f"  Model: {args.model}")
    if agent_config.auto_approve_tools:
        print(f"  Auto-approve: on (checkpoint gate decides)")
    print()

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
