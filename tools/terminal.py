"""Shell tools: foreground commands, background terminal sessions, validation."""

import asyncio
import logging
import os
import signal
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from agent.cancellation import CancellationToken
from agent.errors import RunInterruptedError, ToolError, ValidationError
from tools._common import ToolContext, truncate_output

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it spawned."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except (ProcessLookupError, OSError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def _spawn(command: str, cwd: str) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        stdin=asyncio.subprocess.DEVNULL,
        start_new_session=True,  # own process group for clean kill
    )


async def run_foreground(
    command: str,
    cwd: str,
    timeout: float,
    cancel_token: Optional[CancellationToken] = None,
) -> Tuple[int, str]:
    """Run `command` to completion. Returns (exit code, combined output).

    Kills the process group on timeout (ToolError) or cancellation
    (RunInterruptedError).
    """
    proc = await _spawn(command, cwd)
    communicate = asyncio.ensure_future(proc.communicate())
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        done, _ = await asyncio.wait({communicate}, timeout=_POLL_INTERVAL)
        if done:
            break
        if cancel_token is not None and cancel_token.cancelled:
            _kill_process_group(proc)
            await communicate
            logger.info(f"Killed command on interrupt: {command}")
            raise RunInterruptedError()
        if loop.time() >= deadline:
            _kill_process_group(proc)
            await communicate
            raise ToolError(f"Command timed out after {timeout:g}s: {command}", code="timeout")
    stdout, _ = communicate.result()
    return proc.returncode, (stdout or b"").decode("utf-8", errors="replace")


@dataclass
class TerminalSession:
    id: str
    command: str
    process: asyncio.subprocess.Process
    output: List[str] = field(default_factory=list)
    reader: Optional["asyncio.Task"] = None

    @property
    def done(self) -> bool:
        return self.process.returncode is not None and (self.reader is None or self.reader.done())

    @property
    def exit_code(self) -> Optional[int]:
        return self.process.returncode

    def text(self) -> str:
        return "".join(self.output)


class TerminalSessions:
    """Background shell sessions, each with its own output buffer."""

    def __init__(self):
        self._sessions: Dict[str, TerminalSession] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def _next_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"terminal-{self._counter}"

    async def start(self, command: str, cwd: str) -> TerminalSession:
        proc = await _spawn(command, cwd)
        session = TerminalSession(id=self._next_id(), command=command, process=proc)

        async def pump() -> None:
            while True:
                chunk = await proc.stdout.read(4096)
                if not chunk:
                    break
                session.output.append(chunk.decode("utf-8", errors="replace"))
            await proc.wait()
            logger.info(f"{session.id} exited with code {proc.returncode}")

        session.reader = asyncio.ensure_future(pump())
        with self._lock:
            self._sessions[session.id] = session
        logger.info(f"Started {session.id}: {command}")
        return session

    def get(self, session_id: str) -> Optional[TerminalSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def kill_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            _kill_process_group(session.process)


async def bash(ctx: ToolContext, command: str, timeout: Optional[int] = None) -> str:
    """Run a shell command in the foreground."""
    if not (command or "").strip():
        raise ToolError("command is required")
    rc, output = await run_foreground(
        command, ctx.working_directory, timeout or ctx.command_timeout, ctx.cancel_token
    )
    output = truncate_output(output)
    if rc != 0:
        raise ToolError(f"Command exited with code {rc}\nOutput:\n{output}", details={"exit_code": rc})
    return output or "(no output)"


async def run_in_terminal(ctx: ToolContext, command: str, explanation: str = "") -> str:
    """Start a long-running command in a background terminal session."""
    if not (command or "").strip():
        raise ToolError("command is required")
    session = await ctx.sessions.start(command, ctx.working_directory)
    return (
        f"Started {session.id} in the background: {command}\n"
        f"Use get_terminal_output with id '{session.id}' to check on it."
    )


def get_terminal_output(ctx: ToolContext, id: str) -> str:
    """Current output of a background session; finished sessions are removed once reported."""
    session = ctx.sessions.get(id)
    if session is None:
        raise ToolError(f"No terminal session with id {id}")
    output = truncate_output(session.text()) or "(no output yet)"
    if session.done:
        ctx.sessions.remove(id)
        return f"[{id} finished with exit code {session.exit_code}]\n{output}"
    return f"[{id} still running]\n{output}"


def _configured_checks(validate_command: str) -> List[str]:
    # VALIDATE_COMMAND holds one check per line, e.g. "pytest -q\nruff check ."
    return [line.strip() for line in (validate_command or "").splitlines() if line.strip()]


async def validate(ctx: ToolContext) -> str:
    """Run the project's configured checks; all must exit 0.

    The checks come from VALIDATE_COMMAND only. The model cannot pass its
    own commands here, since validate runs without approval.
    """
    checks = _configured_checks(ctx.validate_command)
    if not checks:
        raise ToolError("VALIDATE_COMMAND is not configured")

    violations: List[str] = []
    for check in checks:
        rc, output = await run_foreground(check, ctx.working_directory, ctx.command_timeout, ctx.cancel_token)
        if rc != 0:
            tail = "\n".join(output.strip().splitlines()[-20:])
            violations.append(f"{check} (exit code {rc})\n{tail}")
    if violations:
        raise ValidationError(
            f"Validation failed: {len(violations)} of {len(checks)} checks failed",
            violations=violations,
        )
    return "✅ Validation passed: " + ", ".join(checks)
