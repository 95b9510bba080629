"""
Human-in-the-loop checkpoints for risky operations.

Operations are scored for risk (low / medium / high / critical) and the
agent's confidence is scored from the evidence it has gathered. A registered
approval handler decides checkpoint requests; without one, everything but
critical operations is approved automatically.
"""

import inspect
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .steps import ToolCall

logger = logging.getLogger(__name__)

LOW = "low"
MEDIUM = "medium"
HIGH = "high"
CRITICAL = "critical"

RISK_ORDER = {LOW: 0, MEDIUM: 1, HIGH: 2, CRITICAL: 3}

CRITICAL_FILE_PATTERNS = [
    re.compile(r"(^|/)package\.json$"),
    re.compile(r"(^|/)tsconfig\.json$"),
    re.compile(r"(^|/)\.env(\..+)?$"),
    re.compile(r"(^|/)config\.(ts|js|json|py|ya?ml|toml)$"),
    re.compile(r"(^|/)pyproject\.toml$"),
    re.compile(r"(^|/)setup\.(py|cfg)$"),
    re.compile(r"(^|/)requirements[^/]*\.txt$"),
]

# rm whose options (in any spelling) include a recursive flag
_RM_RECURSIVE = r"\brm\s+(?=(?:-\S+\s+)*(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\s)(?:-\S+\s+)*"

DANGEROUS_COMMAND_PATTERNS = [
    re.compile(_RM_RECURSIVE + r"/\*?(?=\s|$|[;&|])"),
    re.compile(_RM_RECURSIVE + r"(~|\$HOME|\$\{HOME\})/?\*?(?=\s|$|[;&|])"),
    re.compile(r"\bmkfs(\.\w+)?\b"),
    re.compile(r"\bformat\s+[a-zA-Z]:"),
    re.compile(r"\bdd\s+.*\bof=/dev/"),
    re.compile(r">\s*/dev/(sd|nvme|hd)"),
    # fork bomb, any spacing and any function name: f(){ f|f & };f
    re.compile(r"([:\w]+)\s*\(\)\s*\{\s*\1\s*\|\s*\1\s*&\s*\}\s*;\s*\1"),
]

PROCEED = "proceed"
CAUTION = "caution"
ABORT = "abort"


@dataclass
class CheckpointRequest:
    operation: str
    risk_level: str
    description: str
    file_path: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "risk_level": self.risk_level,
            "description": self.description,
            "file_path": self.file_path,
            "details": self.details,
        }


@dataclass
class CheckpointDecision:
    approved: bool
    reason: Optional[str] = None


@dataclass
class ConfidenceScore:
    score: int
    factors: List[str]
    recommendation: str


@dataclass
class Evidence:
    """What the agent knows about a target before touching it"""
    has_read_file: bool = False
    has_validated: bool = False
    error_count: int = 0


CheckpointHandler = Callable[[CheckpointRequest], Union[CheckpointDecision, Awaitable[CheckpointDecision]]]


def is_critical_file(path: Optional[str]) -> bool:
    if not path:
        return False
    normalized = path.replace(os.sep, "/")
    return any(p.search(normalized) for p in CRITICAL_FILE_PATTERNS)


def is_dangerous_command(command: Optional[str]) -> bool:
    if not command:
        return False
    return any(p.search(command) for p in DANGEROUS_COMMAND_PATTERNS)


def assess_risk_level(operation: str, target: Optional[str] = None) -> str:
    """Risk of `operation` on `target` (a file path, or the command for bash)."""
    if operation in ("delete", "edit") and is_critical_file(target):
        return CRITICAL
    if operation == "delete":
        return HIGH
    if operation == "bash" and is_dangerous_command(target):
        return CRITICAL
    if operation in ("edit", "bash"):
        return MEDIUM
    return LOW


def calculate_confidence(
    operation: str,
    has_read_file: bool = False,
    has_validated: bool = False,
    error_count: int = 0,
) -> ConfidenceScore:
    score = 5
    factors: List[str] = []
    if has_read_file:
        factors.append("target was read before acting")
    if has_validated:
        score += 2
        factors.append("changes were validated")
    if error_count:
        score -= error_count
        factors.append(f"{error_count} prior error(s)")
    if not has_read_file and operation != "create":
        score = min(score, 3)
        factors.append("target was not read first")
    score = max(0, min(10, score))

    if score >= 7:
        recommendation = PROCEED
    elif score >= 4:
        recommendation = CAUTION
    else:
        recommendation = ABORT
    return ConfidenceScore(score=score, factors=factors, recommendation=recommendation)


def operation_for_tool_call(call: ToolCall) -> Dict[str, Optional[str]]:
    """Map a tool call onto (operation, target) for risk scoring."""
    args = call.arguments or {}
    if call.name == "create":
        return {"operation": "create", "target": args.get("path")}
    if call.name == "edit":
        return {"operation": "edit", "target": args.get("path")}
    if call.name == "delete_file":
        return {"operation": "delete", "target": args.get("path")}
    if call.name in ("bash", "run_in_terminal"):
        return {"operation": "bash", "target": args.get("command")}
    return {"operation": call.name, "target": args.get("path")}


class CheckpointGate:
    def __init__(self, handler: Optional[CheckpointHandler] = None):
        self._handler = handler

    def set_handler(self, handler: CheckpointHandler) -> None:
        self._handler = handler

    def clear_handler(self) -> None:
        self._handler = None

    @property
    def has_handler(self) -> bool:
        return self._handler is not None

    async def request_checkpoint(self, request: CheckpointRequest) -> CheckpointDecision:
        if self._handler is not None:
            decision = self._handler(request)
            if inspect.isawaitable(decision):
                decision = await decision
            logger.info(
                f"Checkpoint {request.operation} ({request.risk_level}) "
                f"{'approved' if decision.approved else 'denied'} by handler"
            )
            return decision

        if request.risk_level == CRITICAL:
            logger.warning(f"Denied critical operation without handler: {request.description}")
            return CheckpointDecision(
                approved=False,
                reason="Critical operations require human approval, but no checkpoint handler is configured",
            )
        return CheckpointDecision(approved=True, reason="Auto-approved (non-critical operation)")

    def checkpoint_for_tool_call(self, call: ToolCall, evidence: Optional[Evidence] = None) -> CheckpointRequest:
        ev = evidence or Evidence()
        op = operation_for_tool_call(call)
        operation, target = op["operation"], op["target"]
        risk = assess_risk_level(operation, target)
        confidence = calculate_confidence(operation, ev.has_read_file, ev.has_validated, ev.error_count)
        is_command = operation == "bash"
        description = f"{operation} {target or ''}".strip()
        return CheckpointRequest(
            operation=operation,
            risk_level=risk,
            description=description,
            file_path=None if is_command else target,
            details={
                "tool_call_id": call.id,
                "tool_name": call.name,
                "command": target if is_command else None,
                "confidence": confidence.score,
                "confidence_factors": confidence.factors,
                "recommendation": confidence.recommendation,
            },
        )
