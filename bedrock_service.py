"""
Amazon Bedrock service module.
LLM provider for the agent loop: converts provider-neutral chat messages to the
Anthropic Messages format, invokes the model and maps AWS errors onto the
runtime's error taxonomy.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from agent.errors import AgentError, FatalError, TransientError, error_from_status
from agent.steps import ModelResponse, ToolCall, Usage
from config import aws_config, model_config, get_credentials_info, get_max_output_tokens

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"

_AUTH_ERROR_CODES = {
    "ExpiredTokenException", "InvalidSignatureException",
    "UnrecognizedClientException", "AccessDeniedException",
}
_THROTTLE_ERROR_CODES = {"ThrottlingException", "TooManyRequestsException"}
_UNAVAILABLE_ERROR_CODES = {
    "ServiceUnavailableException", "InternalServerException",
    "ModelNotReadyException", "ModelTimeoutException",
}
_INVALID_REQUEST_CODES = {"ValidationException", "ResourceNotFoundException", "ModelErrorException"}


def map_client_error(e: ClientError) -> AgentError:
    """Translate a botocore ClientError into a FatalError or TransientError."""
    error = e.response.get("Error", {})
    code = error.get("Code", "Unknown")
    message = error.get("Message", str(e))
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

    if code in _AUTH_ERROR_CODES:
        return FatalError(f"Authentication failed ({code}): {message}", code="auth_error",
                          details={"aws_code": code})
    if code in _THROTTLE_ERROR_CODES:
        return error_from_status(429, f"{code}: {message}")
    if code == "ModelTimeoutException":
        return TransientError(f"Model timeout: {message}", code="timeout", details={"aws_code": code})
    if code in _UNAVAILABLE_ERROR_CODES:
        return error_from_status(status if status >= 500 else 503, f"{code}: {message}")
    if code in _INVALID_REQUEST_CODES:
        return FatalError(f"Invalid request ({code}): {message}", code="invalid_request",
                          details={"aws_code": code})
    if status:
        return error_from_status(status, f"{code}: {message}")
    return TransientError(f"Network error: {code}: {message}", code="network_error")


def _text_block(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def format_messages(messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Convert neutral chat messages into (system prompt, Anthropic messages).

    Consecutive same-role messages are merged, tool results become
    ``tool_result`` blocks in a user turn, and tool calls/results that lost
    their counterpart (e.g. after context trimming) are repaired.
    """
    system_parts: List[str] = []
    formatted: List[Dict[str, Any]] = []

    def push(role: str, blocks: List[Dict[str, Any]]) -> None:
        if not blocks:
            return
        if formatted and formatted[-1]["role"] == role:
            formatted[-1]["content"].extend(blocks)
        else:
            formatted.append({"role": role, "content": list(blocks)})

    for msg in messages:
        role = msg.get("role")
        content = msg.get("content") or ""
        if role == "system":
            if content:
                system_parts.append(content)
        elif role == "user":
            if content.strip():
                push("user", [_text_block(content)])
        elif role == "assistant":
            blocks = [_text_block(content)] if content.strip() else []
            for call in msg.get("tool_calls") or []:
                blocks.append({
                    "type": "tool_use",
                    "id": call["id"],
                    "name": call["name"],
                    "input": call.get("arguments") or {},
                })
            push("assistant", blocks)
        elif role == "tool":
            push("user", [{
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id", ""),
                "content": content or "(no output)",
                "is_error": bool(msg.get("is_error")),
            }])
        else:
            raise ValueError(f"Unknown message role: {role}")

    # The conversation must open with a user turn; repairing can expose a new leading assistant turn
    while True:
        while formatted and formatted[0]["role"] != "user":
            formatted.pop(0)
        formatted = _repair_tool_pairs(formatted)
        if not formatted or formatted[0]["role"] == "user":
            break

    system = "\n\n".join(system_parts) if system_parts else None
    return system, formatted


def _repair_tool_pairs(formatted: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop tool_results without a preceding tool_use and fill in missing results."""
    repaired: List[Dict[str, Any]] = []
    for i, msg in enumerate(formatted):
        if msg["role"] == "user":
            prev = repaired[-1] if repaired and repaired[-1]["role"] == "assistant" else None
            known = {b["id"] for b in prev["content"] if b.get("type") == "tool_use"} if prev else set()
            blocks = [
                b for b in msg["content"]
                if b.get("type") != "tool_result" or b.get("tool_use_id") in known
            ]
            dropped = len(msg["content"]) - len(blocks)
            if dropped:
                logger.warning(f"Dropped {dropped} orphaned tool_result blocks")
            if blocks:
                repaired.append({"role": "user", "content": blocks})
            continue

        repaired.append(msg)
        tool_ids = [b["id"] for b in msg["content"] if b.get("type") == "tool_use"]
        if not tool_ids:
            continue
        nxt = formatted[i + 1] if i + 1 < len(formatted) else None
        answered = {
            b.get("tool_use_id") for b in (nxt["content"] if nxt and nxt["role"] == "user" else [])
            if b.get("type") == "tool_result"
        }
        missing = [tid for tid in tool_ids if tid not in answered]
        if missing:
            logger.warning(f"Added {len(missing)} placeholder tool_results for unanswered tool_use blocks")
            placeholder = [{
                "type": "tool_result",
                "tool_use_id": tid,
                "content": "(result unavailable)",
                "is_error": True,
            } for tid in missing]
            if nxt is not None and nxt["role"] == "user":
                nxt["content"] = placeholder + nxt["content"]
            else:
                repaired.append({"role": "user", "content": placeholder})
    # Merge user turns that became adjacent after dropping blocks
    merged: List[Dict[str, Any]] = []
    for msg in repaired:
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1]["content"].extend(msg["content"])
        else:
            merged.append(msg)
    return merged


def format_tool_choice(tool_choice: Union[str, Dict[str, Any], None]) -> Optional[Dict[str, Any]]:
    if tool_choice is None:
        return None
    if isinstance(tool_choice, dict):
        return tool_choice
    if tool_choice in ("required", "any"):
        return {"type": "any"}
    return {"type": tool_choice}


class BedrockService:
    """
    LLM provider backed by Amazon Bedrock's InvokeModel API (Anthropic Claude models).
    """

    provider_name = "bedrock"

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
        max_tokens: Optional[int] = None,
    ):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self.max_tokens = max_tokens or model_config.max_tokens
        self.client = client or self._create_client()
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            logger.info(get_credentials_info())
            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except (NoCredentialsError, PartialCredentialsError) as e:
            raise FatalError(f"AWS credentials not configured: {e}", code="auth_error")

    def _get_model_identifier(self, model_id: str) -> str:
        """Cross-region inference profile id for bare Anthropic model ids"""
        if model_id.startswith(("us.", "eu.", "ap.")) or not model_id.startswith("anthropic."):
            return model_id
        if "claude-3-5-haiku" in model_id:
            return model_id
        region_prefix = "eu" if self.region.startswith("eu-") else "ap" if self.region.startswith("ap-") else "us"
        return f"{region_prefix}.{model_id}"

    def build_request_body(
        self,
        messages: List[Dict[str, Any]],
        model_id: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Union[str, Dict[str, Any], None] = None,
    ) -> Dict[str, Any]:
        system, formatted = format_messages(messages)
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": min(self.max_tokens, get_max_output_tokens(model_id)),
            "messages": formatted,
        }
        if system:
            body["system"] = system
        if model_config.temperature is not None:
            body["temperature"] = model_config.temperature
        if tools:
            body["tools"] = [
                {"name": t["name"], "description": t.get("description", ""), "input_schema": t["input_schema"]}
                for t in tools
            ]
            choice = format_tool_choice(tool_choice)
            if choice:
                body["tool_choice"] = choice
        return body

    def parse_response(self, response_body: Dict[str, Any]) -> ModelResponse:
        """Parse the Anthropic response body into text, tool calls and usage"""
        result = ModelResponse()
        try:
            for block in response_body.get("content", []):
                block_type = block.get("type", "")
                if block_type == "text":
                    result.text += block.get("text", "")
                elif block_type == "tool_use":
                    result.tool_calls.append(ToolCall(
                        id=block["id"],
                        name=block["name"],
                        arguments=block.get("input") or {},
                    ))
            usage = response_body.get("usage", {})
            result.usage = Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            )
            result.stop_reason = response_body.get("stop_reason") or ""
        except (KeyError, TypeError) as e:
            logger.error(f"Error parsing response: {e}")
            raise FatalError(f"Failed to parse model response: {e}", code="bad_response")
        return result

    def generate(
        self,
        messages: List[Dict[str, Any]],
        model_id: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Union[str, Dict[str, Any], None] = None,
    ) -> ModelResponse:
        """Blocking model call"""
        current_model = model_id or self.model_id
        model_identifier = self._get_model_identifier(current_model)
        request_body = self.build_request_body(messages, current_model, tools, tool_choice)
        logger.info(f"Invoking model: {model_identifier} ({len(request_body['messages'])} messages)")

        try:
            response = self.client.invoke_model(
                modelId=model_identifier,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            mapped = map_client_error(e)
            logger.error(f"Bedrock API error: {mapped}")
            raise mapped from e
        except (EndpointConnectionError, ConnectionClosedError) as e:
            raise TransientError(f"Network error: connection reset ({e})", code="network_error") from e
        except ReadTimeoutError as e:
            raise TransientError(f"Read timeout: {e}", code="timeout") from e

        response_body = json.loads(response["body"].read())
        return self.parse_response(response_body)

    async def step(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Union[str, Dict[str, Any], None] = None,
    ) -> ModelResponse:
        return await asyncio.to_thread(self.generate, messages, model, tools, tool_choice)
