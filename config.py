"""
Configuration module for the Bedrock agent runtime.
Handles environment variables, model specifications, pricing and run limits.
"""

import os
from dataclasses import dataclass
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    # Swapped in by the dynamic model selector once a run grows long
    strong_model_id: str = os.getenv("STRONG_MODEL_ID", "us.anthropic.claude-opus-4-1-20250805-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "8192"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None


@dataclass
class AgentConfig:
    """Run limits, approval policy and resilience settings for the agent loop"""
    title: str = "Bedrock Agent Runtime"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")

    # Stop conditions
    max_steps: int = int(os.getenv("MAX_STEPS", "50"))
    max_cost_usd: float = float(os.getenv("MAX_COST_USD", "5.0"))
    error_threshold: int = int(os.getenv("ERROR_THRESHOLD", "10"))

    # Run lock and interruption
    lock_timeout_seconds: float = float(os.getenv("AGENT_LOCK_TIMEOUT", "300"))
    settle_delay_seconds: float = float(os.getenv("SETTLE_DELAY", "0.5"))

    # Step preparation
    context_max_messages: int = int(os.getenv("CONTEXT_MAX_MESSAGES", "20"))
    tool_result_max_chars: int = int(os.getenv("TOOL_RESULT_MAX_CHARS", "1000"))
    step_token_budget: int = int(os.getenv("STEP_TOKEN_BUDGET", "50000"))
    # 0 disables the switch to model_config.strong_model_id
    model_upgrade_step: int = int(os.getenv("MODEL_UPGRADE_STEP", "0"))

    # Approval: auto-approve lets the checkpoint gate decide without a human
    auto_approve_tools: bool = _env_bool("AUTO_APPROVE_TOOLS", "false")

    # Tools
    command_timeout: int = int(os.getenv("COMMAND_TIMEOUT", "30"))
    validate_command: str = os.getenv("VALIDATE_COMMAND", "")

    # Circuit breaker defaults
    breaker_failure_threshold: int = int(os.getenv("BREAKER_FAILURE_THRESHOLD", "5"))
    breaker_success_threshold: int = int(os.getenv("BREAKER_SUCCESS_THRESHOLD", "2"))
    breaker_timeout: float = float(os.getenv("BREAKER_TIMEOUT", "60"))
    breaker_reset_timeout: float = float(os.getenv("BREAKER_RESET_TIMEOUT", "60"))

    # Retry with backoff
    retry_max_retries: int = int(os.getenv("RETRY_MAX_RETRIES", "3"))
    retry_initial_delay: float = float(os.getenv("RETRY_INITIAL_DELAY", "1.0"))
    retry_max_delay: float = float(os.getenv("RETRY_MAX_DELAY", "10.0"))
    retry_backoff_multiplier: float = float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2.0"))


# ============================================================
# Model Specifications -- Anthropic Claude on Bedrock
# Prices are USD per 1K tokens.
# ============================================================
AVAILABLE_MODELS: List[Dict[str, Any]] = [
    {
        "id": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        "base_id": "anthropic.claude-sonnet-4-5-20250929-v1:0",
        "name": "Claude Sonnet 4.5",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "input_price_per_1k": 0.003,
        "output_price_per_1k": 0.015,
    },
    {
        "id": "us.anthropic.claude-haiku-4-5-20251001-v1:0",
        "base_id": "anthropic.claude-haiku-4-5-20251001-v1:0",
        "name": "Claude Haiku 4.5",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "input_price_per_1k": 0.001,
        "output_price_per_1k": 0.005,
    },
    {
        "id": "us.anthropic.claude-opus-4-1-20250805-v1:0",
        "base_id": "anthropic.claude-opus-4-1-20250805-v1:0",
        "name": "Claude Opus 4.1",
        "context_window": 200000,
        "max_output_tokens": 32000,
        "input_price_per_1k": 0.015,
        "output_price_per_1k": 0.075,
    },
    {
        "id": "us.anthropic.claude-sonnet-4-20250514-v1:0",
        "base_id": "anthropic.claude-sonnet-4-20250514-v1:0",
        "name": "Claude Sonnet 4",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "input_price_per_1k": 0.003,
        "output_price_per_1k": 0.015,
    },
    {
        "id": "anthropic.claude-3-5-haiku-20241022-v1:0",
        "base_id": "anthropic.claude-3-5-haiku-20241022-v1:0",
        "name": "Claude 3.5 Haiku",
        "context_window": 200000,
        "max_output_tokens": 8192,
        "input_price_per_1k": 0.0008,
        "output_price_per_1k": 0.004,
    },
]

# Used for model ids missing from the catalog
DEFAULT_PRICING: Dict[str, float] = {"input": 0.01, "output": 0.03}


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
agent_config = AgentConfig()


def get_model_by_id(model_id: str) -> Optional[Dict[str, Any]]:
    """Get model configuration by ID"""
    for model in AVAILABLE_MODELS:
        if model["id"] == model_id or model.get("base_id") == model_id:
            return model
    return None


def get_model_config(model_id: str) -> Dict[str, Any]:
    """Get the full configuration for a model. For unknown model IDs returns a minimal
    fallback dict. Callers should use .get(key, sensible_default) for any key they need."""
    model = get_model_by_id(model_id)
    if model:
        return model
    return {
        "id": model_id,
        "base_id": model_id,
        "name": model_id,
        "context_window": 200000,
        "max_output_tokens": 8192,
        "input_price_per_1k": DEFAULT_PRICING["input"],
        "output_price_per_1k": DEFAULT_PRICING["output"],
    }


def get_context_window(model_id: str) -> int:
    return get_model_config(model_id).get("context_window", 200000)


def get_max_output_tokens(model_id: str) -> int:
    return get_model_config(model_id).get("max_output_tokens", 4096)


def get_model_pricing(model_id: str) -> Dict[str, float]:
    """Per-1K token prices as {"input": ..., "output": ...}"""
    model = get_model_config(model_id)
    return {
        "input": model.get("input_price_per_1k", DEFAULT_PRICING["input"]),
        "output": model.get("output_price_per_1k", DEFAULT_PRICING["output"]),
    }


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default AWS credential chain"
