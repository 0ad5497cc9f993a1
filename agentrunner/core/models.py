"""Data models for the agent execution engine.

Uses Pydantic for every result envelope handed back to callers.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderType(str, Enum):
    """Supported agent vendors."""

    CLAUDE = "claude"
    COPILOT = "copilot"
    OPENCODE = "opencode"


class ConnectionMode(str, Enum):
    """How a provider instance talks to its vendor tool."""

    CLI = "cli"
    REST = "rest"
    SDK = "sdk"


class MessageRole(str, Enum):
    """Role of a single execution message."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    ERROR = "error"


class UsageLimitType(str, Enum):
    """Kind of quota a vendor reports."""

    NONE = "none"
    PREMIUM_REQUESTS = "premium_requests"
    SESSION_LIMIT = "session_limit"
    TOKEN_LIMIT = "token_limit"
    RATE_LIMIT = "rate_limit"


# --- Execution Models ---


class ExecutionOptions(BaseModel):
    """Per-call execution options. Immutable once built."""

    model_config = {"frozen": True}

    session_id: str | None = None
    working_directory: str | None = None
    model: str | None = None
    agent: str | None = None
    title: str | None = None
    allowed_tools: list[str] = Field(default_factory=list)
    excluded_tools: list[str] = Field(default_factory=list)
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    max_turns: int | None = None
    max_budget_usd: float | None = None
    timeout_seconds: float | None = None
    additional_directories: list[str] = Field(default_factory=list)
    additional_args: list[str] = Field(default_factory=list)
    environment_variables: dict[str, str] = Field(default_factory=dict)
    attached_files: list[str] = Field(default_factory=list)
    output_format: str | None = None
    continue_last_session: bool = False
    mcp_config_path: str | None = None


class ExecutionMessage(BaseModel):
    """One chronological entry in an execution transcript."""

    role: MessageRole
    content: str = ""
    tool_name: str | None = None
    tool_input: str | None = None
    tool_output: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ExecutionProgress(BaseModel):
    """Live progress notification pushed to a caller-supplied sink."""

    current_message: str | None = None
    tool_name: str | None = None
    is_streaming: bool = False
    tokens_used: int | None = None
    process_id: int | None = None
    output_line: str | None = None
    is_error_output: bool = False
    command_used: str | None = None


class InteractionInfo(BaseModel):
    """An interactive prompt detected in agent output."""

    prompt: str
    interaction_type: str = "unknown"
    choices: list[str] | None = None
    default_response: str | None = None
    confidence: float = 0.0
    detected_at: datetime = Field(default_factory=utcnow)


class UsageLimits(BaseModel):
    """Normalized view of a vendor's quota or rate-limit state."""

    limit_type: UsageLimitType = UsageLimitType.NONE
    is_limit_reached: bool = False
    current_usage: int | None = None
    max_usage: int | None = None
    reset_time: datetime | None = None
    message: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percent_used(self) -> int | None:
        """floor(100 * current / max), or None when either side is unknown or max is 0."""
        if self.current_usage is None or self.max_usage is None or self.max_usage <= 0:
            return None
        return (100 * self.current_usage) // self.max_usage


class ExecutionResult(BaseModel):
    """Consolidated outcome of one provider execution."""

    success: bool = False
    output: str | None = None
    error_message: str | None = None
    session_id: str | None = None
    messages: list[ExecutionMessage] = Field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None
    model_used: str | None = None
    process_id: int | None = None
    exit_code: int | None = None
    command_used: str | None = None
    timed_out: bool = False
    is_paused: bool = False
    pending_interaction: InteractionInfo | None = None
    detected_usage_limits: UsageLimits | None = None
    premium_requests_consumed: int | None = None

    @property
    def total_tokens(self) -> int:
        return (self.input_tokens or 0) + (self.output_tokens or 0)


# --- Provider Contract Models ---


class ProviderConfig(BaseModel):
    """A configured instance of one vendor's agent tool."""

    id: str
    name: str
    type: ProviderType
    connection_mode: ConnectionMode = ConnectionMode.CLI
    executable_path: str | None = None
    working_directory: str | None = None
    api_endpoint: str | None = None
    api_key: str | None = None
    is_enabled: bool = True
    is_default: bool = False


class AgentInfo(BaseModel):
    name: str
    description: str = ""
    is_default: bool = False


class PricingInfo(BaseModel):
    """Vendor-reported pricing, normalized but never interpreted."""

    input_price_per_million: float | None = None
    output_price_per_million: float | None = None
    currency: str = "USD"
    model_multipliers: dict[str, float] = Field(default_factory=dict)


class ProviderInfo(BaseModel):
    """Capabilities, models and pricing of a provider."""

    version: str | None = None
    available_models: list[str] = Field(default_factory=list)
    available_agents: list[AgentInfo] = Field(default_factory=list)
    pricing: PricingInfo = Field(default_factory=PricingInfo)
    additional_info: dict[str, Any] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    """Best-effort summary of what an agent session did."""

    success: bool = False
    summary: str | None = None
    detailed_description: str | None = None
    modified_files: list[str] = Field(default_factory=list)
    error_message: str | None = None
    source: str | None = None  # "session", "output" or "fallback"


class PromptResponse(BaseModel):
    """Result of a lightweight one-shot prompt."""

    success: bool
    response: str | None = None
    error_message: str | None = None
    duration_ms: int | None = None
    model_used: str | None = None

    @classmethod
    def ok(cls, response: str, duration_ms: int, model_used: str | None = None) -> "PromptResponse":
        return cls(success=True, response=response, duration_ms=duration_ms, model_used=model_used)

    @classmethod
    def fail(cls, error_message: str) -> "PromptResponse":
        return cls(success=False, error_message=error_message)


class CliUpdateResult(BaseModel):
    """Outcome of a vendor CLI self-update."""

    success: bool
    previous_version: str | None = None
    new_version: str | None = None
    output: str | None = None
    error_message: str | None = None


# --- Completion Criteria ---


class CompletionCriteria(BaseModel):
    """Limits that should end a running execution.

    Evaluated by the external orchestrator; the engine only supplies the
    numbers it observed.
    """

    max_execution_seconds: float | None = None
    max_cost_usd: float | None = None
    max_tokens: int | None = None
    stall_timeout_seconds: float | None = None
    success_patterns: list[str] = Field(default_factory=list)
    failure_patterns: list[str] = Field(default_factory=list)

    def evaluate(self, result: ExecutionResult, elapsed_seconds: float | None = None) -> str | None:
        """Return the reason the criteria end the execution, or None.

        Failure patterns are checked before success patterns so a run that
        prints both is treated as failed.
        """
        if (
            self.max_execution_seconds is not None
            and elapsed_seconds is not None
            and elapsed_seconds >= self.max_execution_seconds
        ):
            return f"Execution time {elapsed_seconds:.0f}s exceeded limit of {self.max_execution_seconds:.0f}s"
        if (
            self.max_cost_usd is not None
            and result.cost_usd is not None
            and result.cost_usd >= self.max_cost_usd
        ):
            return f"Cost ${result.cost_usd:.4f} exceeded budget of ${self.max_cost_usd:.4f}"
        if self.max_tokens is not None and result.total_tokens >= self.max_tokens:
            return f"Token usage {result.total_tokens} exceeded limit of {self.max_tokens}"

        output = result.output or ""
        for pattern in self.failure_patterns:
            if re.search(pattern, output, re.MULTILINE):
                return f"Failure pattern matched: {pattern}"
        for pattern in self.success_patterns:
            if re.search(pattern, output, re.MULTILINE):
                return f"Success pattern matched: {pattern}"
        return None
