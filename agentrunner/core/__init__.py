"""Core models, errors and configuration for the agent execution engine."""

from agentrunner.core.config import EngineConfig, load_config
from agentrunner.core.errors import (
    AgentRunnerError,
    CliAgentError,
    ExecutionCancelledError,
    GitError,
    ProviderConfigError,
)
from agentrunner.core.models import (
    ConnectionMode,
    ExecutionMessage,
    ExecutionOptions,
    ExecutionProgress,
    ExecutionResult,
    MessageRole,
    ProviderConfig,
    ProviderType,
    UsageLimits,
    UsageLimitType,
)

__all__ = [
    "AgentRunnerError",
    "CliAgentError",
    "ConnectionMode",
    "EngineConfig",
    "ExecutionCancelledError",
    "ExecutionMessage",
    "ExecutionOptions",
    "ExecutionProgress",
    "ExecutionResult",
    "GitError",
    "MessageRole",
    "ProviderConfig",
    "ProviderConfigError",
    "ProviderType",
    "UsageLimitType",
    "UsageLimits",
    "load_config",
]
