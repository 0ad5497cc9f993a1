"""Usage and rate-limit detection."""

from agentrunner.usage.copilot import CopilotMetrics, parse_copilot_stderr
from agentrunner.usage.detector import (
    CLAUDE_POLICY,
    COPILOT_POLICY,
    OPENCODE_POLICY,
    LimitPolicy,
    LimitRule,
    UsageLimitDetector,
    contains_limit_signal,
    limits_from_headers,
)

__all__ = [
    "CLAUDE_POLICY",
    "COPILOT_POLICY",
    "OPENCODE_POLICY",
    "CopilotMetrics",
    "LimitPolicy",
    "LimitRule",
    "UsageLimitDetector",
    "contains_limit_signal",
    "limits_from_headers",
    "parse_copilot_stderr",
]
