"""Anthropic Claude Code CLI adapter."""

import logging

from agentrunner.core.models import (
    AgentInfo,
    ExecutionOptions,
    PricingInfo,
    ProviderInfo,
    ProviderType,
    SessionSummary,
    UsageLimits,
    UsageLimitType,
)
from agentrunner.core.summary import SUMMARIZE_PROMPT, clean_stream_json_summary
from agentrunner.providers.base import ArgumentBuilder, CliBackedProvider
from agentrunner.streaming.parsers import ClaudeStreamParser

logger = logging.getLogger(__name__)

SUMMARY_TIMEOUT_SECONDS = 30.0

MODELS = [
    "sonnet",
    "opus",
    "haiku",
    "claude-sonnet-4-5-20250929",
    "claude-opus-4-20250514",
    "claude-3-5-haiku-20241022",
]

MODEL_MULTIPLIERS = {
    "sonnet": 1.0,
    "opus": 5.0,
    "haiku": 0.27,
    "claude-sonnet-4-5-20250929": 1.0,
    "claude-opus-4-20250514": 5.0,
    "claude-3-5-haiku-20241022": 0.27,
}


class ClaudeArguments(ArgumentBuilder):
    """Flags for `claude -p ... --output-format stream-json`."""

    version = "2.x"

    def build(self, prompt: str, options: ExecutionOptions) -> list[str]:
        args = ["-p", prompt, "--output-format", "stream-json", "--verbose", "--dangerously-skip-permissions"]

        if options.session_id:
            args += ["--resume", options.session_id]
        elif options.continue_last_session:
            args.append("--continue")

        if options.model:
            args += ["--model", options.model]
        if options.max_turns is not None:
            args += ["--max-turns", str(options.max_turns)]
        if options.max_budget_usd is not None:
            args += ["--max-budget-usd", str(options.max_budget_usd)]
        if options.system_prompt:
            args += ["--system-prompt", options.system_prompt]
        if options.append_system_prompt:
            args += ["--append-system-prompt", options.append_system_prompt]
        if options.allowed_tools:
            args += ["--allowedTools", ",".join(options.allowed_tools)]
        if options.excluded_tools:
            args += ["--disallowedTools", ",".join(options.excluded_tools)]
        for directory in options.additional_directories:
            args += ["--add-dir", directory]
        if options.mcp_config_path:
            args += ["--mcp-config", options.mcp_config_path]

        args.extend(options.additional_args)
        return args

    def build_summary(self, session_id: str, prompt: str) -> list[str]:
        return ["--resume", session_id, "-p", prompt, "--max-turns", "1"]


class ClaudeProvider(CliBackedProvider):
    provider_type = ProviderType.CLAUDE
    vendor_name = "Claude"
    default_executable = "claude"
    parser_class = ClaudeStreamParser
    argument_builder_class = ClaudeArguments

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            version=self.runner.get_cli_version(),
            available_models=list(MODELS),
            available_agents=[
                AgentInfo(
                    name="default",
                    description="Default Claude Code agent with full capabilities",
                    is_default=True,
                )
            ],
            pricing=PricingInfo(
                input_price_per_million=3.0,
                output_price_per_million=15.0,
                model_multipliers=dict(MODEL_MULTIPLIERS),
            ),
            additional_info={"isAvailable": True},
        )

    def get_usage_limits(self) -> UsageLimits:
        # Real limits only surface in run output (see the detected_usage_limits of a result)
        return UsageLimits(
            limit_type=UsageLimitType.SESSION_LIMIT,
            is_limit_reached=False,
            message="Session limits available via Claude CLI",
        )

    def get_session_summary(
        self,
        session_id: str | None,
        working_directory: str | None = None,
        fallback_output: str | None = None,
    ) -> SessionSummary:
        if session_id:
            output = self.runner.run_capture(
                self.arguments.build_summary(session_id, SUMMARIZE_PROMPT),
                SUMMARY_TIMEOUT_SECONDS,
                working_directory,
            )
            summary = clean_stream_json_summary(output)
            if summary:
                return SessionSummary(success=True, summary=summary, source="session")
            logger.info(f"Claude session {session_id} gave no summary; using run output")
        return self.runner.summarize_output(fallback_output)
