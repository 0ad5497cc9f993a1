"""GitHub Copilot CLI adapter."""

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
from agentrunner.core.summary import SUMMARIZE_PROMPT
from agentrunner.providers.base import ArgumentBuilder, CliBackedProvider
from agentrunner.streaming.parsers import CopilotStreamParser

logger = logging.getLogger(__name__)

SUMMARY_TIMEOUT_SECONDS = 30.0

# Premium-request multiplier per model
MODEL_MULTIPLIERS = {
    "claude-opus-4.6": 5.0,
    "claude-opus-4.6-fast": 3.0,
    "claude-sonnet-4.6": 1.0,
    "claude-sonnet-4.5": 1.0,
    "claude-haiku-4.5": 0.2,
    "claude-opus-4.5": 5.0,
    "claude-sonnet-4": 1.0,
    "gpt-5.2-codex": 1.5,
    "gpt-5.2": 1.5,
    "gpt-5.1-codex-max": 2.0,
    "gpt-5.1-codex": 1.0,
    "gpt-5.1": 1.0,
    "gpt-5.1-codex-mini": 0.3,
    "gpt-5-mini": 0.3,
    "gpt-4.1": 0.5,
}


class CopilotArguments(ArgumentBuilder):
    """Flags for `copilot -p ... --yolo --silent`.

    `--yolo` auto-approves tool permissions and `--silent` drops the stats
    banner from stdout; both exist since 0.0.381.
    """

    version = "0.0.381"

    def build(self, prompt: str, options: ExecutionOptions) -> list[str]:
        args = ["-p", prompt, "--yolo", "--silent"]

        if options.session_id:
            args += ["--resume", options.session_id]
        elif options.continue_last_session:
            args.append("--continue")

        if options.model:
            args += ["--model", options.model]
        if options.agent:
            args += ["--agent", options.agent]
        if options.system_prompt:
            args += ["--system-prompt", options.system_prompt]
        for tool in options.allowed_tools:
            args += ["--available-tools", tool]
        for tool in options.excluded_tools:
            args += ["--excluded-tools", tool]
        if options.mcp_config_path:
            args += ["--additional-mcp-config", f"@{options.mcp_config_path}"]
        for directory in options.additional_directories:
            args += ["--add-dir", directory]

        args.extend(options.additional_args)
        return args

    def build_simple_prompt(self, prompt: str, options: ExecutionOptions | None = None) -> list[str]:
        return ["-p", prompt, "--yolo", "--silent"]

    def build_summary(self, session_id: str, prompt: str) -> list[str]:
        return ["--resume", session_id, "-p", prompt, "--yolo", "--silent"]


class CopilotProvider(CliBackedProvider):
    provider_type = ProviderType.COPILOT
    vendor_name = "GitHub Copilot"
    default_executable = "copilot"
    parser_class = CopilotStreamParser
    argument_builder_class = CopilotArguments

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            version=self.runner.get_cli_version(),
            available_models=list(MODEL_MULTIPLIERS),
            available_agents=[
                AgentInfo(
                    name="default",
                    description="Default coding agent with full capabilities",
                    is_default=True,
                )
            ],
            pricing=PricingInfo(model_multipliers=dict(MODEL_MULTIPLIERS)),
            additional_info={"isAvailable": True, "hasPremiumRequestLimit": True},
        )

    def get_usage_limits(self) -> UsageLimits:
        return UsageLimits(
            limit_type=UsageLimitType.PREMIUM_REQUESTS,
            is_limit_reached=False,
            message=(
                "Premium request usage is tracked per-job execution. "
                "Configure your plan's limit in provider settings."
            ),
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
            if output and output.strip():
                return SessionSummary(success=True, summary=output.strip(), source="session")
            logger.info(f"Copilot session {session_id} gave no summary; using run output")
        return self.runner.summarize_output(fallback_output)
