"""OpenCode adapter: `opencode run` in CLI mode, an OpenCode server in REST mode."""

import logging
import threading
import time

import httpx

from agentrunner.core.errors import (
    ApiError,
    CliAgentAuthenticationError,
    CliAgentError,
    ExecutionCancelledError,
    UsageLimitExceededError,
)
from agentrunner.core.models import (
    AgentInfo,
    CliUpdateResult,
    ConnectionMode,
    ExecutionMessage,
    ExecutionOptions,
    ExecutionResult,
    MessageRole,
    PricingInfo,
    PromptResponse,
    ProviderConfig,
    ProviderInfo,
    ProviderType,
    SessionSummary,
    UsageLimits,
    UsageLimitType,
)
from agentrunner.providers.base import ArgumentBuilder, CliBackedProvider
from agentrunner.providers.opencode_api import OpenCodeApiClient
from agentrunner.streaming.accumulator import ProgressCallback, StreamAccumulator
from agentrunner.streaming.opencode_output import (
    default_model_multiplier,
    parse_models_output,
    parse_session_output,
)
from agentrunner.streaming.parsers import OpenCodeStreamParser

logger = logging.getLogger(__name__)

MODELS_TIMEOUT_SECONDS = 15.0
SESSION_SHOW_TIMEOUT_SECONDS = 15.0
MODEL_ENV_OPTION = "OPENCODE_MODEL"

DEFAULT_MODELS = [
    "anthropic/claude-sonnet-4-20250514",
    "anthropic/claude-opus-4-20250514",
    "openai/gpt-4o",
    "openai/o1",
]

MODEL_MULTIPLIERS = {
    "anthropic/claude-sonnet-4-20250514": 1.0,
    "anthropic/claude-opus-4-20250514": 5.0,
    "openai/gpt-4o": 0.83,
    "openai/o1": 5.0,
}

AGENTS = [
    AgentInfo(name="build", description="Default, full access agent for development work", is_default=True),
    AgentInfo(name="plan", description="Read-only agent for analysis and code exploration"),
]


class OpenCodeArguments(ArgumentBuilder):
    """Flags for `opencode run`. The prompt is always the last argument."""

    version = "0.x"

    def build(self, prompt: str, options: ExecutionOptions) -> list[str]:
        args = ["run"]

        if options.session_id:
            args += ["--session", options.session_id]
        elif options.continue_last_session:
            args.append("--continue")

        model = options.model or options.environment_variables.get(MODEL_ENV_OPTION)
        if model:
            args += ["--model", model]
        if options.agent:
            args += ["--agent", options.agent]
        if options.title:
            args += ["--title", options.title]
        if options.output_format:
            args += ["--format", options.output_format]
        for path in options.attached_files:
            args += ["--file", path]

        args.extend(options.additional_args)
        args.append(prompt)
        return args

    def build_simple_prompt(self, prompt: str, options: ExecutionOptions | None = None) -> list[str]:
        args = ["run"]
        if options is not None and options.model:
            args += ["--model", options.model]
        args.append(prompt)
        return args

    def build_summary(self, session_id: str, prompt: str) -> list[str]:
        # OpenCode stores summaries; nothing needs to be asked
        return ["session", "show", session_id, "--format", "json"]


class OpenCodeProvider(CliBackedProvider):
    provider_type = ProviderType.OPENCODE
    vendor_name = "OpenCode"
    default_executable = "opencode"
    parser_class = OpenCodeStreamParser
    argument_builder_class = OpenCodeArguments

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.BaseTransport | None = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self.api: OpenCodeApiClient | None = None
        if self.connection_mode == ConnectionMode.REST and config.api_endpoint:
            self.api = OpenCodeApiClient(config.api_endpoint, config.api_key, transport=transport)

    @property
    def is_rest(self) -> bool:
        return self.connection_mode == ConnectionMode.REST

    # --- Connection ---

    def test_connection(self) -> bool:
        if not self.is_rest:
            return super().test_connection()

        self.is_connected, self.last_connection_error = self._test_rest_connection()
        if not self.is_connected:
            logger.warning(f"{self.name}: REST connection test failed: {self.last_connection_error}")
        return self.is_connected

    def _test_rest_connection(self) -> tuple[bool, str | None]:
        if self.api is None:
            return False, "REST API client is not configured. Check API endpoint and key settings."
        try:
            response = self.api.health()
        except httpx.HTTPError as e:
            return False, f"Failed to connect to OpenCode API at {self.api.endpoint}: {e}"
        if response.is_success:
            return True, None
        return False, (
            f"REST API test failed. Status: {response.status_code} {response.reason_phrase}. "
            f"Endpoint: {self.api.endpoint}/health. Response: {response.text}"
        )

    # --- Execution ---

    def execute(self, prompt: str) -> str:
        if not self.is_rest:
            return super().execute(prompt)
        if self.api is None:
            raise CliAgentError("REST client is not configured.", self.name)
        try:
            return self.api.run(prompt).output or ""
        except ApiError as e:
            limits = self.api.last_usage_limits
            if limits is not None and limits.is_limit_reached:
                raise UsageLimitExceededError(self.name, limits.percent_used, limits.reset_time) from e
            if e.status_code in (401, 403):
                raise CliAgentAuthenticationError(self.name) from e
            raise CliAgentError(f"OpenCode API request failed: {e}", self.name) from e
        except (httpx.HTTPError, ValueError) as e:
            raise CliAgentError(f"OpenCode API request failed: {e}", self.name) from e

    def execute_with_options(
        self,
        prompt: str,
        options: ExecutionOptions,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        if not self.is_rest:
            return super().execute_with_options(prompt, options, progress, cancel_event)
        return self._execute_rest(prompt, options.session_id, progress, cancel_event)

    def _execute_rest(
        self,
        prompt: str,
        session_id: str | None,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> ExecutionResult:
        if self.api is None:
            return ExecutionResult(success=False, error_message="REST client is not configured.")
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionCancelledError("OpenCode execution was cancelled", session_id=session_id)

        acc = StreamAccumulator(progress)
        acc.notify(current_message="Sending request to OpenCode API...", is_streaming=False)
        result = acc.result
        result.messages.append(ExecutionMessage(role=MessageRole.USER, content=prompt))

        try:
            response = self.api.run(prompt, session_id)
        except ApiError as e:
            result.success = False
            result.error_message = str(e)
            result.detected_usage_limits = self.api.last_usage_limits
            return result
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"OpenCode REST execution failed: {e}")
            result.success = False
            result.error_message = str(e)
            return result

        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionCancelledError(
                "OpenCode execution was cancelled",
                session_id=response.session_id or session_id,
            )

        result.session_id = response.session_id
        result.input_tokens = response.input_tokens
        result.output_tokens = response.output_tokens
        result.cost_usd = response.cost_usd
        result.messages.append(ExecutionMessage(role=MessageRole.ASSISTANT, content=response.output or ""))
        result.output = response.output
        result.success = response.success
        if not response.success:
            result.error_message = (
                response.error or f"OpenCode API reported failure (session {response.session_id or 'n/a'})"
            )
        result.detected_usage_limits = self.api.last_usage_limits
        acc.notify(current_message="OpenCode API request completed", is_streaming=False)
        return result

    def get_prompt_response(self, prompt: str, working_directory: str | None = None) -> PromptResponse:
        if not self.is_rest:
            return super().get_prompt_response(prompt, working_directory)
        if self.api is None:
            return PromptResponse.fail("REST API client is not configured.")

        started = time.monotonic()
        try:
            response = self.api.prompt(prompt)
        except (ApiError, httpx.HTTPError) as e:
            return PromptResponse.fail(f"HTTP error calling OpenCode API: {e}")
        except ValueError as e:
            return PromptResponse.fail(f"Error calling OpenCode API: {e}")

        if response.success and response.output:
            return PromptResponse.ok(response.output, int((time.monotonic() - started) * 1000), "opencode")
        return PromptResponse.fail(response.error or "No response content received from OpenCode API.")

    # --- Metadata ---

    def get_provider_info(self) -> ProviderInfo:
        info = ProviderInfo(
            available_models=list(DEFAULT_MODELS),
            available_agents=[agent.model_copy() for agent in AGENTS],
            pricing=PricingInfo(model_multipliers=dict(MODEL_MULTIPLIERS)),
            additional_info={"isAvailable": True},
        )
        if self.is_rest:
            return info

        info.version = self.runner.get_cli_version()
        models = parse_models_output(self.runner.run_capture(["models"], MODELS_TIMEOUT_SECONDS))
        if models:
            info.available_models = models
            for model in models:
                info.pricing.model_multipliers.setdefault(model, default_model_multiplier(model))
        else:
            info.additional_info["modelsWarning"] = "Could not list models with 'opencode models'; showing defaults."
        return info

    def get_usage_limits(self) -> UsageLimits:
        return UsageLimits(
            limit_type=UsageLimitType.NONE,
            is_limit_reached=False,
            message="No built-in limits. Usage depends on the underlying model provider's API limits and quotas.",
        )

    def get_session_summary(
        self,
        session_id: str | None,
        working_directory: str | None = None,
        fallback_output: str | None = None,
    ) -> SessionSummary:
        if session_id and not self.is_rest:
            output = self.runner.run_capture(
                self.arguments.build_summary(session_id, ""),
                SESSION_SHOW_TIMEOUT_SECONDS,
                working_directory,
            )
            summary = parse_session_output(output)
            if summary:
                return SessionSummary(success=True, summary=summary, source="session")
        return self.runner.summarize_output(fallback_output)

    def update_cli(self) -> CliUpdateResult:
        if self.is_rest:
            return CliUpdateResult(
                success=False,
                error_message="CLI update is not available in REST connection mode.",
            )
        return self.runner.run_update(("upgrade",))

    def close(self) -> None:
        if self.api is not None:
            self.api.close()
