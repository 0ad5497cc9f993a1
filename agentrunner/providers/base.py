"""Provider contract shared by every agent vendor.

A Provider wraps one configured vendor tool in exactly one connection mode
and normalises it into ExecutionResult / ProviderInfo / UsageLimits. Vendor
specifics live in subclasses; CLI mechanics are shared by composition through
an injected CliToolRunner.
"""

import logging
import threading
from abc import ABC, abstractmethod

from agentrunner.core.config import EngineConfig
from agentrunner.core.errors import (
    CliAgentAuthenticationError,
    CliAgentError,
    CliAgentNotAvailableError,
    UsageLimitExceededError,
)
from agentrunner.core.models import (
    CliUpdateResult,
    ConnectionMode,
    ExecutionOptions,
    ExecutionResult,
    PromptResponse,
    ProviderConfig,
    ProviderInfo,
    ProviderType,
    SessionSummary,
    UsageLimits,
)
from agentrunner.process.supervisor import ProcessSupervisor
from agentrunner.providers.cli_runner import CliToolRunner
from agentrunner.streaming.accumulator import ProgressCallback
from agentrunner.streaming.parsers import StreamParser
from agentrunner.usage.detector import UsageLimitDetector

logger = logging.getLogger(__name__)

# Lower-cased fragments of CLI output that mean "log in first"
AUTH_FAILURE_MARKERS = (
    "not logged in",
    "please log in",
    "please login",
    "login required",
    "not authenticated",
    "authentication required",
    "unauthorized",
    "invalid api key",
)


class ArgumentBuilder(ABC):
    """Builds a vendor's argument vector from per-call options.

    Vendors change their flag surface between releases; `version` records
    which CLI release a builder targets so a newer one can be swapped in.
    """

    version: str = "unknown"

    @abstractmethod
    def build(self, prompt: str, options: ExecutionOptions) -> list[str]:
        """Arguments for a streaming agent run."""

    def build_simple_prompt(self, prompt: str, options: ExecutionOptions | None = None) -> list[str]:
        """Arguments for a one-shot, non-streaming prompt."""
        return ["-p", prompt]

    def build_summary(self, session_id: str, prompt: str) -> list[str]:
        """Arguments that resume `session_id` and ask it to summarise itself."""
        return ["--resume", session_id, "-p", prompt]


class Provider(ABC):
    """One configured instance of an agent vendor."""

    provider_type: ProviderType

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.id = config.id
        self.name = config.name
        self.connection_mode: ConnectionMode = config.connection_mode
        self.is_connected = False
        self.last_connection_error: str | None = None

    @abstractmethod
    def test_connection(self) -> bool:
        """Check the tool is reachable. Sets is_connected / last_connection_error."""

    @abstractmethod
    def execute(self, prompt: str) -> str:
        """Run a single prompt and return its raw output.

        Raises:
            CliAgentError: If the tool fails.
        """

    def execute_with_session(
        self,
        prompt: str,
        session_id: str | None = None,
        working_directory: str | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run (or resume) an agent session.

        Raises:
            ExecutionCancelledError: If `cancel_event` is set during the run.
        """
        options = ExecutionOptions(session_id=session_id, working_directory=working_directory)
        return self.execute_with_options(prompt, options, progress, cancel_event)

    @abstractmethod
    def execute_with_options(
        self,
        prompt: str,
        options: ExecutionOptions,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run an agent session with the full option set."""

    @abstractmethod
    def get_provider_info(self) -> ProviderInfo: ...

    @abstractmethod
    def get_usage_limits(self) -> UsageLimits: ...

    @abstractmethod
    def get_session_summary(
        self,
        session_id: str | None,
        working_directory: str | None = None,
        fallback_output: str | None = None,
    ) -> SessionSummary: ...

    @abstractmethod
    def get_prompt_response(self, prompt: str, working_directory: str | None = None) -> PromptResponse: ...

    @abstractmethod
    def update_cli(self) -> CliUpdateResult: ...

    def close(self) -> None:
        """Release network clients or other resources."""

    def __enter__(self) -> "Provider":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, mode={self.connection_mode.value})"


class CliBackedProvider(Provider):
    """Provider whose CLI mode is driven through an injected CliToolRunner.

    Subclasses name their executable, stream parser and argument builder;
    everything else about running the CLI is shared.
    """

    vendor_name: str = "Agent"
    default_executable: str = ""
    parser_class: type[StreamParser]
    argument_builder_class: type[ArgumentBuilder]

    def __init__(
        self,
        config: ProviderConfig,
        runner: CliToolRunner | None = None,
        supervisor: ProcessSupervisor | None = None,
        engine_config: EngineConfig | None = None,
        argument_builder: ArgumentBuilder | None = None,
    ):
        super().__init__(config)
        self.runner = runner or CliToolRunner(
            self.vendor_name,
            self.default_executable,
            executable_path=config.executable_path,
            working_directory=config.working_directory,
            supervisor=supervisor,
            config=engine_config,
        )
        self.arguments = argument_builder or self.argument_builder_class()

    def test_connection(self) -> bool:
        connected, error = self.runner.test_cli_connection()
        self.is_connected = connected
        self.last_connection_error = error
        if not connected:
            logger.warning(f"{self.name}: connection test failed: {error}")
        return connected

    def execute(self, prompt: str) -> str:
        response = self.get_prompt_response(prompt)
        if not response.success:
            raise self.classify_failure(response.error_message or f"{self.vendor_name} CLI failed")
        return response.response or ""

    def classify_failure(self, message: str) -> CliAgentError:
        """Map a failed one-shot run onto the most specific CliAgentError."""
        logger.warning(f"{self.name}: {message}")
        if message.startswith(f"Failed to start {self.vendor_name} CLI"):
            return CliAgentNotAvailableError(self.name)

        limits = UsageLimitDetector(self.parser_class.limit_policy).safe_scan(message)
        if limits is not None and limits.is_limit_reached:
            return UsageLimitExceededError(self.name, limits.percent_used, limits.reset_time)

        lowered = message.lower()
        if any(marker in lowered for marker in AUTH_FAILURE_MARKERS):
            return CliAgentAuthenticationError(self.name)
        return CliAgentError(message, self.name)

    def execute_with_options(
        self,
        prompt: str,
        options: ExecutionOptions,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        parser = self.parser_class(progress)
        return self.runner.run_streaming(
            self.arguments.build(prompt, options),
            parser,
            working_directory=options.working_directory,
            environment=options.environment_variables or None,
            timeout=options.timeout_seconds,
            cancel_event=cancel_event,
        )

    def get_prompt_response(self, prompt: str, working_directory: str | None = None) -> PromptResponse:
        return self.runner.run_simple_prompt(self.arguments.build_simple_prompt(prompt), working_directory)

    def update_cli(self) -> CliUpdateResult:
        return self.runner.run_update()
