"""Exception hierarchy for the agent execution engine.

Subprocess-level failures are converted into typed results wherever a caller
can act on them; these exceptions cover preconditions, configuration errors
and genuine cancellation.
"""

from datetime import datetime


class AgentRunnerError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, error_code: str = "AGENTRUNNER_ERROR", recoverable: bool = True):
        super().__init__(message)
        self.error_code = error_code
        self.recoverable = recoverable


# --- Git ---


class GitError(AgentRunnerError):
    """A git operation failed."""

    def __init__(
        self,
        message: str,
        working_directory: str | None = None,
        git_command: str | None = None,
    ):
        super().__init__(message, "GIT_ERROR", True)
        self.working_directory = working_directory
        self.git_command = git_command


class GitNotAvailableError(GitError):
    """Git is not installed or not on PATH."""

    def __init__(self) -> None:
        super().__init__("Git is not installed or not available in the system PATH.")


class NotAGitRepositoryError(GitError):
    """The working directory is not inside a git work tree."""

    def __init__(self, working_directory: str):
        super().__init__(
            f"The path '{working_directory}' is not a Git repository.",
            working_directory=working_directory,
        )


class GitTimeoutError(GitError):
    """A git command exceeded its timeout and was killed."""

    pass


# --- Agent CLIs ---


class CliAgentError(AgentRunnerError):
    """An agent CLI invocation failed."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        command: str | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message, "CLI_AGENT_ERROR", True)
        self.provider_name = provider_name
        self.command = command
        self.exit_code = exit_code


class CliAgentNotAvailableError(CliAgentError):
    """The agent executable could not be found or started."""

    def __init__(self, provider_name: str):
        super().__init__(
            f"The CLI agent '{provider_name}' is not available. "
            "Please ensure it is installed and configured correctly.",
            provider_name,
        )


class CliAgentAuthenticationError(CliAgentError):
    """The agent CLI needs an interactive login first."""

    def __init__(self, provider_name: str):
        super().__init__(
            f"The CLI agent '{provider_name}' requires authentication. "
            "Please run the agent manually to complete authentication.",
            provider_name,
        )


class UsageLimitExceededError(CliAgentError):
    """The vendor reported an exhausted quota."""

    def __init__(
        self,
        provider_name: str,
        usage_percentage: float | None = None,
        reset_time: datetime | None = None,
    ):
        super().__init__(f"The CLI agent '{provider_name}' has exceeded its usage limit.", provider_name)
        self.usage_percentage = usage_percentage
        self.reset_time = reset_time


# --- Providers ---


class ProviderConfigError(AgentRunnerError):
    """Provider configuration is invalid for its vendor."""

    def __init__(self, message: str):
        super().__init__(message, "PROVIDER_CONFIG_ERROR", False)


class ExecutionCancelledError(AgentRunnerError):
    """The caller cancelled a running execution.

    The session id captured before cancellation (if any) is the only
    resumable artifact.
    """

    def __init__(self, message: str = "Execution was cancelled", session_id: str | None = None, process_id: int | None = None):
        super().__init__(message, "CANCELLED", True)
        self.session_id = session_id
        self.process_id = process_id


class ApiError(AgentRunnerError):
    """A REST call returned an error status."""

    def __init__(self, message: str, status_code: int, response_content: str | None = None):
        super().__init__(message, "API_ERROR", True)
        self.status_code = status_code
        self.response_content = response_content
