"""Short-lived command execution for git and CLI housekeeping.

One invocation, captured output, no streaming. Everything goes through
argument vectors; nothing here ever builds a shell string.
"""

import logging
import subprocess

from pydantic import BaseModel

from agentrunner.core.errors import GitTimeoutError
from agentrunner.process.platform import build_process_env, format_command

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT = 30


class GitCommandResult(BaseModel):
    """Exit code plus captured output of one command."""

    exit_code: int
    output: str = ""
    error: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class GitCommandExecutor:
    """Run git (or another executable) once and capture its output."""

    def __init__(self, git_executable: str = "git", default_timeout: float = DEFAULT_GIT_TIMEOUT):
        self.git_executable = git_executable
        self.default_timeout = default_timeout

    def execute(
        self,
        args: list[str],
        working_directory: str | None = None,
        timeout: float | None = None,
    ) -> GitCommandResult:
        """Run `git <args>`.

        A missing git binary yields exit code -1 with a "Failed to start git"
        error instead of raising.

        Raises:
            GitTimeoutError: If the command outlives `timeout` (it is killed).
        """
        return self.execute_raw(self.git_executable, args, working_directory, timeout, tool_name="git")

    def execute_raw(
        self,
        command: str,
        args: list[str],
        working_directory: str | None = None,
        timeout: float | None = None,
        tool_name: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> GitCommandResult:
        """Run an arbitrary executable with the same contract as execute()."""
        timeout = self.default_timeout if timeout is None else timeout
        name = tool_name or command
        logger.debug(f"Running: {format_command(command, args)} (cwd={working_directory})")
        try:
            completed = subprocess.run(
                [command, *args],
                cwd=working_directory or None,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=build_process_env(environment),
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run already killed the child
            raise GitTimeoutError(
                f"{name} command timed out after {timeout}s: {format_command(command, args)}",
                working_directory=working_directory,
                git_command=" ".join(args),
            ) from e
        except OSError as e:
            logger.warning(f"Failed to start {name}: {e}")
            return GitCommandResult(exit_code=-1, error=f"Failed to start {name}: {e}")

        return GitCommandResult(
            exit_code=completed.returncode,
            output=completed.stdout.strip(),
            error=completed.stderr.strip(),
        )
