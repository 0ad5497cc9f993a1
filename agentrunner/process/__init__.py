"""Process supervision and one-shot command execution."""

from agentrunner.process.executor import GitCommandExecutor, GitCommandResult
from agentrunner.process.platform import kill_process_tree, resolve_executable
from agentrunner.process.supervisor import (
    ExitStatus,
    ManagedProcess,
    ProcessCompletion,
    ProcessHandle,
    ProcessHealth,
    ProcessStartOptions,
    ProcessState,
    ProcessSupervisor,
    get_default_supervisor,
)

__all__ = [
    "ExitStatus",
    "GitCommandExecutor",
    "GitCommandResult",
    "ManagedProcess",
    "ProcessCompletion",
    "ProcessHandle",
    "ProcessHealth",
    "ProcessStartOptions",
    "ProcessState",
    "ProcessSupervisor",
    "get_default_supervisor",
    "kill_process_tree",
    "resolve_executable",
]
