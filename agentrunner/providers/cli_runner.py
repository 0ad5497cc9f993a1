"""Shared mechanics for CLI-backed providers.

Every vendor CLI is driven the same way: resolve the executable, spawn it
under the ProcessSupervisor, pump its output through a vendor StreamParser,
wait with timeout and cancellation, then turn exit code and parser
diagnostics into an ExecutionResult. Providers own one CliToolRunner and
only supply arguments and a parser.
"""

import logging
import threading
import time
from collections.abc import Callable, Sequence

from agentrunner.core.config import EngineConfig
from agentrunner.core.errors import ExecutionCancelledError
from agentrunner.core.interaction import detect_interaction_from_output
from agentrunner.core.models import CliUpdateResult, ExecutionResult, PromptResponse, SessionSummary
from agentrunner.core.summary import generate_summary_from_output
from agentrunner.process.platform import build_search_path, format_command, resolve_executable
from agentrunner.process.supervisor import (
    ProcessCompletion,
    ProcessStartOptions,
    ProcessSupervisor,
    get_default_supervisor,
)
from agentrunner.streaming.parsers import StreamParser
from agentrunner.streaming.queue import StreamPump

logger = logging.getLogger(__name__)

# Interval between "still initializing" notices before the first output
INIT_WARNING_INTERVAL_SECONDS = 5.0
# Lines of stdout quoted in an error when nothing better is available
ERROR_TAIL_LINES = 10
UPDATE_TIMEOUT_SECONDS = 300.0

_SERVICE_HINT = (
    "If running as a service, ensure the CLI is installed for the service user "
    "or configure an absolute executable path."
)


def compose_failure_message(
    vendor_name: str,
    exit_code: int,
    stderr_diagnostic: str,
    stream_error: str,
    stdout_lines: Sequence[str],
) -> str:
    """Error text for a failed run, most specific source first.

    stderr diagnostics, then stream-reported errors. The stdout tail is only
    quoted when neither exists.
    """
    parts = [p for p in (stderr_diagnostic, stream_error) if p]
    if not parts and stdout_lines:
        parts.append("Last output:\n" + "\n".join(stdout_lines[-ERROR_TAIL_LINES:]))
    if not parts:
        return f"{vendor_name} CLI exited with code {exit_code}"
    return "\n".join(parts)


class InitializationMonitor:
    """Reports a waiting message every few seconds until the CLI prints something."""

    def __init__(
        self,
        has_output: Callable[[], bool],
        notify: Callable[..., None],
        interval: float = INIT_WARNING_INTERVAL_SECONDS,
    ):
        self._has_output = has_output
        self._notify = notify
        self._interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="cli-init-monitor", daemon=True)
        self.warnings_sent = 0

    def start(self) -> "InitializationMonitor":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def _run(self) -> None:
        started = time.monotonic()
        while not self._stop.wait(self._interval):
            if self._has_output():
                return
            self.warnings_sent += 1
            waited = int(time.monotonic() - started)
            if self.warnings_sent == 1:
                line = f"Still initializing... (waited {waited}s)."
            elif self.warnings_sent == 2:
                line = f"Still waiting for response... (waited {waited}s)."
            else:
                line = f"Still waiting ({waited}s)... Process is running."
            self._notify(
                current_message=f"Waiting for CLI response ({waited}s)...",
                output_line=line,
                is_streaming=True,
            )


class CliToolRunner:
    """Runs one vendor CLI under the process supervisor."""

    def __init__(
        self,
        vendor_name: str,
        default_executable: str,
        executable_path: str | None = None,
        working_directory: str | None = None,
        supervisor: ProcessSupervisor | None = None,
        config: EngineConfig | None = None,
    ):
        self.vendor_name = vendor_name
        self.default_executable = default_executable
        self.executable_path = executable_path
        self.working_directory = working_directory
        self.config = config or EngineConfig()
        self.supervisor = supervisor or get_default_supervisor(self.config)

    def resolve_executable(self) -> str:
        return resolve_executable(self.default_executable, self.executable_path)

    def _spawn_failure(self, executable: str, reason: str | None) -> str:
        return (
            f"Failed to start {self.vendor_name} CLI: {reason}. "
            f"Executable path: '{executable}'. Current PATH: {build_search_path()}. {_SERVICE_HINT}"
        )

    # --- One-shot commands ---

    def run_once(
        self,
        args: list[str],
        timeout: float,
        working_directory: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> tuple[ProcessCompletion | None, str | None]:
        """Run a short command to completion, returning (completion, None) or (None, reason)."""
        executable = self.resolve_executable()
        handle, reason = self.supervisor.try_start(
            ProcessStartOptions(
                executable=executable,
                args=list(args),
                working_directory=working_directory or self.working_directory,
                environment=environment,
                label=f"{self.vendor_name} {args[0] if args else ''}".strip(),
            )
        )
        if handle is None:
            return None, reason
        try:
            return self.supervisor.wait_for_exit(handle.process_id, timeout=timeout), None
        finally:
            self.supervisor.remove(handle.process_id)

    def test_cli_connection(self, version_args: Sequence[str] = ("--version",)) -> tuple[bool, str | None]:
        """Run `<exe> --version`. Connected means exit 0 with some output."""
        executable = self.resolve_executable()
        command = format_command(executable, list(version_args))
        timeout = self.config.connection_test_timeout
        completion, reason = self.run_once(list(version_args), timeout)

        if completion is None:
            return False, self._spawn_failure(executable, reason)

        if completion.timed_out:
            return False, (
                f"CLI test timed out after {timeout:.0f} seconds. Command: {command}\n"
                "Possible causes:\n"
                "- The CLI is waiting for interactive input (login or first-run setup)\n"
                "- Network issues while the CLI checks for updates\n"
                f"Try running '{command}' manually in a terminal."
            )

        output = completion.output.strip()
        if completion.exit_code == 0 and output:
            logger.info(f"{self.vendor_name} CLI connected: {output.splitlines()[0]}")
            return True, None

        lines = [f"CLI test failed for command: {command}", f"Exit code: {completion.exit_code}"]
        if completion.error.strip():
            lines.append(f"Error output: {completion.error.strip()}")
        if output:
            lines.append(f"Output: {output}")
        else:
            lines.append("No output received from --version command.")
        return False, "\n".join(lines)

    def get_cli_version(self, version_args: Sequence[str] = ("--version",)) -> str:
        completion, _ = self.run_once(list(version_args), self.config.connection_test_timeout)
        if completion is None:
            return "unknown"
        if completion.timed_out:
            return "unknown (timeout)"
        version = completion.output.strip()
        return version if completion.exit_code == 0 and version else "unknown"

    def run_simple_prompt(
        self,
        args: list[str],
        working_directory: str | None = None,
        model_used: str | None = None,
    ) -> PromptResponse:
        """One-shot prompt: no streaming, no progress, stdout is the answer."""
        started = time.monotonic()
        completion, reason = self.run_once(args, self.config.prompt_timeout, working_directory)
        if completion is None:
            return PromptResponse.fail(self._spawn_failure(self.resolve_executable(), reason))
        if completion.timed_out:
            return PromptResponse.fail(
                f"Request timed out after {self.config.prompt_timeout / 60:g} minutes."
            )
        if completion.exit_code != 0 and completion.error.strip():
            return PromptResponse.fail(f"{self.vendor_name} CLI returned error: {completion.error.strip()}")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        return PromptResponse.ok(
            completion.output.strip(),
            elapsed_ms,
            model_used or self.default_executable.lower(),
        )

    def run_capture(
        self,
        args: list[str],
        timeout: float,
        working_directory: str | None = None,
    ) -> str | None:
        """stdout of a successful short command, else None."""
        completion, reason = self.run_once(args, timeout, working_directory)
        if completion is None:
            logger.warning(f"{self.vendor_name} '{' '.join(args[:2])}' failed to start: {reason}")
            return None
        if not completion.success:
            logger.info(
                f"{self.vendor_name} '{' '.join(args[:2])}' ended with {completion.status.value} "
                f"(exit code {completion.exit_code})"
            )
            return None
        return completion.output

    def summarize_output(self, fallback_output: str | None) -> SessionSummary:
        """Summary built from captured run output when the session cannot be asked."""
        summary = generate_summary_from_output(fallback_output)
        if summary:
            return SessionSummary(success=True, summary=summary, source="output")
        return SessionSummary(
            success=False,
            error_message="No session ID or output available to generate summary",
        )

    def run_update(self, update_args: Sequence[str] = ("update",)) -> CliUpdateResult:
        """Run the CLI's self-update and report versions before and after."""
        previous = self.get_cli_version()
        completion, reason = self.run_once(list(update_args), UPDATE_TIMEOUT_SECONDS)
        if completion is None:
            return CliUpdateResult(
                success=False,
                previous_version=previous,
                error_message=self._spawn_failure(self.resolve_executable(), reason),
            )
        if not completion.success:
            if completion.timed_out:
                error = f"Update timed out after {UPDATE_TIMEOUT_SECONDS:.0f} seconds."
            else:
                error = completion.error.strip() or f"Update exited with code {completion.exit_code}"
            return CliUpdateResult(
                success=False,
                previous_version=previous,
                output=completion.output.strip() or None,
                error_message=error,
            )

        current = self.get_cli_version()
        logger.info(f"{self.vendor_name} CLI updated: {previous} -> {current}")
        return CliUpdateResult(
            success=True,
            previous_version=previous,
            new_version=current,
            output=completion.output.strip() or None,
        )

    # --- Streaming runs ---

    def run_streaming(
        self,
        args: list[str],
        parser: StreamParser,
        working_directory: str | None = None,
        environment: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run a full agent session and return its normalised result.

        Raises:
            ExecutionCancelledError: If `cancel_event` was set, or the process
                was killed from outside, before the CLI exited.
        """
        executable = self.resolve_executable()
        command = format_command(executable, args)
        cwd = working_directory or self.working_directory
        logger.info(f"Running {self.vendor_name} CLI in {cwd or '.'}: {command}")

        handle, reason = self.supervisor.try_start(
            ProcessStartOptions(
                executable=executable,
                args=args,
                working_directory=cwd,
                environment=environment,
                label=self.vendor_name,
            )
        )
        if handle is None:
            return ExecutionResult(
                success=False,
                error_message=(
                    f"Failed to start {self.vendor_name} CLI process: {reason}. "
                    f"Ensure the executable at '{executable}' is accessible and has execute permissions. "
                    f"Current PATH: {build_search_path()}"
                ),
                command_used=command,
            )

        process_id = handle.process_id
        parser.acc.notify(
            current_message="CLI process started successfully",
            process_id=process_id,
            command_used=command,
        )
        parser.acc.notify(
            output_line=f"Process started (PID: {process_id}). Waiting for CLI to initialize...",
            is_streaming=True,
            process_id=process_id,
        )

        pump = StreamPump(handle.output, parser.handle, name=f"{self.default_executable}-pump-{process_id}").start()
        monitor = InitializationMonitor(lambda: parser.has_output, parser.acc.notify).start()
        try:
            completion = self.supervisor.wait_for_exit(process_id, timeout=timeout, cancel_event=cancel_event)
        finally:
            monitor.stop()

        if not pump.join(self.config.stream_drain_grace):
            logger.warning(
                f"{self.vendor_name} output pump for process {process_id} did not finish; "
                "discarding undelivered output"
            )
            # The parser must not change once finalize() starts reading it
            pump.stop()
        self.supervisor.remove(process_id)

        if completion is None or completion.cancelled:
            logger.info(f"{self.vendor_name} execution cancelled (process {process_id})")
            raise ExecutionCancelledError(
                f"{self.vendor_name} execution was cancelled",
                session_id=parser.acc.result.session_id,
                process_id=process_id,
            )

        result = parser.finalize()
        result.process_id = process_id
        result.exit_code = completion.exit_code
        result.command_used = command
        result.timed_out = completion.timed_out
        result.success = completion.exit_code == 0 and not completion.timed_out and not parser.failed

        if not result.success:
            message = compose_failure_message(
                self.vendor_name,
                completion.exit_code,
                parser.stderr_diagnostic(completion.exit_code),
                parser.stream_error,
                parser.stdout_lines,
            )
            if completion.timed_out:
                message = f"Execution timed out after {timeout:.0f} seconds.\n{message}"
            result.error_message = message
            result.pending_interaction = detect_interaction_from_output(
                parser.stdout_lines + parser.stderr_lines
            )
            logger.warning(f"{self.vendor_name} run failed (exit code {completion.exit_code}): {message[:200]}")
        else:
            logger.info(
                f"{self.vendor_name} run finished in {completion.duration_seconds:.1f}s "
                f"(session {result.session_id}, {result.total_tokens} tokens)"
            )
        return result
