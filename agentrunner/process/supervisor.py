"""Process supervision for long-running agent CLIs.

The supervisor spawns child processes, tracks them in a shared registry,
streams their output line by line, and terminates whole process trees.

Lifecycle of one entry:
    Starting -> Running -> {Exited | Killed | TimedOut | Cancelled} -> Completed

Terminal entries stay queryable until `remove()` is called. A kill (explicit,
or caused by cancellation / timeout in `wait_for_exit`) removes the entry.

Spawn failures never raise: `start()` returns None and the reason is logged
(`try_start()` also returns it to the caller).
"""

import atexit
import logging
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel

from agentrunner.core.config import EngineConfig
from agentrunner.process.platform import (
    build_process_env,
    format_command,
    kill_process_tree,
    popen_platform_kwargs,
)
from agentrunner.streaming.queue import OutputQueue, StreamLine, StreamSource

logger = logging.getLogger(__name__)

# How long wait_for_exit gives reader threads to drain pipes after exit
DEFAULT_DRAIN_GRACE_SECONDS = 10.0
# Default stall threshold for health checks (5 minutes)
DEFAULT_STALL_THRESHOLD_SECONDS = 300.0

_POLL_INTERVAL_SECONDS = 0.1


class ProcessState(str, Enum):
    """Lifecycle state of a managed process."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class ExitStatus(str, Enum):
    """How wait_for_exit ended."""

    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class ProcessStartOptions:
    """What to spawn and how."""

    executable: str
    args: list[str] = field(default_factory=list)
    working_directory: str | None = None
    environment: dict[str, str] | None = None
    # Called from reader threads as (line, is_error). Must not block.
    on_output: Callable[[str, bool], None] | None = None
    label: str | None = None


@dataclass(frozen=True)
class ProcessHandle:
    """What the caller gets back from a successful start."""

    process_id: int
    command: str
    output: OutputQueue


class ProcessCompletion(BaseModel):
    """Result of waiting for a managed process."""

    model_config = {"arbitrary_types_allowed": True}

    process_id: int
    status: ExitStatus
    exit_code: int
    duration_seconds: float
    output: str = ""
    error: str = ""
    streams_drained: bool = True

    @property
    def success(self) -> bool:
        return self.status == ExitStatus.EXITED and self.exit_code == 0

    @property
    def timed_out(self) -> bool:
        return self.status == ExitStatus.TIMED_OUT

    @property
    def cancelled(self) -> bool:
        return self.status == ExitStatus.CANCELLED


@dataclass
class ProcessHealth:
    """Snapshot from check_health()."""

    process_id: int
    is_running: bool
    is_stalled: bool
    last_output_at: datetime | None
    output_line_count: int
    message: str


class ManagedProcess:
    """The engine's record of one spawned OS process and its I/O state.

    stdout and stderr buffers are guarded separately because both reader
    threads append concurrently.
    """

    def __init__(self, popen: subprocess.Popen, command: str, label: str | None = None):
        self.popen = popen
        self.process_id: int = popen.pid
        self.command = command
        self.label = label
        self.started_at = time.monotonic()
        self.started_at_utc = datetime.now(timezone.utc)
        self.last_output_at: float | None = None
        self.output_queue = OutputQueue()
        self.cancel_event = threading.Event()
        self.state = ProcessState.STARTING
        self.completed = False
        self.exit_code: int | None = None
        self.readers: list[threading.Thread] = []

        self._stdout_lines: list[str] = []
        self._stderr_lines: list[str] = []
        self._stdout_lock = threading.Lock()
        self._stderr_lock = threading.Lock()

    def record_line(self, line: str, is_error: bool) -> None:
        if is_error:
            with self._stderr_lock:
                self._stderr_lines.append(line)
        else:
            with self._stdout_lock:
                self._stdout_lines.append(line)
        self.last_output_at = time.monotonic()

    @property
    def output(self) -> str:
        with self._stdout_lock:
            return "\n".join(self._stdout_lines)

    @property
    def error(self) -> str:
        with self._stderr_lock:
            return "\n".join(self._stderr_lines)

    @property
    def line_count(self) -> int:
        with self._stdout_lock, self._stderr_lock:
            return len(self._stdout_lines) + len(self._stderr_lines)

    @property
    def last_output_at_utc(self) -> datetime | None:
        if self.last_output_at is None:
            return None
        return datetime.fromtimestamp(
            self.started_at_utc.timestamp() + (self.last_output_at - self.started_at),
            tz=timezone.utc,
        )

    def mark_completed(self, exit_code: int, state: ProcessState) -> None:
        self.exit_code = exit_code
        self.state = state
        self.completed = True


class ProcessSupervisor:
    """Spawn, track, stream and kill agent processes.

    The registry is shared by every execution thread and guarded by an RLock
    (reentrant so dispose() can call kill() while holding it).
    """

    def __init__(
        self,
        drain_grace_seconds: float = DEFAULT_DRAIN_GRACE_SECONDS,
        stall_threshold_seconds: float = DEFAULT_STALL_THRESHOLD_SECONDS,
    ):
        self.drain_grace_seconds = drain_grace_seconds
        self.stall_threshold_seconds = stall_threshold_seconds
        self._processes: dict[int, ManagedProcess] = {}
        self._lock = threading.RLock()
        self._disposed = False

    @classmethod
    def from_config(cls, config: EngineConfig) -> "ProcessSupervisor":
        return cls(
            drain_grace_seconds=config.stream_drain_grace,
            stall_threshold_seconds=config.stall_threshold_seconds,
        )

    # --- Spawning ---

    def start(self, options: ProcessStartOptions) -> ProcessHandle | None:
        """Spawn a process. Returns None if it could not be started."""
        handle, _ = self.try_start(options)
        return handle

    def try_start(self, options: ProcessStartOptions) -> tuple[ProcessHandle | None, str | None]:
        """Spawn a process, returning (handle, None) or (None, reason)."""
        command = format_command(options.executable, options.args)
        try:
            popen = subprocess.Popen(
                [options.executable, *options.args],
                # Agent CLIs must never wait on interactive input
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=options.working_directory or None,
                env=build_process_env(options.environment),
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **popen_platform_kwargs(),
            )
        except (OSError, ValueError) as e:
            reason = f"{type(e).__name__}: {e}"
            logger.warning(f"Failed to start '{command}': {reason}")
            return None, reason

        managed = ManagedProcess(popen, command, options.label)
        with self._lock:
            if popen.pid in self._processes:
                # PID reuse after a stale entry was never removed
                logger.warning(f"Replacing stale registry entry for PID {popen.pid}")
            self._processes[popen.pid] = managed

        for pipe, source in ((popen.stdout, StreamSource.STDOUT), (popen.stderr, StreamSource.STDERR)):
            reader = threading.Thread(
                target=self._read_stream,
                args=(managed, pipe, source, options.on_output),
                name=f"reader-{popen.pid}-{source.value}",
                daemon=True,
            )
            managed.readers.append(reader)
            reader.start()

        managed.state = ProcessState.RUNNING
        logger.info(f"Started process {popen.pid}: {command}")
        return ProcessHandle(process_id=popen.pid, command=command, output=managed.output_queue), None

    def _read_stream(
        self,
        managed: ManagedProcess,
        pipe,
        source: StreamSource,
        on_output: Callable[[str, bool], None] | None,
    ) -> None:
        is_error = source == StreamSource.STDERR
        try:
            for raw in pipe:
                line = raw.rstrip("\r\n")
                managed.record_line(line, is_error)
                if on_output is not None:
                    try:
                        on_output(line, is_error)
                    except Exception as e:
                        logger.warning(f"Output callback failed for process {managed.process_id}: {e}")
                managed.output_queue.put(StreamLine(source, line))
        except (OSError, ValueError) as e:
            # Pipe closed underneath us (process killed)
            logger.debug(f"Reader for {managed.process_id}/{source.value} stopped: {e}")
        finally:
            managed.output_queue.end_stream(source)
            try:
                pipe.close()
            except OSError:
                pass

    # --- Waiting ---

    def wait_for_exit(
        self,
        process_id: int,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ProcessCompletion | None:
        """Block until the process exits, times out, or is cancelled.

        Args:
            process_id: Id returned by start().
            timeout: Supervisor-level timeout in seconds, independent of
                the caller's cancellation. None means no wall-clock cap.
            cancel_event: Caller cancellation signal. Setting it kills the
                whole process tree.

        Returns:
            ProcessCompletion, or None if the id is unknown.
        """
        managed = self.get(process_id)
        if managed is None:
            return None

        deadline = time.monotonic() + timeout if timeout is not None else None
        status = ExitStatus.EXITED
        while True:
            try:
                managed.popen.wait(timeout=_POLL_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                pass
            if managed.cancel_event.is_set() or (cancel_event is not None and cancel_event.is_set()):
                status = ExitStatus.CANCELLED
                break
            if deadline is not None and time.monotonic() >= deadline:
                status = ExitStatus.TIMED_OUT
                break

        if status == ExitStatus.EXITED and managed.state == ProcessState.KILLED:
            # kill() from another thread ended the wait
            status = ExitStatus.CANCELLED

        if status == ExitStatus.EXITED:
            exit_code = managed.popen.returncode
        else:
            self._kill(
                process_id,
                ProcessState.TIMED_OUT if status == ExitStatus.TIMED_OUT else ProcessState.CANCELLED,
            )
            exit_code = -1

        drained = self._join_readers(managed, self.drain_grace_seconds)
        if not drained:
            logger.warning(
                f"Output streams of process {process_id} did not drain within "
                f"{self.drain_grace_seconds}s; finalizing buffers anyway"
            )
            # Descendants still hold the pipes
            kill_process_tree(managed.popen)
        managed.output_queue.close()

        if not managed.completed:
            managed.mark_completed(exit_code, ProcessState.EXITED)

        duration = time.monotonic() - managed.started_at
        logger.info(f"Process {process_id} finished: {status.value} (exit code {exit_code}) after {duration:.1f}s")
        return ProcessCompletion(
            process_id=process_id,
            status=status,
            exit_code=exit_code,
            duration_seconds=duration,
            output=managed.output,
            error=managed.error,
            streams_drained=drained,
        )

    @staticmethod
    def _join_readers(managed: ManagedProcess, grace: float) -> bool:
        deadline = time.monotonic() + grace
        for reader in managed.readers:
            reader.join(max(0.0, deadline - time.monotonic()))
        return not any(reader.is_alive() for reader in managed.readers)

    # --- Termination ---

    def cancel(self, process_id: int) -> None:
        """Signal a waiting wait_for_exit() to cancel. No-op for unknown ids."""
        managed = self.get(process_id)
        if managed is not None:
            managed.cancel_event.set()

    def kill(self, process_id: int) -> None:
        """Terminate a process and all its descendants.

        Idempotent: unknown, completed or already-removed ids are a no-op.
        """
        self._kill(process_id, ProcessState.KILLED)

    def _kill(self, process_id: int, state: ProcessState) -> None:
        with self._lock:
            managed = self._processes.pop(process_id, None)
        if managed is None:
            return

        managed.cancel_event.set()
        if managed.completed:
            return
        managed.state = state
        kill_process_tree(managed.popen)
        managed.mark_completed(-1, state)
        logger.info(f"Killed process tree {process_id} ({state.value})")

    def dispose(self) -> None:
        """Kill every tracked process. Idempotent."""
        with self._lock:
            ids = list(self._processes)
            for process_id in ids:
                self.kill(process_id)
            self._disposed = True
        if ids:
            logger.info(f"Supervisor disposed; killed {len(ids)} process(es)")

    def __enter__(self) -> "ProcessSupervisor":
        return self

    def __exit__(self, *_: object) -> None:
        self.dispose()

    # --- Queries ---

    def get(self, process_id: int) -> ManagedProcess | None:
        with self._lock:
            return self._processes.get(process_id)

    def tracked_ids(self) -> list[int]:
        with self._lock:
            return list(self._processes)

    def remove(self, process_id: int) -> None:
        """Drop a terminal entry from the registry. Running processes are killed first."""
        managed = self.get(process_id)
        if managed is None:
            return
        if not managed.completed and managed.popen.poll() is None:
            self.kill(process_id)
            return
        with self._lock:
            self._processes.pop(process_id, None)

    def get_output(self, process_id: int) -> str | None:
        managed = self.get(process_id)
        return managed.output if managed else None

    def get_error(self, process_id: int) -> str | None:
        managed = self.get(process_id)
        return managed.error if managed else None

    def is_active(self, process_id: int, stall_threshold: float | None = None) -> bool:
        """Liveness heuristic for stalled-job detection.

        True iff the process has not completed AND either its last output was
        less than `stall_threshold` seconds ago, or it has produced no output
        yet and started less than `stall_threshold` seconds ago. The threshold
        defaults to the supervisor's `stall_threshold_seconds`.
        """
        if stall_threshold is None:
            stall_threshold = self.stall_threshold_seconds
        managed = self.get(process_id)
        if managed is None or managed.completed or managed.popen.poll() is not None:
            return False

        now = time.monotonic()
        if managed.last_output_at is not None:
            return now - managed.last_output_at < stall_threshold
        return now - managed.started_at < stall_threshold

    def check_health(
        self,
        process_id: int,
        stall_threshold: float | None = None,
    ) -> ProcessHealth | None:
        """Describe a process for monitoring dashboards."""
        managed = self.get(process_id)
        if managed is None:
            return None

        running = not managed.completed and managed.popen.poll() is None
        stalled = running and not self.is_active(process_id, stall_threshold)
        if not running:
            message = f"Process exited with code {managed.popen.returncode if managed.exit_code is None else managed.exit_code}"
        elif stalled:
            reference = managed.last_output_at or managed.started_at
            message = f"No output for {time.monotonic() - reference:.0f}s"
        else:
            message = "Running"

        return ProcessHealth(
            process_id=process_id,
            is_running=running,
            is_stalled=stalled,
            last_output_at=managed.last_output_at_utc,
            output_line_count=managed.line_count,
            message=message,
        )


_default_supervisor: ProcessSupervisor | None = None
_default_lock = threading.Lock()


def get_default_supervisor(config: EngineConfig | None = None) -> ProcessSupervisor:
    """Process-wide supervisor, disposed automatically at interpreter exit.

    The first caller's `config` sets its drain grace and stall threshold.
    """
    global _default_supervisor
    with _default_lock:
        if _default_supervisor is None:
            _default_supervisor = ProcessSupervisor.from_config(config or EngineConfig())
            atexit.register(_default_supervisor.dispose)
        return _default_supervisor
