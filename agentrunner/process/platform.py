"""Platform-specific process helpers.

Process-tree termination differs per OS; everything OS-specific lives here
behind `kill_process_tree` so the supervisor stays platform-neutral.
"""

import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Seconds to wait after SIGTERM before escalating to SIGKILL
TERM_GRACE_SECONDS = 2.0


def _user_tool_dirs() -> list[str]:
    """Common per-user install locations that service environments often miss."""
    home = os.environ.get("HOME")
    dirs = []
    if home:
        dirs.append(str(Path(home) / ".local" / "bin"))
        dirs.append(str(Path(home) / "bin"))
    dirs.extend(["/usr/local/bin", "/opt/homebrew/bin"])
    return dirs


def build_search_path(base_path: str | None = None) -> str:
    """Return PATH with existing user tool directories prepended."""
    current = base_path if base_path is not None else os.environ.get("PATH", "")
    current_parts = current.split(os.pathsep) if current else []
    extra = [d for d in _user_tool_dirs() if os.path.isdir(d) and d not in current_parts]
    return os.pathsep.join(extra + current_parts)


def build_process_env(extra: dict[str, str] | None = None) -> dict[str, str]:
    """Inherit the host environment, widen PATH, and apply overrides."""
    env = os.environ.copy()
    if not IS_WINDOWS:
        env["PATH"] = build_search_path(env.get("PATH", ""))
    if extra:
        env.update(extra)
    return env


def resolve_executable(name: str, custom_path: str | None = None) -> str:
    """Resolve an executable to a full path.

    Resolution order: explicit custom path (if it exists), then PATH plus the
    user tool directories, then the bare name (left for the OS to resolve,
    which makes a missing tool surface as a spawn failure).
    """
    if custom_path:
        if os.path.isfile(custom_path):
            return custom_path
        if IS_WINDOWS and not custom_path.lower().endswith(".exe") and os.path.isfile(custom_path + ".exe"):
            return custom_path + ".exe"
        # Custom value may be a bare command name
        found = shutil.which(custom_path, path=build_search_path())
        if found:
            return found

    found = shutil.which(name, path=build_search_path())
    return found or name


def popen_platform_kwargs() -> dict:
    """Extra Popen kwargs so the child can be killed together with its descendants."""
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}  # type: ignore[attr-defined]
    return {"start_new_session": True}


def kill_process_tree(proc: subprocess.Popen) -> bool:
    """Terminate `proc` and all of its descendants.

    Returns True if the process is gone afterwards. Never raises.
    """
    if proc.poll() is not None:
        if not IS_WINDOWS:
            # Leader is gone; descendants may still hold the group (and our pipes)
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
        return True

    if IS_WINDOWS:
        try:
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
                capture_output=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"taskkill failed for {proc.pid}: {e}, falling back to kill()")
            try:
                proc.kill()
            except OSError:
                pass
    else:
        # Child was started in its own session, so pgid == pid
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return True
        except PermissionError as e:
            logger.warning(f"Cannot signal process group {proc.pid}: {e}")
            try:
                proc.terminate()
            except OSError:
                pass

        try:
            proc.wait(timeout=TERM_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                try:
                    proc.kill()
                except OSError:
                    pass

    try:
        proc.wait(timeout=3)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {proc.pid} still running after kill")
        return False
    return True


def format_command(executable: str, args: list[str]) -> str:
    """Human-readable command line for logs and `command_used`."""
    if IS_WINDOWS:
        return subprocess.list2cmdline([executable, *args])
    return shlex.join([executable, *args])
