"""OpenCode-specific output classification.

OpenCode writes tool activity ("|  Read  src/app.py") and reasoning markers to
stderr, so stderr content alone does not mean failure. These helpers separate
progress from real CLI errors and parse the auxiliary commands
(`opencode models`, `opencode session show`).
"""

import json
import re

TOOL_KEYWORDS = (
    "Read", "Write", "Edit", "Bash", "Glob", "Grep", "LS", "List",
    "Todo", "TodoRead", "TodoWrite", "Fetch", "Search", "Find",
    "MultiEdit", "Patch", "View", "Cat", "Head", "Tail",
    "Mkdir", "Rm", "Mv", "Cp", "Touch", "Chmod",
)  # fmt: skip

_REASONING_PREFIXES = ("thinking", "planning", "analyzing")
_LS_LINE = re.compile(r"^[-drwx]{10}\s+\d+\s+\w+\s+\w+\s+\d+")
_LOG_PREFIXES = ("INFO", "WARN", "WARNING", "ERROR", "DEBUG", "TRACE", "FATAL")
_TIMESTAMP = re.compile(r"^\[?\d{4}-\d{2}-\d{2}")
_MODEL_NAME = re.compile(r"^[\w/:.\-]+$")

MAX_EXTRACTED_ERRORS = 15


def is_tool_progress_line(line: str | None) -> bool:
    """Tool activity, reasoning markers or `ls -l` output; never an error."""
    if not line or not line.strip():
        return False
    trimmed = line.strip()

    if trimmed.startswith("|"):
        after_pipe = trimmed.lstrip("|").lstrip().lower()
        if any(after_pipe.startswith(tool.lower()) for tool in TOOL_KEYWORDS):
            return True

    if trimmed.lower().startswith(_REASONING_PREFIXES):
        return True

    return bool(_LS_LINE.match(trimmed))


def tool_name_from_progress(line: str | None) -> str | None:
    """First word after the leading pipe of a tool progress line."""
    if not line:
        return None
    trimmed = line.strip()
    if not trimmed.startswith("|"):
        return None
    after_pipe = trimmed.lstrip("|").strip()
    return after_pipe.split()[0] if after_pipe else None


def is_cli_error_line(line: str | None) -> bool:
    """Lines that mean the CLI itself failed (bad model, auth, connectivity...)."""
    if not line or not line.strip():
        return False
    lowered = line.strip().lower()

    if lowered.startswith(("error:", "error ", "fatal:", "fatal ", "panic:", "not found:")):
        return True
    if "model" in lowered and "not found" in lowered:
        return True
    if "api" in lowered and any(w in lowered for w in ("key", "invalid", "missing")):
        return True
    if "auth" in lowered and any(w in lowered for w in ("failed", "error", "invalid")):
        return True
    if "connection" in lowered and any(w in lowered for w in ("refused", "failed", "timeout")):
        return True
    if "provider" in lowered and any(w in lowered for w in ("not found", "unavailable", "error")):
        return True
    return any(
        phrase in lowered
        for phrase in ("permission denied", "access denied", "rate limit", "quota exceeded")
    )


_PLAIN_ERROR_PREFIXES = ("error:", "error ", "failed:", "fatal:", "fatal ", "panic:", "exception:")
_PLAIN_ERROR_PHRASES = (
    "error:", "failed to", "cannot ", "unable to", "not found", "invalid ", "no such",
    "permission denied", "access denied", "rate limit", "quota exceeded",
    "connection refused", "connection failed", "timeout",
)  # fmt: skip


def _looks_like_plain_error(lowered: str) -> bool:
    if any(phrase in lowered for phrase in _PLAIN_ERROR_PHRASES):
        return True
    if "model" in lowered and any(w in lowered for w in ("not found", "invalid", "unavailable")):
        return True
    if "api" in lowered and any(w in lowered for w in ("key", "invalid", "missing", "error")):
        return True
    if "auth" in lowered and any(w in lowered for w in ("failed", "error", "invalid")):
        return True
    return "provider" in lowered and any(w in lowered for w in ("not found", "unavailable", "error"))


def _json_errors(event: dict) -> list[str]:
    found = []
    if str(event.get("type", "")).lower() in ("error", "fatal", "panic"):
        for key in ("error", "message", "content", "detail", "reason"):
            value = event.get(key)
            if isinstance(value, str) and value.strip():
                found.append(value)
                break
    for key in ("error", "error_message", "errorMessage", "err"):
        value = event.get(key)
        if isinstance(value, str) and value.strip():
            found.append(value)
    return found


def extract_error_from_output(lines: list[str], prefixes_only: bool = False) -> str | None:
    """Collect distinct error statements from output lines (at most 15).

    JSON lines contribute their error fields. Plain lines count when they
    start with an error prefix, or, unless `prefixes_only`, when they contain
    a known error phrase. Tool progress lines are skipped.
    """
    errors: list[str] = []

    def add(text: str) -> None:
        if text not in errors:
            errors.append(text)

    for line in lines:
        if not line or not line.strip() or is_tool_progress_line(line):
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            event = None

        if isinstance(event, dict):
            for text in _json_errors(event):
                add(text)
            continue

        trimmed = line.strip()
        lowered = trimmed.lower()
        if lowered.startswith(_PLAIN_ERROR_PREFIXES):
            add(trimmed)
        elif not prefixes_only and _looks_like_plain_error(lowered):
            add(trimmed)

    return "\n".join(errors[:MAX_EXTRACTED_ERRORS]) if errors else None


# --- Models ---


def is_log_line(line: str) -> bool:
    for prefix in _LOG_PREFIXES:
        if line.upper().startswith(prefix):
            rest = line[len(prefix):]
            if not rest or rest[0].isspace() or rest[0] == ":":
                return True
    return bool(_TIMESTAMP.match(line))


def is_valid_model_name(name: str | None) -> bool:
    """Letters, digits and `/:-_.` only (e.g. "anthropic/claude-sonnet-4", "llama3:8b")."""
    return bool(name) and bool(_MODEL_NAME.match(name))


def parse_models_output(output: str | None) -> list[str]:
    """Model ids from `opencode models`, with log noise removed."""
    models = []
    for line in (output or "").splitlines():
        trimmed = line.strip()
        if trimmed and not is_log_line(trimmed) and is_valid_model_name(trimmed):
            models.append(trimmed)
    return models


def default_model_multiplier(model_name: str) -> float:
    """Rough relative cost tier from the model name."""
    lowered = model_name.lower()
    if any(w in lowered for w in ("opus", "large", "max", "big")):
        return 5.0
    if any(w in lowered for w in ("sonnet", "medium", "pro")):
        return 1.0
    if any(w in lowered for w in ("haiku", "mini", "small", "nano")):
        return 0.25
    if lowered.startswith(("ollama/", "local/")):
        return 0.01
    return 1.0


# --- Sessions ---


def parse_session_output(output: str | None) -> str | None:
    """Summary from `opencode session show --format json`.

    Prefers `summary`, then `description`, then the last assistant message
    if it is at most 500 characters.
    """
    if not output or not output.strip():
        return None
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    if "summary" in data:
        return data["summary"]
    if "description" in data:
        return data["description"]

    last = ""
    for message in data.get("messages") or []:
        if isinstance(message, dict) and message.get("role") == "assistant" and "content" in message:
            last = message.get("content") or ""
    if last.strip() and len(last) <= 500:
        return last
    return None


def clean_output(output: str | None, max_length: int = 500) -> str:
    """Readable answer text from `opencode run` output."""
    if not output or not output.strip():
        return ""

    parts: list[str] = []
    for line in output.split("\n"):
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            if not line.startswith("{"):
                parts.append(line + "\n")
            continue
        if not isinstance(event, dict):
            continue

        event_type = event.get("type")
        if event_type in ("message", "assistant") and isinstance(event.get("content"), str):
            parts.append(event["content"])
        elif event_type in ("done", "complete"):
            final = event.get("output")
            if isinstance(final, str) and final.strip():
                return final.strip()

    return "".join(parts).strip()[:max_length]
