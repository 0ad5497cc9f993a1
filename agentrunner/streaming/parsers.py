"""Vendor stream parsers.

Each parser consumes a child's output one line at a time (from the single
drain thread) and drives a StreamAccumulator. Decode failures never raise:
a line that is not a JSON object is treated as plain assistant text.

Rules shared by all vendors:
- assistant/message text is buffered and previewed in progress (100 chars);
- a tool invocation flushes the text buffer before it is appended;
- tool results are appended directly;
- terminal events record tokens, cost, model and final output;
- error events mark failure, append an error message, and parsing continues.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from agentrunner.core.models import ExecutionResult, UsageLimits, UsageLimitType
from agentrunner.core.utils import preview, strip_ansi
from agentrunner.streaming.accumulator import ProgressCallback, StreamAccumulator
from agentrunner.streaming.opencode_output import (
    extract_error_from_output,
    is_cli_error_line,
    is_tool_progress_line,
    tool_name_from_progress,
)
from agentrunner.streaming.queue import StreamLine
from agentrunner.usage.copilot import parse_copilot_stderr
from agentrunner.usage.detector import (
    CLAUDE_POLICY,
    COPILOT_POLICY,
    OPENCODE_POLICY,
    LimitPolicy,
    UsageLimitDetector,
)

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _as_text(value: Any) -> str | None:
    """String fields sometimes arrive as objects; stringify those as JSON."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


class StreamParser(ABC):
    """Base class: line routing, buffering, and end-of-run diagnostics."""

    vendor_name = "Agent"
    limit_policy: LimitPolicy = CLAUDE_POLICY

    def __init__(self, progress: ProgressCallback | None = None):
        self.acc = StreamAccumulator(progress)
        self.stdout_lines: list[str] = []
        self.stderr_lines: list[str] = []
        # Plain text and errors scanned for usage-limit signals
        self.signal_lines: list[str] = []
        self.has_output = False

    # --- Feeding ---

    def handle(self, line: StreamLine) -> None:
        """Route one queued line. Used as the StreamPump handler."""
        text = strip_ansi(line.text)
        if line.is_error:
            self.feed_stderr(text)
        else:
            self.feed_stdout(text)

    def feed_stdout(self, line: str) -> None:
        if not line.strip():
            return
        self.has_output = True
        self.stdout_lines.append(line)
        self.acc.notify(output_line=line, is_error_output=False)

        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            event = None
        if not isinstance(event, dict):
            self.signal_lines.append(line)
            self.on_text_line(line)
            return
        logger.debug(f"{self.vendor_name} event: {event.get('type')}")
        self.on_event(event)

    def feed_stderr(self, line: str) -> None:
        if not line.strip():
            return
        self.has_output = True
        self.stderr_lines.append(line)
        self.signal_lines.append(line)
        self.on_stderr(line)

    @abstractmethod
    def on_event(self, event: dict[str, Any]) -> None:
        """Handle one decoded JSON event."""

    def on_text_line(self, line: str) -> None:
        self.acc.append_text(line)

    def on_stderr(self, line: str) -> None:
        self.acc.notify(output_line=line, is_error_output=True)

    def record_error(self, message: str) -> None:
        self.signal_lines.append(message)
        self.acc.record_error(message)

    # --- Diagnostics ---

    @property
    def failed(self) -> bool:
        """True when the stream itself reported an unresolved error."""
        return self.acc.has_error

    @property
    def stream_error(self) -> str:
        return self.acc.stream_error

    def stderr_diagnostic(self, exit_code: int) -> str:
        return "\n".join(self.stderr_lines).strip()

    # --- Finalisation ---

    def finalize(self) -> ExecutionResult:
        """Flush buffers and return the parsed result (success is set by the caller)."""
        result = self.acc.finish()
        if not result.output and self.stdout_lines:
            result.output = "\n".join(self.stdout_lines)
        self.apply_vendor_metrics(result)
        if result.detected_usage_limits is None:
            result.detected_usage_limits = UsageLimitDetector(self.limit_policy).safe_scan(
                "\n".join(self.signal_lines)
            )
        return result

    def apply_vendor_metrics(self, result: ExecutionResult) -> None:
        """Hook for metrics only available once the stream has ended."""


class ClaudeStreamParser(StreamParser):
    """Claude Code `--output-format stream-json`."""

    vendor_name = "Claude"
    limit_policy = CLAUDE_POLICY

    def on_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "system":
            self.acc.set_session_id(event.get("session_id"))
            self.acc.notify(current_message="Initializing...", is_streaming=False)
        elif event_type == "assistant":
            self._on_assistant(event)
        elif event_type == "user":
            self._on_user(event)
        elif event_type == "result":
            self._on_result(event)
        elif event_type == "error":
            error = event.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            self.record_error(_as_text(error) or event.get("message") or "Unknown error")

    def _on_assistant(self, event: dict[str, Any]) -> None:
        message = event.get("message") or {}
        if not isinstance(message, dict):
            self.on_text_line(_as_text(message))
            return
        usage = message.get("usage")
        if isinstance(usage, dict):
            self.acc.accumulate_usage(_as_int(usage.get("input_tokens")), _as_int(usage.get("output_tokens")))
        self.acc.set_model(message.get("model"))

        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                self.acc.append_text(block["text"])
            elif block.get("type") == "tool_use":
                tool_input = block.get("input")
                self.acc.add_tool_use(
                    block.get("name"),
                    json.dumps(tool_input) if tool_input is not None else None,
                )
        self.acc.set_session_id(event.get("session_id"))

    def _on_user(self, event: dict[str, Any]) -> None:
        message = event.get("message") or {}
        if not isinstance(message, dict):
            return
        for block in message.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "tool_result":
                self.acc.add_tool_result(self._result_text(block.get("content")), block.get("tool_use_id"))

    @staticmethod
    def _result_text(content: Any) -> str:
        # Either a string or a list of {"type": "text", "text": ...} blocks
        if isinstance(content, list):
            return "".join(
                part.get("text", "") for part in content if isinstance(part, dict) and part.get("type") == "text"
            )
        return _as_text(content) or ""

    def _on_result(self, event: dict[str, Any]) -> None:
        cost = _as_float(event.get("total_cost_usd"))
        if cost is None:
            cost = _as_float(event.get("cost_usd"))

        input_tokens = output_tokens = None
        usage = event.get("usage")
        if isinstance(usage, dict):
            input_tokens = _as_int(usage.get("input_tokens"))
            output_tokens = _as_int(usage.get("output_tokens"))
        if input_tokens is None:
            input_tokens = _as_int(event.get("input_tokens"))
        if output_tokens is None:
            output_tokens = _as_int(event.get("output_tokens"))

        result_text = event.get("result") if isinstance(event.get("result"), str) else None
        self.acc.apply_completion(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            output=result_text,
        )
        self.acc.set_session_id(event.get("session_id"))

        if event.get("is_error"):
            self.record_error(result_text or f"Claude run ended with {event.get('subtype') or 'an error'}")


class CopilotStreamParser(StreamParser):
    """GitHub Copilot CLI. Mostly plain text; JSON events when available."""

    vendor_name = "GitHub Copilot"
    limit_policy = COPILOT_POLICY

    def __init__(self, progress: ProgressCallback | None = None):
        super().__init__(progress)
        self.limit_event: UsageLimits | None = None

    def feed_stdout(self, line: str) -> None:
        lowered = line.lower()
        if any(s in lowered for s in ("premium request", "rate limit", "limit exceeded")):
            self.acc.notify(current_message="Premium request limit detected", is_streaming=False)
        super().feed_stdout(line)

    def on_text_line(self, line: str) -> None:
        self.acc.append_text(line + "\n", report=False)
        self.acc.notify(current_message=preview(line), is_streaming=True)

    def on_event(self, event: dict[str, Any]) -> None:
        # First session id wins
        self.acc.set_session_id(event.get("session_id"), keep_first=True)
        premium = _as_int(event.get("premium_requests"))
        if premium is not None:
            self.acc.result.premium_requests_consumed = premium

        event_type = str(event.get("type") or "").lower()
        if event_type in ("message", "response", "assistant"):
            content = _as_text(event.get("content"))
            if content:
                self.acc.append_text(content)
        elif event_type == "suggestion":
            suggestion = _as_text(event.get("suggestion"))
            if suggestion:
                self.acc.append_text(suggestion + "\n", report=False)
                self.acc.notify(current_message="Suggestion received", is_streaming=False)
        elif event_type in ("tool_call", "tool_use"):
            self.acc.add_tool_use(event.get("tool_name"), _as_text(event.get("tool_input")))
        elif event_type == "tool_result":
            self.acc.add_tool_result(_as_text(event.get("tool_output")), event.get("tool_name"))
        elif event_type == "error":
            error = _as_text(event.get("error")) or _as_text(event.get("message"))
            if error:
                self.record_error(error)
        elif event_type in ("limit", "rate_limit"):
            message = _as_text(event.get("message")) or "Premium request limit reached"
            self.limit_event = UsageLimits(
                limit_type=UsageLimitType.PREMIUM_REQUESTS,
                is_limit_reached=True,
                message=message,
            )
            self.record_error(message)
        elif event_type in ("usage", "metrics", "stats"):
            self._apply_usage(event)
        elif event_type in ("done", "complete", "result"):
            self._apply_usage(event)
            self.acc.set_model(event.get("model"))

    def _apply_usage(self, event: dict[str, Any]) -> None:
        cost = _as_float(event.get("cost_usd"))
        if cost is None:
            cost = _as_float(event.get("total_cost_usd"))
        input_tokens = _as_int(event.get("input_tokens"))
        output_tokens = _as_int(event.get("output_tokens"))
        usage = event.get("usage")
        if isinstance(usage, dict):
            input_tokens = _as_int(usage.get("input_tokens")) or input_tokens
            output_tokens = _as_int(usage.get("output_tokens")) or output_tokens
        self.acc.apply_completion(input_tokens=input_tokens, output_tokens=output_tokens, cost_usd=cost)

    def apply_vendor_metrics(self, result: ExecutionResult) -> None:
        metrics = parse_copilot_stderr("\n".join(self.stderr_lines))
        if metrics.input_tokens is not None:
            result.input_tokens = metrics.input_tokens
        if metrics.output_tokens is not None:
            result.output_tokens = metrics.output_tokens
        if metrics.model and not result.model_used:
            result.model_used = metrics.model
        if metrics.premium_requests is not None:
            result.premium_requests_consumed = metrics.premium_requests
        if self.limit_event is not None:
            result.detected_usage_limits = self.limit_event


class OpenCodeStreamParser(StreamParser):
    """OpenCode `run`. JSON events with `--format json`, plain text otherwise."""

    vendor_name = "OpenCode"
    limit_policy = OPENCODE_POLICY

    def __init__(self, progress: ProgressCallback | None = None):
        super().__init__(progress)
        self.early_error: str | None = None

    def feed_stdout(self, line: str) -> None:
        if not self.early_error and line.strip() and not line.lstrip().startswith("{") and is_cli_error_line(line):
            # e.g. "Error: model 'x' not found"
            self.early_error = line.strip()
            self.has_output = True
            self.stdout_lines.append(line)
            self.signal_lines.append(line)
            self.acc.notify(output_line=line, is_error_output=True, current_message=f"CLI Error: {line.strip()}")
            return
        super().feed_stdout(line)

    def on_text_line(self, line: str) -> None:
        self.acc.append_text(line + "\n", report=False)

    def on_stderr(self, line: str) -> None:
        if is_tool_progress_line(line):
            self.acc.notify(
                output_line=line,
                is_error_output=False,
                is_streaming=True,
                tool_name=tool_name_from_progress(line),
            )
            return
        if not self.early_error and is_cli_error_line(line):
            self.early_error = line.strip()
        self.acc.notify(
            output_line=line,
            is_error_output=True,
            is_streaming=True,
            current_message=f"CLI Error: {line.strip()}" if self.early_error else None,
        )

    def on_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if not event_type:
            self.on_text_line(json.dumps(event))
            return

        if event_type == "session":
            self.acc.set_session_id(event.get("session_id"))
        elif event_type in ("message", "assistant"):
            content = _as_text(event.get("content"))
            if content:
                self.acc.append_text(content)
        elif event_type == "tool_call":
            self.acc.add_tool_use(event.get("tool_name"), _as_text(event.get("tool_input")))
        elif event_type == "tool_result":
            self.acc.add_tool_result(_as_text(event.get("tool_output")), event.get("tool_name"))
        elif event_type in ("done", "complete"):
            self.acc.apply_completion(
                input_tokens=_as_int(event.get("input_tokens")),
                output_tokens=_as_int(event.get("output_tokens")),
                cost_usd=_as_float(event.get("cost_usd")),
                model=event.get("model"),
                output=_as_text(event.get("output")),
            )
        elif event_type == "error":
            self.record_error(
                _as_text(event.get("error"))
                or _as_text(event.get("message"))
                or _as_text(event.get("content"))
                or "Unknown error"
            )
        elif event.get("error"):
            self.record_error(_as_text(event["error"]))

    @property
    def _stderr_errors(self) -> str | None:
        return extract_error_from_output(self.stderr_lines)

    @property
    def failed(self) -> bool:
        return bool(self.acc.has_error or self.early_error or self._stderr_errors or self._stdout_errors)

    @property
    def _stdout_errors(self) -> str | None:
        # Only explicit prefixes: agent prose routinely mentions "not found" or "invalid"
        return extract_error_from_output(self.stdout_lines, prefixes_only=True)

    @property
    def stream_error(self) -> str:
        parts: list[str] = []
        for part in (self.acc.stream_error, self._stdout_errors):
            if part and part not in parts:
                parts.append(part)
        if self.early_error and not any(self.early_error in p for p in parts):
            parts.insert(0, self.early_error)
        return "\n".join(parts)

    def stderr_diagnostic(self, exit_code: int) -> str:
        extracted = self._stderr_errors
        if extracted:
            return f"[stderr] {extracted.strip()}"
        if exit_code != 0:
            filtered = "\n".join(line for line in self.stderr_lines if not is_tool_progress_line(line)).strip()
            if filtered:
                return f"[stderr] {filtered}"
        return ""


PARSERS: dict[str, type[StreamParser]] = {
    "claude": ClaudeStreamParser,
    "copilot": CopilotStreamParser,
    "opencode": OpenCodeStreamParser,
}
