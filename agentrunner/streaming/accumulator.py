"""Incremental ExecutionResult builder shared by all vendor parsers."""

import logging
from collections.abc import Callable

from agentrunner.core.models import (
    ExecutionMessage,
    ExecutionProgress,
    ExecutionResult,
    MessageRole,
)
from agentrunner.core.utils import preview

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ExecutionProgress], None]


class StreamAccumulator:
    """Collects messages, tokens and errors while a stream is parsed.

    Not thread-safe: it is driven from the single drain thread, and read by
    the caller only after that thread has been joined.

    Invariant: pending assistant text is always flushed into a message
    before any tool_use message is appended.
    """

    def __init__(self, progress: ProgressCallback | None = None):
        self.progress = progress
        self.result = ExecutionResult()
        self.error_parts: list[str] = []
        self.stdout_lines: list[str] = []
        self._pending_text: list[str] = []
        self._accumulated_input = 0
        self._accumulated_output = 0
        self._has_accumulated = False
        self._finished: ExecutionResult | None = None

    # --- Progress ---

    def notify(self, **fields) -> None:
        """Push one progress notification. Callback failures are logged, never raised."""
        if self.progress is None:
            return
        try:
            self.progress(ExecutionProgress(**fields))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    # --- Messages ---

    @property
    def has_pending_text(self) -> bool:
        return bool(self._pending_text)

    @property
    def has_error(self) -> bool:
        return bool(self.error_parts)

    @property
    def stream_error(self) -> str:
        return "\n".join(self.error_parts)

    def append_text(self, text: str, report: bool = True) -> None:
        if not text:
            return
        self._pending_text.append(text)
        if report:
            self.notify(current_message=preview(text), is_streaming=True)

    def flush_text(self) -> None:
        if not self._pending_text:
            return
        self.result.messages.append(
            ExecutionMessage(role=MessageRole.ASSISTANT, content="".join(self._pending_text))
        )
        self._pending_text = []

    def add_tool_use(self, name: str | None, tool_input: str | None = None) -> None:
        self.flush_text()
        self.result.messages.append(
            ExecutionMessage(
                role=MessageRole.TOOL_USE,
                content=name or "unknown",
                tool_name=name,
                tool_input=tool_input,
            )
        )
        self.notify(tool_name=name, is_streaming=False)

    def add_tool_result(self, output: str | None, tool_name: str | None = None) -> None:
        self.result.messages.append(
            ExecutionMessage(
                role=MessageRole.TOOL_RESULT,
                content=output or "",
                tool_name=tool_name,
                tool_output=output,
            )
        )

    def record_error(self, message: str) -> None:
        """Mark the run failed but keep parsing."""
        self.error_parts.append(message)
        self.result.messages.append(ExecutionMessage(role=MessageRole.ERROR, content=message))
        self.notify(current_message=f"Error: {preview(message)}", is_streaming=False)

    # --- Metadata ---

    def set_session_id(self, session_id: str | None, keep_first: bool = False) -> None:
        if not session_id:
            return
        if keep_first and self.result.session_id:
            return
        self.result.session_id = session_id

    def set_model(self, model: str | None) -> None:
        if model:
            self.result.model_used = model

    def accumulate_usage(self, input_tokens: int | None, output_tokens: int | None) -> None:
        """Running totals from per-message usage, used when no final totals arrive."""
        if input_tokens is not None:
            self._accumulated_input += int(input_tokens)
            self._has_accumulated = True
        if output_tokens is not None:
            self._accumulated_output += int(output_tokens)
            self._has_accumulated = True

    def apply_completion(
        self,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        cost_usd: float | None = None,
        model: str | None = None,
        output: str | None = None,
    ) -> None:
        """Record what a terminal event reported. Missing values leave earlier ones intact."""
        if input_tokens is not None:
            self.result.input_tokens = int(input_tokens)
        if output_tokens is not None:
            self.result.output_tokens = int(output_tokens)
        if cost_usd is not None:
            self.result.cost_usd = float(cost_usd)
        self.set_model(model)
        if output:
            self.result.output = output

    def apply_accumulated_usage(self) -> None:
        if not self._has_accumulated:
            return
        if self.result.input_tokens is None:
            self.result.input_tokens = self._accumulated_input
        if self.result.output_tokens is None:
            self.result.output_tokens = self._accumulated_output

    # --- Finalisation ---

    def finish(self) -> ExecutionResult:
        """Final flush; returns a frozen copy. Idempotent."""
        if self._finished is None:
            self.flush_text()
            self.apply_accumulated_usage()
            self._finished = self.result.model_copy(deep=True)
        return self._finished
