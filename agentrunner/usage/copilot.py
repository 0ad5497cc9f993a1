"""Copilot CLI stderr metrics.

Copilot prints a usage footer to stderr, for example:

    [ERR]  claude-opus-4.5         49.0k in, 301 out, 32.0k cached (Est. 3 Premium requests)
"""

import re
from dataclasses import dataclass

TOKEN_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*k?\s*in\s*,\s*(\d+(?:\.\d+)?)\s*k?\s*out", re.IGNORECASE)
MODEL_PATTERN = re.compile(
    r"^\s*(?:\[ERR\])?\s*(claude-[\w.-]+|gpt-[\w.-]+|gemini-[\w.-]+)",
    re.IGNORECASE | re.MULTILINE,
)
PREMIUM_PATTERN = re.compile(r"Est\.\s*(\d+)\s*Premium\s*requests?", re.IGNORECASE)


@dataclass
class CopilotMetrics:
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None
    premium_requests: int | None = None

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in (self.input_tokens, self.output_tokens, self.model, self.premium_requests))


def parse_copilot_stderr(stderr: str | None) -> CopilotMetrics:
    """Extract token counts, model name and premium requests from stderr."""
    metrics = CopilotMetrics()
    if not stderr or not stderr.strip():
        return metrics

    tokens = TOKEN_PATTERN.search(stderr)
    if tokens:
        matched = tokens.group(0).lower()
        input_value = float(tokens.group(1))
        output_value = float(tokens.group(2))
        metrics.input_tokens = int(input_value * 1000) if "k in" in matched else int(input_value)
        metrics.output_tokens = int(output_value * 1000) if "k out" in matched else int(output_value)

    model = MODEL_PATTERN.search(stderr)
    if model:
        metrics.model = model.group(1).strip()

    premium = PREMIUM_PATTERN.search(stderr)
    if premium:
        metrics.premium_requests = int(premium.group(1))

    return metrics
