"""Detection of agents that stopped to ask for input.

Agents are always run non-interactively, but a misconfigured tool can still
print a prompt and then sit idle. These heuristics turn such output into an
`InteractionInfo` so the orchestrator can pause the job or answer it.
"""

import re
from collections.abc import Iterable
from enum import Enum

from agentrunner.core.models import InteractionInfo

# Below this a match is not reported
CONFIDENCE_THRESHOLD = 0.5
# Stalled processes make weak matches meaningful
STALLED_CONFIDENCE_THRESHOLD = 0.25


class InteractionType(str, Enum):
    """What kind of answer the agent is waiting for."""

    UNKNOWN = "unknown"
    CONFIRMATION = "confirmation"
    TEXT_INPUT = "text_input"
    CHOICE = "choice"
    PERMISSION = "permission"
    CONTINUE = "continue"
    AUTHENTICATION = "authentication"


_I = re.IGNORECASE

# (pattern, type, confidence, default response)
INTERACTION_PATTERNS: list[tuple[re.Pattern, InteractionType, float, str | None]] = [
    # Yes/no confirmations
    (re.compile(r"\?\s*\[?[Yy](?:es)?[/,][Nn](?:o)?\]?\s*[:>]?\s*$"), InteractionType.CONFIRMATION, 0.95, "y"),
    (re.compile(r"\(y(?:es)?/n(?:o)?\)\s*[:>]?\s*$", _I), InteractionType.CONFIRMATION, 0.95, "y"),
    (re.compile(r"(?:confirm|proceed|continue)\?\s*$", _I), InteractionType.CONFIRMATION, 0.85, "y"),
    (re.compile(r"(?:are you sure|do you want to)\s*.+\?\s*$", _I), InteractionType.CONFIRMATION, 0.80, None),
    # Permission requests
    (
        re.compile(r"(?:allow|permit|grant|approve)\s+(?:this|the)?\s*(?:action|operation|tool|command)", _I),
        InteractionType.PERMISSION,
        0.90,
        None,
    ),
    (
        re.compile(r"(?:waiting for|requires?)\s+(?:your\s+)?(?:approval|permission|confirmation)", _I),
        InteractionType.PERMISSION,
        0.90,
        None,
    ),
    (re.compile(r"(?:press enter to continue|hit enter|type enter)", _I), InteractionType.CONTINUE, 0.85, ""),
    # Claude
    (re.compile(r"Do you want to allow", _I), InteractionType.PERMISSION, 0.95, "y"),
    (re.compile(r"Would you like (?:me )?to", _I), InteractionType.CONFIRMATION, 0.75, "y"),
    (re.compile(r"Shall I (?:proceed|continue)", _I), InteractionType.CONFIRMATION, 0.80, "y"),
    # Copilot
    (re.compile(r"Accept\s+this\s+suggestion", _I), InteractionType.PERMISSION, 0.90, "y"),
    (re.compile(r"\[Accept\]|\[Reject\]|\[Edit\]"), InteractionType.CHOICE, 0.90, None),
    # Generic input prompts
    (
        re.compile(r"(?:enter|input|type|provide)\s+(?:a|your|the)\s+\w+\s*[:>]\s*$", _I),
        InteractionType.TEXT_INPUT,
        0.75,
        None,
    ),
    (re.compile(r":\s*$"), InteractionType.TEXT_INPUT, 0.30, None),
    (re.compile(r">\s*$"), InteractionType.TEXT_INPUT, 0.25, None),
    # Selections
    (re.compile(r"(?:select|choose|pick)\s+(?:an?\s+)?(?:option|choice|number)", _I), InteractionType.CHOICE, 0.85, None),
    (re.compile(r"\[\d+\]\s+\w+"), InteractionType.CHOICE, 0.70, None),
    # Credentials
    (re.compile(r"(?:password|token|api.?key|secret)\s*[:>]\s*$", _I), InteractionType.AUTHENTICATION, 0.90, None),
    (re.compile(r"(?:login|sign.?in|authenticate)\s*[:>]?\s*$", _I), InteractionType.AUTHENTICATION, 0.85, None),
    (re.compile(r"waiting\s+for\s+(?:user\s+)?(?:input|response)", _I), InteractionType.TEXT_INPUT, 0.90, None),
]

# Lines that look like prompts but are ordinary output
NON_INTERACTION_PATTERNS: list[re.Pattern] = [
    re.compile(r"^\s*\{"),  # JSON object
    re.compile(r"^\s*\["),  # JSON array
    re.compile(r"^[A-Z_]+\s*="),  # env assignment
    re.compile(r"^\d{4}-\d{2}-\d{2}"),  # timestamp
    re.compile(r"^(?:DEBUG|INFO|WARN|ERROR|TRACE)[\s:]", _I),
    re.compile(r"^\s*#"),
    re.compile(r"Running\s+tool", _I),
    re.compile(r"(?:Reading|Writing|Creating|Updating|Deleting)\s+file", _I),
]

_SUPPORTING_CONTEXT: dict[InteractionType, re.Pattern] = {
    InteractionType.CONFIRMATION: re.compile(r"(?:confirm|approve|accept|proceed|continue)", _I),
    InteractionType.PERMISSION: re.compile(r"(?:permission|allow|access|grant|authorize)", _I),
    InteractionType.CHOICE: re.compile(r"(?:select|choose|option|which)", _I),
    InteractionType.AUTHENTICATION: re.compile(r"(?:login|auth|credential|password|token)", _I),
}


def _extract_prompt(line: str) -> str:
    prompt = line.strip()
    prompt = re.sub(r"\s*\[[YyNn](?:es)?(?:/[YyNn](?:o)?)?\]\s*[:>]?\s*$", "", prompt)
    prompt = re.sub(r"\s*\([YyNn](?:es)?/[YyNn](?:o)?\)\s*[:>]?\s*$", "", prompt)
    prompt = re.sub(r"\s*[:>]\s*$", "", prompt)
    return prompt.strip()


def _extract_choices(line: str, context: list[str] | None) -> list[str] | None:
    if re.search(r"[Yy](?:es)?[/,][Nn](?:o)?", line):
        return ["y", "n"]

    choices = []
    for context_line in context or []:
        match = re.match(r"^\[?(\d+)\]?\s*[.):]\s*(.+)$", context_line.strip())
        if match:
            choices.append(match.group(2).strip())

    for option in re.findall(r"\[([^\]]+)\]", line):
        if option.strip() and len(option) < 20:
            choices.append(option)

    return choices or None


def detect_interaction(
    line: str,
    recent_context: list[str] | None = None,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> InteractionInfo | None:
    """Classify one output line. Returns the highest-confidence match above `threshold`."""
    if not line or not line.strip():
        return None

    trimmed = line.strip()
    if any(pattern.search(trimmed) for pattern in NON_INTERACTION_PATTERNS):
        return None

    best: InteractionInfo | None = None
    for pattern, interaction_type, confidence, default in INTERACTION_PATTERNS:
        if not pattern.search(trimmed):
            continue
        if best is not None and confidence <= best.confidence:
            continue
        choices = None
        if interaction_type in (InteractionType.CHOICE, InteractionType.CONFIRMATION):
            choices = _extract_choices(trimmed, recent_context)
        best = InteractionInfo(
            prompt=_extract_prompt(trimmed),
            interaction_type=interaction_type.value,
            choices=choices,
            default_response=default,
            confidence=confidence,
        )

    if best is not None and best.confidence >= threshold:
        return best
    return None


def detect_interaction_from_output(lines: Iterable[str], max_lines: int = 10) -> InteractionInfo | None:
    """Scan the most recent lines, newest first.

    Earlier lines act as context: a match whose type is supported by them
    gets a +0.1 confidence boost (capped at 1.0).
    """
    recent = list(lines)[-max_lines:]
    for index in range(len(recent) - 1, -1, -1):
        context = recent[:index] or None
        info = detect_interaction(recent[index], context)
        if info is None:
            continue
        if context and _has_supporting_context(context, InteractionType(info.interaction_type)):
            info = info.model_copy(update={"confidence": min(1.0, info.confidence + 0.1)})
        return info
    return None


def _has_supporting_context(context: list[str], interaction_type: InteractionType) -> bool:
    pattern = _SUPPORTING_CONTEXT.get(interaction_type)
    return bool(pattern and pattern.search(" ".join(context)))


def is_likely_waiting_for_input(
    seconds_since_output: float,
    last_line: str | None,
    stall_threshold: float,
) -> bool:
    """A stalled process whose last line even weakly resembles a prompt."""
    if not last_line or seconds_since_output <= stall_threshold:
        return False
    return detect_interaction(last_line, threshold=STALLED_CONFIDENCE_THRESHOLD) is not None


def suggest_auto_response(info: InteractionInfo | None, auto_approve_permissions: bool = True) -> str | None:
    """Answer to send in unattended mode, or None when a human must decide."""
    if info is None:
        return None
    interaction_type = InteractionType(info.interaction_type)
    if interaction_type == InteractionType.CONFIRMATION and info.default_response is not None:
        return info.default_response
    if interaction_type == InteractionType.PERMISSION and auto_approve_permissions:
        return "y"
    if interaction_type == InteractionType.CONTINUE:
        return ""
    return None
