"""Turning raw agent output into short, commit-message-sized summaries."""

import json

ACTION_WORDS = (
    "created",
    "modified",
    "updated",
    "added",
    "removed",
    "fixed",
    "implemented",
    "refactored",
)

SUMMARIZE_PROMPT = (
    "Please provide a concise summary (1-2 sentences) of what was accomplished in this session, "
    "suitable for a git commit message. Focus on the key changes made."
)


def _is_structured(line: str) -> bool:
    return line.startswith("{") or line.startswith("[")


def generate_summary_from_output(output: str | None) -> str:
    """Pick action-oriented statements out of free-form output.

    Returns up to three lines mentioning an action word, joined with "; ".
    Falls back to the first plain line of 20-200 characters, else "".
    """
    if not output or not output.strip():
        return ""

    lines = [line.strip() for line in output.split("\n")]
    actions = []
    for line in lines:
        if not line or _is_structured(line) or len(line) < 10:
            continue
        lowered = line.lower()
        if any(word in lowered for word in ACTION_WORDS) and len(line) < 200:
            actions.append(line)

    if actions:
        return "; ".join(actions[:3])

    for line in lines:
        if line and not _is_structured(line) and 20 <= len(line) <= 200:
            return line
    return ""


def clean_stream_json_summary(output: str | None) -> str:
    """Extract the answer text from Claude stream-json output.

    Assistant text blocks are concatenated; a non-empty `result` event
    replaces everything collected so far. Non-JSON lines are kept verbatim.
    """
    if not output or not output.strip():
        return ""

    parts: list[str] = []
    for line in output.split("\n"):
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            parts.append(line + "\n")
            continue
        if not isinstance(event, dict):
            parts.append(line + "\n")
            continue

        if event.get("type") == "assistant":
            message = event.get("message") or {}
            for block in message.get("content") or []:
                if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                    parts.append(block["text"])
        elif event.get("type") == "result":
            result = event.get("result")
            if isinstance(result, str) and result.strip():
                parts = [result]

    text = "".join(parts).strip()
    return text or output.strip()
