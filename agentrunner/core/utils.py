"""Shared text helpers for output handling."""

import re

# CSI sequences (colors, cursor movement) and OSC sequences (titles, links)
_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences."""
    if "\x1b" not in text:
        return text
    return _ANSI_PATTERN.sub("", text)


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut `text` to at most `max_length` characters, marking the cut."""
    if len(text) <= max_length:
        return text
    if max_length <= len(suffix):
        return text[:max_length]
    return text[: max_length - len(suffix)] + suffix


def tail_lines(text: str, count: int) -> list[str]:
    """Last `count` non-blank lines of `text`."""
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-count:] if count > 0 else []


def truncate_output(output: str, max_length: int = 2000) -> str:
    """Truncate output preserving both head and tail.

    Errors usually sit at the end of a log, so keep ~40% head and ~60% tail.
    """
    if len(output) <= max_length:
        return output
    if max_length < 60:
        return truncate(output, max_length)

    separator = f"\n\n... [{len(output) - max_length} chars truncated] ...\n\n"
    available = max(0, max_length - len(separator))
    head = int(available * 0.4)
    tail = available - head
    return output[:head] + separator + (output[-tail:] if tail else "")


def preview(text: str, length: int = 100) -> str:
    """First `length` characters followed by "..." when longer."""
    return text if len(text) <= length else text[:length] + "..."
