"""Usage and rate-limit detection.

Two inputs normalise into `UsageLimits`:
- free text from CLI output, matched against a replaceable `LimitPolicy`;
- structured REST responses (status code and rate-limit headers).

Vendors reword their messages often, so the heuristics live in a data table
rather than in code. No signal means None, never an error.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from agentrunner.core.models import UsageLimits, UsageLimitType

logger = logging.getLogger(__name__)

DEFAULT_LIMIT_MESSAGE = "Usage limit signal detected"

_UNIT_SECONDS = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}


@dataclass(frozen=True)
class LimitRule:
    """One phrase that signals a limit. Matching is case-insensitive substring."""

    phrase: str
    limit_type: UsageLimitType = UsageLimitType.SESSION_LIMIT
    reached: bool | None = None

    @property
    def is_reached(self) -> bool:
        """Explicit flag, else inferred from wording ("reached" / "exceeded")."""
        if self.reached is not None:
            return self.reached
        lowered = self.phrase.lower()
        return "reached" in lowered or "exceeded" in lowered


@dataclass(frozen=True)
class LimitPolicy:
    """Ordered rule table plus the regexes used to enrich a match. First rule wins."""

    rules: tuple[LimitRule, ...]
    reset_pattern: re.Pattern = field(
        default=re.compile(
            r"(?:try again in|wait|resets? (?:at|in))\s*(\d+)\s*(hour|minute|second|day)s?",
            re.IGNORECASE,
        )
    )
    percent_pattern: re.Pattern = field(
        default=re.compile(
            r"(\d+)\s*%\s*(?:of\s+)?(?:limit\s+)?(?:used|consumed|remaining)",
            re.IGNORECASE,
        )
    )


CLAUDE_POLICY = LimitPolicy(
    rules=tuple(
        LimitRule(phrase)
        for phrase in (
            "you've reached your usage limit",
            "rate limit",
            "usage limit",
            "please wait",
            "try again",
            "limit reached",
            "session limit",
            "rate limited",
            "too many requests",
            "quota exceeded",
            "daily limit",
            "weekly limit",
            "monthly limit",
        )
    )
)

COPILOT_POLICY = LimitPolicy(
    rules=(
        LimitRule("premium request limit", UsageLimitType.PREMIUM_REQUESTS, reached=True),
        LimitRule("limit exceeded", UsageLimitType.PREMIUM_REQUESTS, reached=True),
        LimitRule("rate limit", UsageLimitType.RATE_LIMIT),
        LimitRule("too many requests", UsageLimitType.RATE_LIMIT),
        LimitRule("quota exceeded", UsageLimitType.PREMIUM_REQUESTS),
    )
)

OPENCODE_POLICY = LimitPolicy(
    rules=(
        LimitRule("rate limit", UsageLimitType.RATE_LIMIT),
        LimitRule("too many requests", UsageLimitType.RATE_LIMIT, reached=True),
        LimitRule("quota exceeded", UsageLimitType.TOKEN_LIMIT),
    )
)


class UsageLimitDetector:
    """Scan free text for limit signals according to a policy."""

    def __init__(self, policy: LimitPolicy = CLAUDE_POLICY):
        self.policy = policy

    def contains_signal(self, text: str | None) -> bool:
        if not text or not text.strip():
            return False
        lowered = text.lower()
        return any(rule.phrase in lowered for rule in self.policy.rules)

    def scan(self, text: str | None, now: datetime | None = None) -> UsageLimits | None:
        """Return the limits implied by `text`, or None when nothing matched."""
        if not text or not text.strip():
            return None

        lowered = text.lower()
        rule = next((r for r in self.policy.rules if r.phrase in lowered), None)
        if rule is None:
            return None

        message = next(
            (line.strip() for line in text.split("\n") if rule.phrase in line.lower()),
            DEFAULT_LIMIT_MESSAGE,
        )
        limits = UsageLimits(
            limit_type=rule.limit_type,
            is_limit_reached=rule.is_reached,
            message=message or DEFAULT_LIMIT_MESSAGE,
        )

        reset = self.policy.reset_pattern.search(text)
        if reset:
            amount = int(reset.group(1))
            seconds = _UNIT_SECONDS.get(reset.group(2).lower())
            if seconds is not None:
                limits.reset_time = (now or datetime.now(timezone.utc)) + timedelta(seconds=amount * seconds)

        percent = self.policy.percent_pattern.search(text)
        if percent:
            # Absolute numbers are unknown; express the percentage against 100
            limits.current_usage = int(percent.group(1))
            limits.max_usage = 100

        return limits

    def safe_scan(self, text: str | None) -> UsageLimits | None:
        """scan() that logs instead of raising; a detector bug must not fail a run."""
        try:
            return self.scan(text)
        except Exception as e:
            logger.warning(f"Usage limit detection failed: {e}")
            return None


def contains_limit_signal(text: str | None, policy: LimitPolicy = CLAUDE_POLICY) -> bool:
    """Quick check before a full scan."""
    return UsageLimitDetector(policy).contains_signal(text)


def _header(headers: Mapping[str, str], *names: str) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in names:
        value = lowered.get(name)
        if value is not None:
            return value
    return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def _parse_reset(value: str | None, now: datetime) -> datetime | None:
    """Reset header as seconds-from-now, epoch seconds, or ISO timestamp."""
    if not value:
        return None
    number = _parse_int(value)
    if number is not None:
        # Epoch seconds are far larger than any relative delay
        if number > 10**9:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        return now + timedelta(seconds=number)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def limits_from_headers(
    status_code: int,
    headers: Mapping[str, str],
    now: datetime | None = None,
) -> UsageLimits | None:
    """Normalise REST rate-limit headers and 429 responses.

    Returns None when the response carries no rate-limit information.
    """
    now = now or datetime.now(timezone.utc)
    limit = _parse_int(_header(headers, "x-ratelimit-limit", "x-ratelimit-limit-requests"))
    remaining = _parse_int(_header(headers, "x-ratelimit-remaining", "x-ratelimit-remaining-requests"))
    reset = _parse_reset(_header(headers, "x-ratelimit-reset", "x-ratelimit-reset-requests"), now)
    retry_after = _parse_reset(_header(headers, "retry-after"), now)

    if status_code != 429 and limit is None and remaining is None:
        return None

    limits = UsageLimits(limit_type=UsageLimitType.RATE_LIMIT, reset_time=retry_after or reset)
    if limit is not None:
        limits.max_usage = limit
        if remaining is not None:
            limits.current_usage = max(0, limit - remaining)

    if status_code == 429:
        limits.is_limit_reached = True
        limits.message = "Rate limit reached (HTTP 429)"
    elif remaining is not None and remaining <= 0:
        limits.is_limit_reached = True
        limits.message = "Rate limit reached"
    else:
        limits.message = f"{remaining} requests remaining" if remaining is not None else None
    return limits
