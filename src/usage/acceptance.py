"""
Acceptance predicate for AI results.

An AI invocation is billable only when its result is good enough to show
the user. Rejected results (cancelled, infrastructure failures, malformed
or too-short text) never consume quota.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

TRANSIENT_ERROR_MARKERS: Tuple[str, ...] = (
    "deadline-exceeded",
    "deadline_exceeded",
    "deadline exceeded",
    "timeout",
    "timed out",
    "internal",
    "unavailable",
    "503",
)

_TRANSIENT_RE = re.compile(
    "|".join(re.escape(marker) for marker in TRANSIENT_ERROR_MARKERS),
    re.IGNORECASE,
)


def is_transient_error(error: Union[str, BaseException, None]) -> bool:
    """True for infrastructure failures (timeouts, internal errors, 503)."""
    if error is None:
        return False
    return bool(_TRANSIENT_RE.search(str(error)))


@dataclass(frozen=True)
class AcceptanceCriteria:
    """Minimum shape of a usable analysis."""

    min_length: int = 80
    title_markers: Tuple[str, ...] = ("##", "**")
    bullet_prefixes: Tuple[str, ...] = ("- ", "* ", "• ", "・")


@dataclass(frozen=True)
class AcceptanceDecision:
    accepted: bool
    reason: Optional[str] = None
    transient: bool = False

    @property
    def billable(self) -> bool:
        return self.accepted


ACCEPTED = AcceptanceDecision(accepted=True)


def evaluate_analysis(
    text: Optional[str],
    cancelled: bool = False,
    error: Union[str, BaseException, None] = None,
    criteria: AcceptanceCriteria = AcceptanceCriteria(),
) -> AcceptanceDecision:
    """
    Decide whether an AI result counts as a successful, billable operation.

    Checks run in order: cancellation, error (transient or not), empty
    text, minimum length, a title marker, at least one bullet line.
    """
    if cancelled:
        return AcceptanceDecision(False, "cancelled")

    if error is not None:
        if is_transient_error(error):
            return AcceptanceDecision(False, "transient error", transient=True)
        return AcceptanceDecision(False, "engine error")

    body = (text or "").strip()
    if not body:
        return AcceptanceDecision(False, "empty result")

    if len(body) < criteria.min_length:
        return AcceptanceDecision(False, f"too short ({len(body)} < {criteria.min_length} chars)")

    if not any(marker in body for marker in criteria.title_markers):
        return AcceptanceDecision(False, "missing title")

    lines = (line.lstrip() for line in body.splitlines())
    if not any(line.startswith(criteria.bullet_prefixes) for line in lines):
        return AcceptanceDecision(False, "missing bullet points")

    return ACCEPTED
