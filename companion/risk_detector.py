# companion/risk_detector.py
from datetime import datetime
from typing import Iterable, Optional

from companion.models import RiskAlert, StructuredState, utcnow

BLOCKER_SURGE_FLOOR = 3
BLOCKER_SURGE_HIGH = 5

REGRESSION_KEYWORDS = (
    "struggling",
    "stuck",
    "frustrated",
    "behind",
    "delayed",
    "problem",
    "issue",
    "concern",
)

DEFAULT_ALERT_LIMIT = 10


def detect(
    previous: Optional[StructuredState],
    current: StructuredState,
    now: Optional[datetime] = None,
) -> list[RiskAlert]:
    """
    Diff two consecutive states and return the alerts they trigger, in rule order:
    blocker_surge, status_regression, stalled_progress.

    Without a previous state there is no baseline and nothing is reported.
    """
    if previous is None:
        return []
    now = now or utcnow()
    alerts: list[RiskAlert] = []

    prev_blockers = len(previous.blockers)
    curr_blockers = len(current.blockers)
    if curr_blockers > prev_blockers and curr_blockers >= BLOCKER_SURGE_FLOOR:
        alerts.append(RiskAlert(
            type="blocker_surge",
            severity="high" if curr_blockers >= BLOCKER_SURGE_HIGH else "medium",
            message=(
                f"Blockers increased from {prev_blockers} to {curr_blockers}. "
                "Consider prioritizing unblocking efforts."
            ),
            timestamp=now,
        ))

    # plain substring match: "issues" and "tissue" both count
    summary = (current.status_summary or "").lower()
    if any(keyword in summary for keyword in REGRESSION_KEYWORDS):
        alerts.append(RiskAlert(
            type="status_regression",
            severity="medium",
            message="Status summary indicates challenges or setbacks. Team support may be needed.",
            timestamp=now,
        ))

    prev_in_progress = len(previous.in_progress)
    if (
        prev_in_progress > 0
        and len(current.in_progress) == prev_in_progress
        and len(current.completed) == len(previous.completed)
    ):
        alerts.append(RiskAlert(
            type="stalled_progress",
            severity="low",
            message="No change in completed or in-progress items. Project may need momentum boost.",
            timestamp=now,
        ))

    return alerts


def append_alerts(
    existing: Iterable[RiskAlert],
    new_alerts: Iterable[RiskAlert],
    limit: int = DEFAULT_ALERT_LIMIT,
) -> list[RiskAlert]:
    """Append and keep only the most recent `limit` alerts."""
    merged = list(existing) + list(new_alerts)
    if limit <= 0:
        return []
    return merged[-limit:]
