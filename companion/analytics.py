# companion/analytics.py
"""
Momentum and health metrics derived from a project's update history.

Every function here is pure: nothing is mutated, nothing is read from a clock.
Anything time-dependent takes `now` explicitly, and calendar days are taken in
`now`'s timezone (UTC when `now` is naive).
"""
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from companion.models import Project, Update, normalize_next_actions, utc

DAY = timedelta(days=1)
WEEK = timedelta(days=7)
MONTH = timedelta(days=30)

TOP_TAGS = 10

TASK_FILTERS = ("all", "active", "completed", "blocked")
_TASK_SECTIONS = (
    ("in_progress", "inProgress", "In Progress"),
    ("next_actions", "nextActions", "Next Actions"),
    ("blockers", "blockers", "Blocked"),
    ("completed", "completed", "Completed"),
)


def _local_day(ts: datetime, now: datetime) -> date:
    return utc(ts).astimezone(now.tzinfo).date()


def _as_of(now: datetime) -> datetime:
    return utc(now)


def _round_half_up(value: float, digits: int = 0) -> float:
    # JS Math.round semantics, Python's round() is banker's rounding
    factor = 10 ** digits
    return int(value * factor + 0.5) / factor if value >= 0 else -int(-value * factor + 0.5) / factor


def _all_updates(projects: Iterable[Project]) -> list[Update]:
    return [u for p in projects for u in p.updates]


# -----------------------
# Streaks / velocity
# -----------------------

def update_days(updates: Iterable[Update], now: datetime) -> list[date]:
    """Distinct calendar days with at least one update, most recent first."""
    now = _as_of(now)
    return sorted({_local_day(u.timestamp, now) for u in updates}, reverse=True)


def update_streaks(updates: Iterable[Update], now: datetime) -> tuple[int, int]:
    """
    Return (current_streak, longest_streak) in days.

    The current streak counts back from today, or from yesterday when nothing
    has been posted yet today. The longest streak is the longest run of
    consecutive days anywhere in the history.
    """
    now = _as_of(now)
    days = update_days(updates, now)
    if not days:
        return 0, 0

    today = now.date()
    current = 0
    if days[0] in (today, today - DAY):
        current = 1
        expected = days[0] - DAY
        for d in days[1:]:
            if d != expected:
                break
            current += 1
            expected -= DAY

    longest = run = 1
    for newer, older in zip(days, days[1:]):
        run = run + 1 if newer - older == DAY else 1
        longest = max(longest, run)

    return current, longest


def updates_since(updates: Iterable[Update], since: datetime) -> list[Update]:
    since = utc(since)
    return [u for u in updates if u.timestamp > since]


def weekly_velocity(updates: Iterable[Update], now: datetime) -> int:
    return len(updates_since(updates, _as_of(now) - WEEK))


# -----------------------
# Completion / health
# -----------------------

def completion_rate(completed: int, blockers: int) -> int:
    """completed / (completed + blockers) as a rounded percentage, 0 when both are 0."""
    total = completed + blockers
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def health_score(project: Project, now: datetime) -> int:
    state = project.current_state
    blockers = len(state.blockers) if state else 0

    score = 100
    score -= 10 * blockers
    if weekly_velocity(project.updates, now) == 0:
        score -= 30
    if project.risk_alerts:
        score -= 20
    return max(0, min(100, score))


def health_label(score: int) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "needs-attention"
    return "critical"


# -----------------------
# Histograms / tags
# -----------------------

def activity_by_weekday(updates: Iterable[Update], now: datetime) -> list[int]:
    """Update counts per weekday, index 0 = Sunday through 6 = Saturday."""
    now = _as_of(now)
    counts = [0] * 7
    for u in updates:
        counts[(_local_day(u.timestamp, now).weekday() + 1) % 7] += 1
    return counts


def activity_last_7_days(updates: Iterable[Update], now: datetime) -> list[tuple[date, int]]:
    """(day, count) for the last seven calendar days, oldest first, ending today."""
    now = _as_of(now)
    per_day = Counter(_local_day(u.timestamp, now) for u in updates)
    today = now.date()
    return [(today - i * DAY, per_day.get(today - i * DAY, 0)) for i in range(6, -1, -1)]


def tag_frequency(updates: Iterable[Update], top_n: Optional[int] = TOP_TAGS) -> list[tuple[str, int]]:
    counter: Counter = Counter()
    for u in updates:
        counter.update(u.tags or [])
    return counter.most_common(top_n)


def all_tags(updates: Iterable[Update]) -> list[str]:
    return sorted({t for u in updates for t in (u.tags or [])})


def filter_updates(updates: Sequence[Update], query: str = "", tags: Optional[Iterable[str]] = None) -> list[Update]:
    q = (query or "").lower()
    wanted = set(tags or [])
    out = []
    for u in updates:
        if q and q not in u.text.lower():
            continue
        if wanted and not wanted.intersection(u.tags or []):
            continue
        out.append(u)
    return out


# -----------------------
# Tasks
# -----------------------

def collect_tasks(project: Project, status_filter: str = "all", query: str = "") -> list[dict]:
    if status_filter not in TASK_FILTERS:
        raise ValueError(f"Unknown task filter: {status_filter}")
    state = project.current_state
    if state is None:
        return []

    tasks = []
    for attr, status, category in _TASK_SECTIONS:
        if attr == "next_actions":
            for item in normalize_next_actions(state.next_actions):
                tasks.append({
                    "text": item.task,
                    "status": status,
                    "category": category,
                    "effort": item.effort,
                    "dependencies": list(item.dependencies),
                })
            continue
        for text in getattr(state, attr):
            tasks.append({"text": text, "status": status, "category": category})

    if status_filter == "active":
        tasks = [t for t in tasks if t["status"] in ("inProgress", "nextActions")]
    elif status_filter == "completed":
        tasks = [t for t in tasks if t["status"] == "completed"]
    elif status_filter == "blocked":
        tasks = [t for t in tasks if t["status"] == "blockers"]

    q = (query or "").strip().lower()
    if q:
        tasks = [t for t in tasks if q in t["text"].lower()]
    return tasks


def task_counts(project: Project) -> dict[str, int]:
    tasks = collect_tasks(project)
    return {
        "all": len(tasks),
        "active": sum(1 for t in tasks if t["status"] in ("inProgress", "nextActions")),
        "completed": sum(1 for t in tasks if t["status"] == "completed"),
        "blocked": sum(1 for t in tasks if t["status"] == "blockers"),
    }


# -----------------------
# Dashboards
# -----------------------

def momentum_metrics(projects: Sequence[Project], now: datetime) -> dict:
    updates = _all_updates(projects)
    current, longest = update_streaks(updates, now)

    total_completed = total_blockers = total_in_progress = 0
    for p in projects:
        if p.current_state:
            total_completed += len(p.current_state.completed)
            total_blockers += len(p.current_state.blockers)
            total_in_progress += len(p.current_state.in_progress)

    return {
        "totalUpdates": len(updates),
        "weeklyVelocity": weekly_velocity(updates, now),
        "completionRate": completion_rate(total_completed, total_blockers),
        "totalCompleted": total_completed,
        "totalBlockers": total_blockers,
        "totalInProgress": total_in_progress,
        "currentStreak": current,
        "longestStreak": longest,
    }


def project_overview(project: Project, now: datetime) -> dict:
    now = _as_of(now)
    updates = project.updates
    state = project.current_state

    completed = len(state.completed) if state else 0
    in_progress = len(state.in_progress) if state else 0
    blockers = len(state.blockers) if state else 0
    next_actions = len(state.next_actions) if state else 0
    total_tasks = completed + in_progress + blockers + next_actions

    score = health_score(project, now)

    if updates:
        since_first = now - updates[0].timestamp
        weeks = max(1, since_first // WEEK)
        avg_per_week = _round_half_up(len(updates) / weeks, 1)
        days_since_first = max(0, since_first.days)
    else:
        avg_per_week = 0
        days_since_first = 0

    return {
        "totalUpdates": len(updates),
        "recentUpdates": len(updates_since(updates, now - WEEK)),
        "monthlyUpdates": len(updates_since(updates, now - MONTH)),
        "totalTasks": total_tasks,
        "completedTasks": completed,
        "progressPercentage": completion_rate(completed, total_tasks - completed),
        "blockerCount": blockers,
        "inProgressCount": in_progress,
        "nextActionsCount": next_actions,
        "activityByDay": activity_by_weekday(updates, now),
        "last7Days": [
            {"date": d.isoformat(), "count": c}
            for d, c in activity_last_7_days(updates, now)
        ],
        "topTags": [{"tag": t, "count": c} for t, c in tag_frequency(updates)],
        "healthScore": score,
        "healthStatus": health_label(score),
        "daysSinceFirstUpdate": days_since_first,
        "avgUpdatesPerWeek": avg_per_week,
    }


def portfolio_metrics(projects: Sequence[Project], now: datetime) -> dict:
    completed = blockers = 0
    for p in projects:
        if p.current_state:
            completed += len(p.current_state.completed)
            blockers += len(p.current_state.blockers)
    return {
        "activeProjectCount": sum(1 for p in projects if p.status == "active"),
        "totalUpdatesThisWeek": weekly_velocity(_all_updates(projects), now),
        "completionRate": completion_rate(completed, blockers),
        "activeBlockers": blockers,
    }
