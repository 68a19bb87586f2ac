# companion/models.py
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger("companion")

Effort = Literal["low", "medium", "high"]
ProjectStatus = Literal["active", "paused"]
AlertType = Literal["blocker_surge", "status_regression", "stalled_progress"]
Severity = Literal["high", "medium", "low"]
HealthLabel = Literal["excellent", "good", "needs-attention", "critical"]

EFFORT_LEVELS = ("low", "medium", "high")
DEFAULT_EFFORT = "medium"

STATE_LIST_FIELDS = (
    "completed",
    "in_progress",
    "blockers",
    "ideas_captured",
    "decisions_made",
)
STATE_TEXT_FIELDS = ("status_summary", "clarifying_question", "emotional_feedback")


def utc(value: datetime) -> datetime:
    """Naive datetimes coming back from the store are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CompanionModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class TaskItem(CompanionModel):
    task: str
    effort: Effort = DEFAULT_EFFORT
    dependencies: list[str] = Field(default_factory=list)


def _task_from_dict(item: dict) -> TaskItem:
    task = item.get("task")
    if task is None:
        task = item.get("text", "")
    effort = item.get("effort")
    if effort not in EFFORT_LEVELS:
        effort = DEFAULT_EFFORT
    deps = item.get("dependencies")
    if not isinstance(deps, list):
        deps = []
    return TaskItem(task=str(task), effort=effort, dependencies=[str(d) for d in deps])


def normalize_next_actions(items) -> list[TaskItem]:
    """
    Bring a nextActions value into the enriched task shape.

    Persisted history holds plain strings, task objects, or a mix of both.
    Strings become medium-effort tasks without dependencies. Normalizing an
    already-normalized list returns an equal list.
    """
    out: list[TaskItem] = []
    for item in items or []:
        if isinstance(item, TaskItem):
            out.append(item)
        elif isinstance(item, str):
            out.append(TaskItem(task=item))
        elif isinstance(item, dict):
            out.append(_task_from_dict(item))
        else:
            out.append(TaskItem(task=str(item)))
    return out


class StructuredState(CompanionModel):
    status_summary: str = ""
    completed: list[str] = Field(default_factory=list)
    in_progress: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    ideas_captured: list[str] = Field(default_factory=list)
    decisions_made: list[str] = Field(default_factory=list)
    next_actions: list[Union[str, TaskItem]] = Field(default_factory=list)
    clarifying_question: str = ""
    emotional_feedback: str = ""

    @field_validator(*STATE_LIST_FIELDS, mode="before")
    @classmethod
    def _none_is_empty_list(cls, value):
        return [] if value is None else value

    @field_validator(*STATE_TEXT_FIELDS, mode="before")
    @classmethod
    def _none_is_empty_text(cls, value):
        return "" if value is None else value

    @field_validator("next_actions", mode="before")
    @classmethod
    def _task_dicts_are_tolerated(cls, value):
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        # keep strings as strings, repair task objects with odd effort/dependency values
        return [_task_from_dict(v) if isinstance(v, dict) else v for v in value]

    @property
    def tasks(self) -> list[TaskItem]:
        return normalize_next_actions(self.next_actions)

    @classmethod
    def from_stored(cls, data: Any) -> Optional["StructuredState"]:
        """
        Rebuild a state read back from storage. Shapes that fail validation are
        salvaged field by field instead of being dropped.
        """
        if data is None:
            return None
        if isinstance(data, StructuredState):
            return data
        if not isinstance(data, dict):
            logger.warning(f"Discarding stored structured state of type {type(data).__name__}")
            return None
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Stored structured state is malformed, normalizing it: {e}")
            return cls._salvage(data)

    @classmethod
    def _salvage(cls, data: dict) -> "StructuredState":
        fixed: dict[str, Any] = {}
        for name in STATE_TEXT_FIELDS:
            value = data.get(to_camel(name), data.get(name))
            fixed[name] = "" if value is None else str(value)
        for name in STATE_LIST_FIELDS:
            value = data.get(to_camel(name), data.get(name))
            if isinstance(value, list):
                fixed[name] = [v if isinstance(v, str) else str(v) for v in value]
            elif value:
                fixed[name] = [str(value)]
            else:
                fixed[name] = []
        actions = data.get("nextActions", data.get("next_actions"))
        fixed["next_actions"] = normalize_next_actions(actions if isinstance(actions, list) else [])
        return cls(**fixed)


class Comment(CompanionModel):
    id: str
    author: str
    text: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return utc(value)


class Update(CompanionModel):
    id: str
    project_id: str
    text: str
    structured_state: Optional[StructuredState] = None
    timestamp: datetime
    tags: list[str] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return utc(value)


class RiskAlert(CompanionModel):
    type: AlertType
    severity: Severity
    message: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return utc(value)


class Project(CompanionModel):
    id: str
    name: str
    goal: str
    status: ProjectStatus = "active"
    updates: list[Update] = Field(default_factory=list)
    current_state: Optional[StructuredState] = None
    previous_state: Optional[StructuredState] = None
    risk_alerts: list[RiskAlert] = Field(default_factory=list)
    initial_context: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_update(self, update_id: str) -> Optional[Update]:
        for u in self.updates:
            if u.id == update_id:
                return u
        return None


class ProjectCreationInput(CompanionModel):
    name: str = Field(min_length=1)
    goal: str = Field(min_length=1)
    document_content: Optional[str] = None
    status: ProjectStatus = "active"


class ProjectMetaPatch(CompanionModel):
    name: Optional[str] = Field(default=None, min_length=1)
    goal: Optional[str] = Field(default=None, min_length=1)
    status: Optional[ProjectStatus] = None
    initial_context: Optional[str] = None

    @field_validator("name", "goal", "status", mode="before")
    @classmethod
    def _not_null(cls, value):
        # omit the key to leave a field unchanged, null cannot clear it
        if value is None:
            raise ValueError("must not be null")
        return value

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# -----------------------
# Briefs
# -----------------------

class ProjectBrief(CompanionModel):
    project_name: str = ""
    project_goal: str = ""
    executive_summary: str = ""
    key_accomplishments: list[str] = Field(default_factory=list)
    current_focus: list[str] = Field(default_factory=list)
    identified_risks_and_blockers: list[str] = Field(default_factory=list)
    strategic_recommendations: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)


class ProjectHighlight(CompanionModel):
    project_name: str
    status: str = ""
    key_update: str = ""


class WeeklyMetrics(CompanionModel):
    completion_rate: int = 0
    active_blockers: int = 0
    momentum: Literal["accelerating", "steady", "slowing"] = "steady"


class PortfolioBrief(CompanionModel):
    portfolio_summary: str = ""
    overall_health: HealthLabel = "good"
    active_project_count: int = 0
    total_updates_this_week: int = 0
    project_highlights: list[ProjectHighlight] = Field(default_factory=list)
    cross_project_risks: list[str] = Field(default_factory=list)
    strategic_priorities: list[str] = Field(default_factory=list)
    weekly_metrics: WeeklyMetrics = Field(default_factory=WeeklyMetrics)
