# companion/update_processor.py
import json
import logging
import time
from datetime import datetime
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from companion import analytics, config
from companion.base_utils import BaseUtils
from companion.exceptions import MalformedState, ProcessingFailed
from companion.llm_client import call_with_retries_sync
from companion.models import (
    PortfolioBrief,
    Project,
    ProjectBrief,
    StructuredState,
    TaskItem,
    normalize_next_actions,
)
from companion.prompts import (
    ENRICH_NEXT_ACTIONS_PROMPT,
    GENERATE_TAGS_PROMPT,
    PORTFOLIO_BRIEF_PROMPT,
    PROCESS_UPDATE_PROMPT,
    PROJECT_BRIEF_PROMPT,
    SEED_DOCUMENT_BLOCK,
    SYSTEM_INSTRUCTION,
)

logger = logging.getLogger("companion")

MAX_TAGS = 5


class UpdateProcessor(BaseUtils):
    """
    Turns free text into structured project data through the language model.

    `llm` is anything with `invoke(prompt, *, system=None) -> str`. Every call
    goes through the same policy: one time-boxed attempt at a time, exponential
    backoff between attempts, ProcessingFailed once the attempts run out.
    Output that does not parse, or parses into the wrong shape, counts as a
    failed attempt.
    """

    def __init__(
        self,
        llm,
        *,
        attempts: int = config.LLM_MAX_ATTEMPTS,
        base_delay: float = config.LLM_BASE_DELAY_SECONDS,
        max_delay: float = config.LLM_MAX_DELAY_SECONDS,
        attempt_timeout: Optional[float] = config.LLM_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.llm = llm
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep

    # -----------------------
    # LLM plumbing
    # -----------------------

    def _generate(self, prompt: str, parse: Callable[[dict], object], *, label: str, system: str | None = None):
        if self.llm is None:
            raise ProcessingFailed(f"{label}: no language model is configured", attempts=0)

        def attempt():
            raw = self.llm.invoke(prompt, system=system)
            logger.debug(f"{label} raw response:\n{raw}")
            return parse(self.load_strict_json(raw))

        return call_with_retries_sync(
            attempt,
            attempts=self.attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            attempt_timeout=self.attempt_timeout,
            log=logger.warning,
            sleep=self._sleep,
            label=label,
        )

    # -----------------------
    # Structured state
    # -----------------------

    def build_update_prompt(self, update_text: str, project: Project) -> str:
        seed_block = ""
        if project.initial_context:
            seed_block = self.unsafe_string_format(SEED_DOCUMENT_BLOCK, seed_document=project.initial_context)
        previous = project.current_state.to_json_dict() if project.current_state else {}
        return self.unsafe_string_format(
            PROCESS_UPDATE_PROMPT,
            project_name=project.name,
            project_goal=project.goal,
            seed_document_block=seed_block,
            previous_state_json=self.dump_json_for_prompt(previous),
            update_text=update_text,
        )

    def _parse_structured_state(self, data: dict) -> StructuredState:
        try:
            return StructuredState.model_validate(data)
        except ValidationError as e:
            raise MalformedState(f"Model output does not match the structured state shape: {e}") from e

    def process_update(self, update_text: str, project: Project) -> StructuredState:
        prompt = self.build_update_prompt(update_text, project)
        state = self._generate(
            prompt,
            self._parse_structured_state,
            label=f"process_update[{project.id}]",
            system=SYSTEM_INSTRUCTION,
        )
        logger.info(
            f"Processed update for project {project.id}: "
            f"{len(state.completed)} completed, {len(state.in_progress)} in progress, {len(state.blockers)} blockers"
        )
        return state

    # -----------------------
    # Tags
    # -----------------------

    def _parse_tags(self, data: dict) -> list[str]:
        tags = data.get("tags")
        if not isinstance(tags, list):
            raise MalformedState("Expected a 'tags' array")
        out: list[str] = []
        for t in tags:
            tag = self._coerce_field_to_str(t).lower()
            if tag and tag not in out:
                out.append(tag)
        return out[:MAX_TAGS]

    def generate_tags(self, update_text: str) -> list[str]:
        prompt = self.unsafe_string_format(GENERATE_TAGS_PROMPT, update_text=update_text)
        return self._generate(prompt, self._parse_tags, label="generate_tags")

    # -----------------------
    # Briefs
    # -----------------------

    def _updates_history(self, project: Project) -> str:
        if not project.updates:
            return "(no updates yet)"
        return "\n".join(f"- {u.timestamp.date().isoformat()}: {u.text}" for u in project.updates)

    def generate_project_brief(self, project: Project) -> ProjectBrief:
        prompt = self.unsafe_string_format(
            PROJECT_BRIEF_PROMPT,
            project_name=project.name,
            project_goal=project.goal,
            current_state_json=self.dump_json_for_prompt(
                project.current_state.to_json_dict() if project.current_state else {}
            ),
            updates_history=self._updates_history(project),
        )

        def parse(data: dict) -> ProjectBrief:
            data.setdefault("projectName", project.name)
            data.setdefault("projectGoal", project.goal)
            try:
                return ProjectBrief.model_validate(data)
            except ValidationError as e:
                raise MalformedState(f"Invalid project brief: {e}") from e

        return self._generate(prompt, parse, label=f"project_brief[{project.id}]")

    def generate_portfolio_brief(self, projects: Sequence[Project], now: datetime) -> PortfolioBrief:
        metrics = analytics.portfolio_metrics(projects, now)
        summaries = [
            {
                "name": p.name,
                "goal": p.goal,
                "status": p.current_state.status_summary if p.current_state else "No updates yet",
                "blockers": len(p.current_state.blockers) if p.current_state else 0,
                "completed": len(p.current_state.completed) if p.current_state else 0,
                "healthScore": analytics.health_score(p, now),
            }
            for p in projects
        ]
        prompt = self.unsafe_string_format(
            PORTFOLIO_BRIEF_PROMPT,
            project_count=len(projects),
            project_summaries_json=self.dump_json_for_prompt(summaries),
            metrics_json=self.dump_json_for_prompt(metrics),
        )

        def parse(data: dict) -> PortfolioBrief:
            health = data.get("overallHealth")
            if isinstance(health, str):
                data["overallHealth"] = health.strip().lower().replace(" ", "-")
            weekly = data.get("weeklyMetrics") if isinstance(data.get("weeklyMetrics"), dict) else {}
            momentum = str(weekly.get("momentum") or "steady").strip().lower()
            # measured numbers win over whatever the model reports
            data["activeProjectCount"] = metrics["activeProjectCount"]
            data["totalUpdatesThisWeek"] = metrics["totalUpdatesThisWeek"]
            data["weeklyMetrics"] = {
                "completionRate": metrics["completionRate"],
                "activeBlockers": metrics["activeBlockers"],
                "momentum": momentum,
            }
            try:
                return PortfolioBrief.model_validate(data)
            except ValidationError as e:
                raise MalformedState(f"Invalid portfolio brief: {e}") from e

        return self._generate(prompt, parse, label="portfolio_brief")

    # -----------------------
    # Next actions
    # -----------------------

    def enrich_next_actions(self, next_actions, blockers: Sequence[str], in_progress: Sequence[str]) -> list[TaskItem]:
        """
        Ask for effort and dependency estimates on the next actions.

        Falls back to the plain normalization defaults (medium effort, no
        dependencies) when the model cannot deliver.
        """
        base = normalize_next_actions(next_actions)
        if not base:
            return []
        texts = [t.task for t in base]

        prompt = self.unsafe_string_format(
            ENRICH_NEXT_ACTIONS_PROMPT,
            next_actions_json=json.dumps(texts, indent=2),
            blockers_json=json.dumps(list(blockers), indent=2),
            in_progress_json=json.dumps(list(in_progress), indent=2),
        )

        def parse(data: dict) -> list[TaskItem]:
            tasks = data.get("tasks")
            if not isinstance(tasks, list) or len(tasks) != len(texts):
                raise MalformedState(f"Expected {len(texts)} enriched tasks")
            enriched = normalize_next_actions(tasks)
            # keep the user's wording even if the model rephrased it
            return [TaskItem(task=text, effort=t.effort, dependencies=t.dependencies) for text, t in zip(texts, enriched)]

        try:
            return self._generate(prompt, parse, label="enrich_next_actions")
        except ProcessingFailed as e:
            logger.warning(f"Falling back to default task estimates: {e}")
            return base
