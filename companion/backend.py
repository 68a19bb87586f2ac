# companion/backend.py
import logging
import threading
from datetime import datetime
from typing import Optional, Sequence

from companion import analytics, config
from companion.base_utils import BaseUtils
from companion.db import build_db_session_factory
from companion.exceptions import ProcessingFailed
from companion.llm_client import build_llm
from companion.models import Project, ProjectCreationInput, ProjectMetaPatch, utc, utcnow
from companion.project_aggregate import ProjectAggregate
from companion.project_store import ProjectStore
from companion.update_processor import UpdateProcessor

logger = logging.getLogger("companion")


class Backend(BaseUtils):
    """
    Request-level facade used by the HTTP layer.

    Keeps one ProjectAggregate per project id so that concurrent requests for
    the same project go through the same lock. Handlers return plain
    JSON-ready dicts with camelCase keys.
    """

    def __init__(
        self,
        store: Optional[ProjectStore] = None,
        processor: Optional[UpdateProcessor] = None,
        *,
        alert_limit: int = config.RISK_ALERT_LIMIT,
        generate_tags: bool = True,
    ):
        if store is None:
            store = ProjectStore(build_db_session_factory(config.DATABASE_URL))
        if processor is None:
            llm = build_llm(
                config.LLM_MODEL,
                vertex_project=config.PROJECT_ID,
                vertex_region=config.REGION,
                timeout=config.LLM_TIMEOUT_SECONDS,
            )
            processor = UpdateProcessor(llm)

        self.store = store
        self.processor = processor
        self.alert_limit = alert_limit
        self.generate_tags = generate_tags

        self._aggregates: dict[str, ProjectAggregate] = {}
        self._registry_lock = threading.Lock()

    # -----------------------
    # Aggregate registry
    # -----------------------

    def _aggregate(self, project_id: str) -> ProjectAggregate:
        pid = str(project_id)
        with self._registry_lock:
            agg = self._aggregates.get(pid)
            if agg is None:
                agg = ProjectAggregate(
                    self.store.get_project(pid),
                    self.store,
                    self.processor,
                    alert_limit=self.alert_limit,
                    generate_tags=self.generate_tags,
                )
                self._aggregates[pid] = agg
            return agg

    def _forget(self, project_id: str) -> None:
        with self._registry_lock:
            self._aggregates.pop(str(project_id), None)

    def _now(self, now: Optional[datetime]) -> datetime:
        return utc(now) if now is not None else utcnow()

    # -----------------------
    # Projects
    # -----------------------

    def handle_health(self) -> dict:
        self.store.ping()
        return {"status": "ok"}

    def handle_list_projects(self) -> dict:
        projects = self.store.list_projects()
        return {"projects": [p.to_json_dict() for p in projects]}

    def handle_get_project(self, project_id: str) -> dict:
        return {"project": self._aggregate(project_id).project.to_json_dict()}

    def handle_create_project(self, data: ProjectCreationInput, now: Optional[datetime] = None) -> dict:
        """
        Create a project. A seed document, when given, is kept as background
        context and also processed as the project's first update.
        """
        project = self.store.create_project(data)
        logger.info(f"Created project {project.id} '{project.name}'")
        response = {"project": project.to_json_dict(), "processingError": None}

        if data.document_content and data.document_content.strip():
            agg = self._aggregate(project.id)
            result = agg.submit_update(data.document_content, now=self._now(now))
            if result.processing_error:
                self.color_print(f"Seed document for {project.id} stored without a structured state", "yellow", logging.WARNING)
            response["project"] = agg.project.to_json_dict()
            response["processingError"] = result.processing_error
        return response

    def handle_update_project(self, project_id: str, patch: ProjectMetaPatch) -> dict:
        changes = patch.changes()
        project = self._aggregate(project_id).update_meta(changes)
        return {"project": project.to_json_dict()}

    def handle_delete_project(self, project_id: str) -> None:
        self.store.delete_project(project_id)
        self._forget(project_id)

    # -----------------------
    # Updates
    # -----------------------

    def handle_submit_update(self, project_id: str, text: str, now: Optional[datetime] = None) -> dict:
        agg = self._aggregate(project_id)
        result = agg.submit_update(text, now=self._now(now))
        return {
            "update": result.update.to_json_dict(),
            "alerts": [a.to_json_dict() for a in result.alerts],
            "processingError": result.processing_error,
            "project": agg.project.to_json_dict(),
        }

    def handle_delete_update(self, project_id: str, update_id: str) -> None:
        self._aggregate(project_id).delete_update(update_id)

    def handle_add_comment(self, project_id: str, update_id: str, author: str, text: str, now: Optional[datetime] = None) -> dict:
        comment = self._aggregate(project_id).add_comment(update_id, author, text, now=now)
        return {"comment": comment.to_json_dict()}

    # -----------------------
    # Views
    # -----------------------

    def handle_overview(self, project_id: str, now: Optional[datetime] = None) -> dict:
        project = self._aggregate(project_id).project
        return {"overview": analytics.project_overview(project, self._now(now))}

    def handle_tasks(self, project_id: str, status_filter: str = "all", query: str = "") -> dict:
        project = self._aggregate(project_id).project
        return {
            "tasks": analytics.collect_tasks(project, status_filter, query),
            "counts": analytics.task_counts(project),
        }

    def handle_timeline(self, project_id: str, query: str = "", tags: Optional[Sequence[str]] = None) -> dict:
        project = self._aggregate(project_id).project
        updates = analytics.filter_updates(project.updates, query, tags)
        # newest first, the way the timeline is read
        return {
            "updates": [u.to_json_dict() for u in reversed(updates)],
            "allTags": analytics.all_tags(project.updates),
        }

    def handle_momentum(self, now: Optional[datetime] = None) -> dict:
        projects = self.store.list_projects()
        return {"metrics": analytics.momentum_metrics(projects, self._now(now))}

    # -----------------------
    # AI helpers
    # -----------------------

    def handle_project_brief(self, project_id: str) -> dict:
        project = self._aggregate(project_id).project
        brief = self.processor.generate_project_brief(project)
        return {"brief": brief.to_json_dict()}

    def handle_portfolio_brief(self, now: Optional[datetime] = None) -> dict:
        projects: list[Project] = self.store.list_projects()
        brief = self.processor.generate_portfolio_brief(projects, self._now(now))
        return {"brief": brief.to_json_dict()}

    def handle_enrich_next_actions(self, project_id: str) -> dict:
        state = self._aggregate(project_id).project.current_state
        if state is None:
            return {"nextActions": []}
        tasks = self.processor.enrich_next_actions(state.next_actions, state.blockers, state.in_progress)
        return {"nextActions": [t.to_json_dict() for t in tasks]}

    def handle_generate_tags(self, update_text: str) -> dict:
        if not update_text or not update_text.strip():
            raise ValueError("updateText is required")
        try:
            tags = self.processor.generate_tags(update_text)
        except ProcessingFailed as e:
            logger.warning(f"Tag generation failed: {e}")
            tags = []
        return {"tags": tags}
