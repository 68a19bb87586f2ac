# companion/project_aggregate.py
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import uuid4

from companion import config, risk_detector
from companion.exceptions import ProcessingFailed, UpdateNotFound
from companion.models import Comment, Project, RiskAlert, Update, utc, utcnow
from companion.project_store import ProjectStore
from companion.update_processor import UpdateProcessor

logger = logging.getLogger("companion")


@dataclass
class SubmitResult:
    update: Update
    alerts: list[RiskAlert] = field(default_factory=list)
    processing_error: Optional[str] = None

    @property
    def processed(self) -> bool:
        return self.update.structured_state is not None


class ProjectAggregate:
    """
    One project plus the rules that mutate it.

    Every mutation is written through the store first and only then swapped
    into the in-memory snapshot, under a per-aggregate lock held for the whole
    cycle (language-model call included).
    """

    def __init__(
        self,
        project: Project,
        store: ProjectStore,
        processor: UpdateProcessor,
        *,
        alert_limit: int = config.RISK_ALERT_LIMIT,
        generate_tags: bool = True,
    ):
        self._project = project
        self.store = store
        self.processor = processor
        self.alert_limit = alert_limit
        self.generate_tags = generate_tags
        self._lock = threading.Lock()

    @property
    def project(self) -> Project:
        return self._project

    @property
    def id(self) -> str:
        return self._project.id

    def _tags_for(self, text: str) -> list[str]:
        if not self.generate_tags:
            return []
        try:
            return self.processor.generate_tags(text)
        except ProcessingFailed as e:
            logger.warning(f"Tag generation failed for project {self.id}, storing update without tags: {e}")
            return []

    def _next_timestamp(self, now: Optional[datetime]) -> datetime:
        ts = utc(now) if now is not None else utcnow()
        updates = self._project.updates
        if updates and ts < updates[-1].timestamp:
            # history stays in timestamp order even if the clock steps back
            ts = updates[-1].timestamp
        return ts

    def submit_update(self, text: str, now: Optional[datetime] = None) -> SubmitResult:
        if not text or not text.strip():
            raise ValueError("Update text must not be empty")

        with self._lock:
            project = self._project
            processing_error = None
            try:
                new_state = self.processor.process_update(text, project)
            except ProcessingFailed as e:
                logger.error(f"AI processing failed for project {project.id}, storing raw update: {e}")
                new_state = None
                processing_error = str(e)

            timestamp = self._next_timestamp(now)
            alerts: list[RiskAlert] = []
            if new_state is not None:
                alerts = risk_detector.detect(project.current_state, new_state, now=timestamp)
                current_state, previous_state = new_state, project.current_state
                tags = self._tags_for(text)
            else:
                current_state, previous_state = project.current_state, project.previous_state
                tags = []

            risk_alerts = risk_detector.append_alerts(project.risk_alerts, alerts, limit=self.alert_limit)
            update = Update(
                id=str(uuid4()),
                project_id=project.id,
                text=text,
                structured_state=new_state,
                timestamp=timestamp,
                tags=tags,
            )

            # StoreUnavailable propagates with the snapshot untouched
            stored = self.store.add_update(
                project.id,
                update,
                current_state=current_state,
                previous_state=previous_state,
                risk_alerts=risk_alerts,
            )

            self._project = project.model_copy(update={
                "updates": [*project.updates, stored],
                "current_state": current_state,
                "previous_state": previous_state,
                "risk_alerts": risk_alerts,
                "updated_at": stored.timestamp,
            })

            if alerts:
                logger.info(f"Project {project.id}: {len(alerts)} new risk alert(s): {[a.type for a in alerts]}")
            return SubmitResult(update=stored, alerts=alerts, processing_error=processing_error)

    def delete_update(self, update_id: str) -> None:
        """Remove one update. The cached current/previous state is left as is."""
        with self._lock:
            project = self._project
            if project.find_update(update_id) is None:
                raise UpdateNotFound(project.id, update_id)
            self.store.delete_update(project.id, update_id)
            self._project = project.model_copy(update={
                "updates": [u for u in project.updates if u.id != update_id],
            })

    def update_meta(self, patch: dict) -> Project:
        with self._lock:
            if not patch:
                return self._project
            self._project = self.store.update_project_meta(self._project.id, patch)
            return self._project

    def add_comment(self, update_id: str, author: str, text: str, now: Optional[datetime] = None) -> Comment:
        if not text or not text.strip():
            raise ValueError("Comment text must not be empty")
        with self._lock:
            project = self._project
            if project.find_update(update_id) is None:
                raise UpdateNotFound(project.id, update_id)
            comment = Comment(
                id=str(uuid4()),
                author=(author or "").strip() or "You",
                text=text.strip(),
                timestamp=utc(now) if now is not None else utcnow(),
            )
            stored = self.store.add_comment(project.id, update_id, comment)
            self._project = project.model_copy(update={
                "updates": [stored if u.id == update_id else u for u in project.updates],
            })
            return comment
