# companion/project_store.py
import logging
from contextlib import contextmanager
from datetime import timezone
from typing import Callable, Iterator, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import select, text
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, selectinload

from companion.entities import ProjectRow, UpdateRow
from companion.exceptions import ProjectNotFound, StoreUnavailable, UpdateNotFound
from companion.models import (
    Comment,
    Project,
    ProjectCreationInput,
    RiskAlert,
    StructuredState,
    Update,
    utc,
    utcnow,
)

logger = logging.getLogger("companion")

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)

_META_FIELDS = ("name", "goal", "status", "initial_context")
_REQUIRED_META_FIELDS = ("name", "goal", "status")


def _state_to_json(state: Optional[StructuredState]) -> Optional[dict]:
    return state.to_json_dict() if state is not None else None


def _load_items(model, raw, what: str) -> list:
    items = []
    for entry in raw or []:
        try:
            items.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping malformed stored {what}: {e}")
    return items


class ProjectStore:
    """
    Relational persistence for projects and their updates.

    Connection-level failures surface as StoreUnavailable, nothing is retried
    here. `add_update` writes the update row and the project's cached state in
    a single transaction.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.SessionFactory()
        try:
            yield session
        except _UNAVAILABLE_ERRORS as e:
            session.rollback()
            logger.error(f"[DB] Store unavailable: {e}")
            raise StoreUnavailable(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _get_row(self, session: Session, project_id: str) -> ProjectRow:
        row = session.execute(
            select(ProjectRow)
            .options(selectinload(ProjectRow.updates))
            .where(ProjectRow.id == str(project_id))
        ).scalar_one_or_none()
        if row is None:
            raise ProjectNotFound(project_id)
        return row

    # -----------------------
    # Row mapping
    # -----------------------

    def _to_update(self, row: UpdateRow) -> Update:
        return Update(
            id=row.id,
            project_id=row.project_id,
            text=row.update_text,
            structured_state=StructuredState.from_stored(row.structured_state),
            timestamp=utc(row.created_at),
            tags=[str(t) for t in (row.tags or [])],
            comments=_load_items(Comment, row.comments, "comment"),
        )

    def _to_project(self, row: ProjectRow) -> Project:
        return Project(
            id=row.id,
            name=row.name,
            goal=row.goal,
            status=row.status,
            updates=[self._to_update(u) for u in row.updates],
            current_state=StructuredState.from_stored(row.current_state),
            previous_state=StructuredState.from_stored(row.previous_state),
            risk_alerts=_load_items(RiskAlert, row.risk_alerts, "risk alert"),
            initial_context=row.initial_context,
            created_at=utc(row.created_at) if row.created_at else None,
            updated_at=utc(row.updated_at) if row.updated_at else None,
        )

    # -----------------------
    # Queries
    # -----------------------

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def list_projects(self) -> list[Project]:
        with self._session() as session:
            rows = session.execute(
                select(ProjectRow)
                .options(selectinload(ProjectRow.updates))
                .order_by(ProjectRow.updated_at.desc())
            ).scalars().all()
            return [self._to_project(r) for r in rows]

    def get_project(self, project_id: str) -> Project:
        with self._session() as session:
            return self._to_project(self._get_row(session, project_id))

    # -----------------------
    # Mutations
    # -----------------------

    def create_project(self, data: ProjectCreationInput) -> Project:
        with self._session() as session:
            row = ProjectRow(
                name=data.name,
                goal=data.goal,
                status=data.status,
                initial_context=data.document_content or None,
                risk_alerts=[],
            )
            session.add(row)
            session.commit()
            logger.info(f"[DB] Created project {row.id} ({row.name})")
            return self._to_project(self._get_row(session, row.id))

    def add_update(
        self,
        project_id: str,
        update: Update,
        *,
        current_state: Optional[StructuredState],
        previous_state: Optional[StructuredState],
        risk_alerts: Sequence[RiskAlert],
    ) -> Update:
        with self._session() as session:
            row = self._get_row(session, project_id)
            next_seq = max((u.seq for u in row.updates), default=0) + 1
            update_row = UpdateRow(
                id=update.id,
                project_id=row.id,
                seq=next_seq,
                update_text=update.text,
                structured_state=_state_to_json(update.structured_state),
                tags=list(update.tags),
                comments=[c.to_json_dict() for c in update.comments],
                created_at=update.timestamp.astimezone(timezone.utc),
            )
            session.add(update_row)
            row.current_state = _state_to_json(current_state)
            row.previous_state = _state_to_json(previous_state)
            row.risk_alerts = [a.to_json_dict() for a in risk_alerts]
            row.updated_at = update.timestamp.astimezone(timezone.utc)
            session.commit()
            return self._to_update(update_row)

    def update_project_meta(self, project_id: str, patch: dict) -> Project:
        unknown = set(patch) - set(_META_FIELDS)
        if unknown:
            raise ValueError(f"Cannot patch project fields: {', '.join(sorted(unknown))}")
        nulled = [k for k in _REQUIRED_META_FIELDS if k in patch and patch[k] is None]
        if nulled:
            raise ValueError(f"Project fields cannot be null: {', '.join(nulled)}")
        with self._session() as session:
            row = self._get_row(session, project_id)
            for key, value in patch.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.commit()
            return self._to_project(self._get_row(session, project_id))

    def delete_project(self, project_id: str) -> None:
        with self._session() as session:
            row = self._get_row(session, project_id)
            session.delete(row)
            session.commit()
            logger.info(f"[DB] Deleted project {project_id}")

    def delete_update(self, project_id: str, update_id: str) -> None:
        with self._session() as session:
            row = session.execute(
                select(UpdateRow).where(
                    UpdateRow.project_id == str(project_id),
                    UpdateRow.id == str(update_id),
                )
            ).scalar_one_or_none()
            if row is None:
                raise UpdateNotFound(project_id, update_id)
            session.delete(row)
            session.commit()

    def add_comment(self, project_id: str, update_id: str, comment: Comment) -> Update:
        with self._session() as session:
            row = session.execute(
                select(UpdateRow).where(
                    UpdateRow.project_id == str(project_id),
                    UpdateRow.id == str(update_id),
                )
            ).scalar_one_or_none()
            if row is None:
                raise UpdateNotFound(project_id, update_id)
            # reassign so the JSON column is flagged dirty
            row.comments = list(row.comments or []) + [comment.to_json_dict()]
            session.commit()
            return self._to_update(row)

