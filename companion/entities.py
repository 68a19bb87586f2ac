# companion/entities.py
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now,
        onupdate=_now,
    )


class ProjectRow(Base, TimestampMixin):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    goal: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="active",
        server_default=text("'active'"),
    )
    initial_context: Mapped[str | None] = mapped_column(Text)

    # cached derived state, refreshed on every successful update cycle
    current_state: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    previous_state: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    risk_alerts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    updates: Mapped[list["UpdateRow"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by=lambda: [UpdateRow.created_at, UpdateRow.seq],
    )

    __table_args__ = (
        Index("ix_projects_updated_at", "updated_at"),
    )


class UpdateRow(Base):
    __tablename__ = "project_updates"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    # insertion order within the project, breaks created_at ties
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    update_text: Mapped[str] = mapped_column(Text, nullable=False)
    structured_state: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    comments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now,
    )

    project: Mapped[ProjectRow] = relationship(back_populates="updates")

    __table_args__ = (
        Index("ix_project_updates_project_id_created_at", "project_id", "created_at"),
    )
