"""
Implementation plan models — per-tenant plans and their kanban tasks.

Owned by the implementation module; the harmonization engine only reads them.
"""
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

# Plan statuses: not_started, planning, in_progress, testing, completed, blocked
# Task statuses: backlog, todo, in_progress, review, done

# Plans that have not started contribute no completed work
IDLE_PLAN_STATUSES = ("not_started",)

# Task statuses that count as "already satisfied"
SATISFIED_TASK_STATUSES = ("done",)


class ImplementationPlan(Base):
    """A tenant's plan for implementing one framework."""
    __tablename__ = "implementation_plans"
    __table_args__ = (
        Index("ix_plan_client", "client_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)
    framework_id: Mapped[int | None] = mapped_column(
        ForeignKey("frameworks.id", ondelete="SET NULL"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(30), default="not_started", nullable=False)
    priority: Mapped[str] = mapped_column(String(50), default="medium", nullable=False)
    estimated_hours: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )

    # relationships
    framework: Mapped["Framework | None"] = relationship()
    tasks: Mapped[list["ImplementationTask"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan",
    )


class ImplementationTask(Base):
    __tablename__ = "implementation_tasks"
    __table_args__ = (
        Index("ix_task_plan_status", "implementation_plan_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    implementation_plan_id: Mapped[int] = mapped_column(
        ForeignKey("implementation_plans.id", ondelete="CASCADE"), nullable=False,
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(30), default="todo", nullable=False)

    # Code of the control this task implements, in the plan's framework
    control_code: Mapped[str | None] = mapped_column(String(100))
    tags: Mapped[list | None] = mapped_column(JSON)

    estimated_hours: Mapped[int | None] = mapped_column(Integer)
    actual_hours: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )

    # relationships
    plan: Mapped["ImplementationPlan"] = relationship(back_populates="tasks")


# Resolve forward references
from .framework import Framework  # noqa: F401, E402
