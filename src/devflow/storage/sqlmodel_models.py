"""SQLModel ORM tables for projects, outcomes and durable steps."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    project_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Message(SQLModel, table=True):
    __tablename__ = "messages"  # type: ignore[bad-override]
    __table_args__ = (
        Index("ix_messages_project_created", "project_id", "created_at"),
        Index("uq_messages_run_id", "run_id", unique=True),
    )

    message_id: int | None = Field(default=None, primary_key=True)
    project_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("projects.project_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    role: str
    message_type: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    run_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Fragment(SQLModel, table=True):
    __tablename__ = "fragments"  # type: ignore[bad-override]

    fragment_id: int | None = Field(default=None, primary_key=True)
    message_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("messages.message_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    title: str
    sandbox_url: str
    files_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkflowStep(SQLModel, table=True):
    __tablename__ = "workflow_steps"  # type: ignore[bad-override]

    run_id: str = Field(primary_key=True)
    step_name: str = Field(primary_key=True)
    result_json: str = Field(sa_column=Column(Text, nullable=False))
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
