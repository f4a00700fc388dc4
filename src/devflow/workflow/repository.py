"""Persistence facade for projects, outcome records and step memos."""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from devflow.agent.state import ConversationMessage
from devflow.storage.alembic_runner import upgrade_head
from devflow.storage.common import as_utc, build_sqlite_engine, utc_now
from devflow.storage.sqlmodel_models import Fragment, Message, Project, WorkflowStep
from devflow.workflow.models import (
    ErrorOutcome,
    FragmentView,
    MessageRole,
    MessageType,
    MessageView,
    OutcomeRecord,
    ProjectView,
    StepView,
    validate_prompt,
)

logger = logging.getLogger(__name__)

NAME_ADJECTIVES = (
    "amber", "brave", "bright", "calm", "clever", "cosmic", "crisp", "eager",
    "gentle", "golden", "happy", "lively", "lucky", "mellow", "nimble", "quiet",
    "rapid", "silver", "sunny", "swift", "tidy", "vivid", "witty", "zesty",
)
NAME_NOUNS = (
    "badger", "beacon", "canyon", "comet", "falcon", "garden", "harbor", "island",
    "lantern", "meadow", "maple", "otter", "panda", "pebble", "river", "rocket",
    "sparrow", "summit", "thunder", "tiger", "valley", "willow", "window", "zephyr",
)

DEFAULT_HISTORY_LIMIT = 5


class ProjectNotFoundError(LookupError):
    """Raised when a project id does not exist."""


class WorkflowRepository:
    """Projects, messages, fragments and durable step results backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- projects & messages -------------------------------------------------

    def create_project(self, prompt: str, *, name: str | None = None) -> ProjectView:
        """Create a project together with its first user message."""

        validate_prompt(prompt)
        now = utc_now()
        project_id = str(uuid4())
        with Session(self.engine) as session:
            project = Project(
                project_id=project_id,
                name=name or _generate_project_name(),
                created_at=now,
                updated_at=now,
            )
            session.add(project)
            session.flush()
            session.add(
                Message(
                    project_id=project_id,
                    role=MessageRole.USER.value,
                    message_type=MessageType.RESULT.value,
                    content=prompt,
                    created_at=now,
                ),
            )
            session.commit()
            session.refresh(project)
            return _to_project_view(project)

    def get_project(self, project_id: str) -> ProjectView | None:
        with Session(self.engine) as session:
            project = session.get(Project, project_id)
            return _to_project_view(project) if project is not None else None

    def add_user_message(self, project_id: str, content: str) -> MessageView:
        """Append a follow-up prompt to an existing project."""

        validate_prompt(content)
        now = utc_now()
        with Session(self.engine) as session:
            project = session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project not found: {project_id}")
            row = Message(
                project_id=project_id,
                role=MessageRole.USER.value,
                message_type=MessageType.RESULT.value,
                content=content,
                created_at=now,
            )
            project.updated_at = now
            session.add(row)
            session.add(project)
            session.commit()
            session.refresh(row)
            return _to_message_view(row, fragment=None)

    def load_recent_messages(
        self,
        project_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[ConversationMessage]:
        """Return the ``limit`` most recent project messages, oldest first."""

        if limit <= 0:
            return []
        with Session(self.engine) as session:
            rows = session.exec(
                select(Message)
                .where(Message.project_id == project_id)
                .order_by(col(Message.created_at).desc(), col(Message.message_id).desc())
                .limit(limit),
            ).all()
        history = [
            ConversationMessage(
                role="assistant" if row.role == MessageRole.ASSISTANT.value else "user",
                content=row.content,
            )
            for row in rows
        ]
        history.reverse()
        return history

    def list_messages(self, project_id: str) -> list[MessageView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Message)
                .where(Message.project_id == project_id)
                .order_by(col(Message.created_at).asc(), col(Message.message_id).asc()),
            ).all()
            message_ids = [row.message_id for row in rows if row.message_id is not None]
            fragments = {
                fragment.message_id: fragment
                for fragment in session.exec(
                    select(Fragment).where(col(Fragment.message_id).in_(message_ids)),
                ).all()
            }
            return [
                _to_message_view(row, fragment=fragments.get(row.message_id or -1))
                for row in rows
            ]

    # -- outcomes ------------------------------------------------------------

    def write_outcome(self, project_id: str, run_id: str, outcome: OutcomeRecord) -> MessageView:
        """Persist the run's outcome; a second write for the same run returns the first."""

        existing = self.get_outcome(run_id)
        if existing is not None:
            logger.info("Outcome already recorded for run_id=%s", run_id)
            return existing

        now = utc_now()
        with Session(self.engine) as session:
            if isinstance(outcome, ErrorOutcome):
                row = Message(
                    project_id=project_id,
                    role=MessageRole.ASSISTANT.value,
                    message_type=MessageType.ERROR.value,
                    content=outcome.content,
                    run_id=run_id,
                    created_at=now,
                )
            else:
                row = Message(
                    project_id=project_id,
                    role=MessageRole.ASSISTANT.value,
                    message_type=MessageType.RESULT.value,
                    content=outcome.reply,
                    run_id=run_id,
                    created_at=now,
                )
            session.add(row)
            try:
                session.flush()
                fragment: Fragment | None = None
                if not isinstance(outcome, ErrorOutcome):
                    fragment = Fragment(
                        message_id=row.message_id,
                        title=outcome.title,
                        sandbox_url=outcome.sandbox_url,
                        files_json=json.dumps(outcome.files, ensure_ascii=False, sort_keys=True),
                        created_at=now,
                    )
                    session.add(fragment)
                project = session.get(Project, project_id)
                if project is not None:
                    project.updated_at = now
                    session.add(project)
                session.commit()
            except IntegrityError:
                session.rollback()
                recorded = self.get_outcome(run_id)
                if recorded is None:
                    raise
                return recorded
            session.refresh(row)
            if fragment is not None:
                session.refresh(fragment)
            return _to_message_view(row, fragment=fragment)

    def get_outcome(self, run_id: str) -> MessageView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Message).where(Message.run_id == run_id)).one_or_none()
            if row is None:
                return None
            fragment = session.exec(
                select(Fragment).where(Fragment.message_id == row.message_id),
            ).one_or_none()
            return _to_message_view(row, fragment=fragment)

    # -- durable steps ---------------------------------------------------------

    def get_step(self, run_id: str, step_name: str) -> str | None:
        with Session(self.engine) as session:
            row = session.get(WorkflowStep, (run_id, step_name))
            return row.result_json if row is not None else None

    def save_step(self, run_id: str, step_name: str, result_json: str) -> str:
        with Session(self.engine) as session:
            session.add(
                WorkflowStep(
                    run_id=run_id,
                    step_name=step_name,
                    result_json=result_json,
                    completed_at=utc_now(),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                stored = self.get_step(run_id, step_name)
                if stored is None:
                    raise
                logger.info("Step %s already recorded for run_id=%s", step_name, run_id)
                return stored
        return result_json

    def list_steps(self, run_id: str) -> list[StepView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(WorkflowStep)
                .where(WorkflowStep.run_id == run_id)
                .order_by(col(WorkflowStep.completed_at).asc()),
            ).all()
            return [
                StepView(
                    run_id=row.run_id,
                    step_name=row.step_name,
                    result_json=row.result_json,
                    completed_at=as_utc(row.completed_at),
                )
                for row in rows
            ]


def _generate_project_name() -> str:
    return f"{random.choice(NAME_ADJECTIVES)}-{random.choice(NAME_NOUNS)}"


def _to_project_view(row: Project) -> ProjectView:
    return ProjectView(
        project_id=row.project_id,
        name=row.name,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _to_message_view(row: Message, *, fragment: Fragment | None) -> MessageView:
    return MessageView(
        message_id=row.message_id or 0,
        project_id=row.project_id,
        role=MessageRole(row.role),
        message_type=MessageType(row.message_type),
        content=row.content,
        run_id=row.run_id,
        created_at=as_utc(row.created_at),
        fragment=_to_fragment_view(fragment) if fragment is not None else None,
    )


def _to_fragment_view(row: Fragment) -> FragmentView:
    return FragmentView(
        fragment_id=row.fragment_id or 0,
        message_id=row.message_id,
        title=row.title,
        sandbox_url=row.sandbox_url,
        files=json.loads(row.files_json),
        created_at=as_utc(row.created_at),
    )
