from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, List
from datetime import datetime, timezone
import uuid

from genqueue.state import JobStatus


def utcnow() -> datetime:
    # naive UTC; SQLite hands back naive datetimes anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class Workspace(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    owner_user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class User(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str  # sha256 hex
    subscription_plan: str = "free"  # free|pro|team|enterprise
    default_workspace_id: Optional[str] = Field(default=None, foreign_key="workspace.id")
    created_at: datetime = Field(default_factory=utcnow)


class Job(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    workspace_id: str = Field(foreign_key="workspace.id", index=True)
    created_by: str = Field(foreign_key="user.id")
    board_id: Optional[str] = None
    model: str
    prompt: str
    input_asset_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    input_refs: List[str] = Field(default_factory=list, sa_column=Column(JSON))  # URLs handed to the provider
    priority: int = 0
    cost_credits: int = 0
    status: str = Field(default=JobStatus.QUEUED.value, index=True)  # queued|processing|success|failed
    provider: Optional[str] = None
    provider_task_id: Optional[str] = Field(default=None, index=True)
    result_asset_id: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class Asset(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    workspace_id: str = Field(foreign_key="workspace.id", index=True)
    owner_user_id: str = Field(foreign_key="user.id")
    type: str = "generated"
    title: Optional[str] = None
    storage_key: str
    url: str
    mime_type: str
    source_board_id: Optional[str] = None
    source_job_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
