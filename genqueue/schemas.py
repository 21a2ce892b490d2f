from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from genqueue.models import Job


class GenerateRequest(BaseModel):
    model: str = ""
    prompt: str = ""
    workspace_id: Optional[str] = None  # default: caller's default workspace
    board_id: Optional[str] = None
    input_asset_ids: List[str] = Field(default_factory=list)
    input_image_urls: List[str] = Field(default_factory=list)
    variations: int = 1  # clamped to [1, MAX_VARIATIONS]
    priority: Optional[int] = None
    cost_credits: Optional[int] = None


class GenerateResponse(BaseModel):
    success: bool = True
    job_ids: List[str]
    tier: str
    queued: bool
    message: str


class JobView(BaseModel):
    id: str
    workspace_id: str
    board_id: Optional[str] = None
    model: str = ""
    prompt: str = ""
    status: str
    priority: int
    provider: Optional[str] = None
    provider_task_id: Optional[str] = None
    result_asset_id: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        return cls.model_validate(job, from_attributes=True)
