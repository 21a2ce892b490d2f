"""
Job Record Store over SQLModel.

`transition` and `complete_with_asset` are compare-and-set writes: the UPDATE
only matches rows whose current status is a legal predecessor of the target,
so a terminal job can never be overwritten, whichever of the poll loop and
the callback reconciler gets there second.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from genqueue.models import Asset, Job, User, Workspace, utcnow
from genqueue.state import JobStatus, predecessors

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, **fields) -> str:
        with Session(self.engine) as s:
            job = Job(**fields)
            s.add(job)
            s.commit()
            return job.id

    def patch(self, job_id: str, **fields) -> Job:
        """Unconditional field update (no status guard). Raises if the job is absent."""
        with Session(self.engine) as s:
            job = s.exec(select(Job).where(Job.id == job_id)).one()
            for k, v in fields.items():
                setattr(job, k, v)
            job.updated_at = utcnow()
            s.add(job)
            s.commit()
            s.refresh(job)
            return job

    def get(self, job_id: str) -> Optional[Job]:
        with Session(self.engine) as s:
            return s.get(Job, job_id)

    def get_by_provider_task(self, handle: str) -> Optional[Job]:
        with Session(self.engine) as s:
            return s.exec(select(Job).where(Job.provider_task_id == handle)).first()

    def list_by_workspace(self, workspace_id: str, limit: int = 50) -> List[Job]:
        with Session(self.engine) as s:
            stmt = (
                select(Job)
                .where(Job.workspace_id == workspace_id)
                .order_by(Job.created_at.desc(), Job.id.desc())
                .limit(limit)
            )
            return list(s.exec(stmt).all())

    def list_stale(self, status: JobStatus, updated_before: datetime, limit: int = 200) -> List[Job]:
        with Session(self.engine) as s:
            stmt = (
                select(Job)
                .where(Job.status == JobStatus(status).value, Job.updated_at < updated_before)
                .order_by(Job.updated_at)
                .limit(limit)
            )
            return list(s.exec(stmt).all())

    def _guarded_update(self, job_id: str, target: JobStatus, fields: dict):
        allowed = [st.value for st in predecessors(target)]
        return (
            update(Job)
            .where(Job.id == job_id, Job.status.in_(allowed))
            .values(status=target.value, updated_at=utcnow(), **fields)
        )

    def transition(self, job_id: str, target: JobStatus, **fields) -> bool:
        """
        Move a job to `target` if its current status allows it.
        Returns False (and writes nothing) when it does not, e.g. the job is
        already terminal or does not exist.
        """
        target = JobStatus(target)
        with Session(self.engine) as s:
            result = s.connection().execute(self._guarded_update(job_id, target, fields))
            s.commit()
        applied = result.rowcount == 1
        if applied:
            logger.info("Job %s -> %s", job_id, target.value)
        else:
            logger.info("Job %s: transition to %s skipped (not allowed from current state)", job_id, target.value)
        return applied

    def complete_with_asset(self, job_id: str, asset: Asset) -> Optional[str]:
        """
        Insert the result asset and flip the job to success atomically.
        Returns the asset id, or None when the job was already settled.
        """
        asset_id = asset.id
        with Session(self.engine) as s:
            result = s.connection().execute(
                self._guarded_update(
                    job_id,
                    JobStatus.SUCCESS,
                    {"result_asset_id": asset_id, "result_url": asset.url, "error": None},
                )
            )
            if result.rowcount != 1:
                s.rollback()
                logger.info("Job %s already settled; result asset discarded", job_id)
                return None
            s.add(asset)
            s.commit()
        logger.info("Job %s -> success (asset %s)", job_id, asset_id)
        return asset_id

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        with Session(self.engine) as s:
            return s.get(Workspace, workspace_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with Session(self.engine) as s:
            return s.exec(select(User).where(User.username == username)).first()
