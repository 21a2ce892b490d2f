"""
Terminal transitions shared by the poll loop and the callback reconciler.

A resolution is applied at most once per job: terminal jobs are skipped up
front, and the final write is a compare-and-set, so a duplicate callback or a
callback racing the poll loop neither flips state nor leaves a second asset.
"""

import logging
from typing import Optional

import requests

from genqueue.errors import PersistenceFailed, ProviderReportedFailure
from genqueue.models import Asset
from genqueue.providers import Outcome, Resolution
from genqueue.settings import settings
from genqueue.state import JobStatus, is_terminal
from genqueue.storage import AssetStore, decode_inline, extension_for, fetch_remote
from genqueue.store import JobStore

logger = logging.getLogger(__name__)


class Settler:
    def __init__(self, store: JobStore, assets: AssetStore, http: Optional[requests.Session] = None):
        self.store = store
        self.assets = assets
        self.http = http

    def fail(self, job_id: str, error: str) -> bool:
        logger.info("Failing job %s: %s", job_id, error)
        return self.store.transition(job_id, JobStatus.FAILED, error=error)

    def settle(self, job_id: str, resolution: Resolution) -> bool:
        """
        Drive a job to its terminal state. Returns True if this call changed
        the job, False if it was absent, already terminal, or still pending.
        """
        job = self.store.get(job_id)
        if job is None:
            logger.warning("Settle: job %s not found", job_id)
            return False
        if is_terminal(job.status):
            logger.info("Settle: job %s already %s, ignoring", job_id, job.status)
            return False
        if resolution.outcome is Outcome.PENDING:
            return False
        try:
            if resolution.outcome is Outcome.FAILED:
                raise ProviderReportedFailure(resolution.error or "Generation failed")
            if not resolution.result_url:
                raise ProviderReportedFailure("No image URL in result")
            if resolution.result_url.startswith("data:"):
                content, content_type = decode_inline(resolution.result_url)
            else:
                content, content_type = fetch_remote(resolution.result_url, self.http)
            key = f"{settings.S3_OUTPUT_PREFIX}{job.workspace_id}/{job.id}{extension_for(content_type)}"
            url = self.assets.persist(content, content_type, key)
        except (ProviderReportedFailure, PersistenceFailed) as e:
            return self.fail(job_id, str(e))

        asset = Asset(
            workspace_id=job.workspace_id,
            owner_user_id=job.created_by,
            title=f"Generated: {job.prompt[:50]}",
            storage_key=key,
            url=url,
            mime_type=content_type,
            source_board_id=job.board_id,
            source_job_id=job.id,
        )
        return self.store.complete_with_asset(job_id, asset) is not None
