"""
Inbound provider callbacks.

Whatever happens inside, the provider gets a positive acknowledgment: an
error status would only make it retry. Unknown task ids are acknowledged as
foreign, terminal jobs as already handled.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from genqueue.providers import Resolution
from genqueue.settlement import Settler
from genqueue.state import is_terminal
from genqueue.store import JobStore

logger = logging.getLogger(__name__)

SUCCESS_STATES = {"success", "succeeded", "completed"}
FAILED_STATES = {"failed", "fail", "error"}


@dataclass
class CallbackEvent:
    task_id: Optional[str]
    status: str  # success | failed | processing
    result_url: Optional[str] = None
    error: Optional[str] = None


def _normalize_status(raw: Any) -> str:
    s = str(raw or "").lower()
    if s in SUCCESS_STATES:
        return "success"
    if s in FAILED_STATES:
        return "failed"
    return "processing"


def _first_url(urls: Any) -> Optional[str]:
    if isinstance(urls, list) and urls and isinstance(urls[0], str):
        return urls[0]
    return None


def parse_callback(body: Dict[str, Any]) -> CallbackEvent:
    """
    Accepts the flat shape {taskId, status, output: {imageUrl | imageUrls}, error}
    and KIE's record shape {code, msg, data: {taskId, state, resultJson, failMsg}}.
    Fields of the wrong type are treated as absent.
    """
    body = body if isinstance(body, dict) else {}
    record = body.get("data") if isinstance(body.get("data"), dict) else None
    if record is not None and "taskId" not in body:
        result_url = None
        try:
            result = json.loads(record.get("resultJson") or "{}")
        except (TypeError, ValueError):
            result = None
        if isinstance(result, dict):
            result_url = _first_url(result.get("resultUrls"))
        return CallbackEvent(
            task_id=record.get("taskId"),
            status=_normalize_status(record.get("state")),
            result_url=result_url,
            error=record.get("failMsg") or body.get("msg"),
        )

    output = body.get("output") if isinstance(body.get("output"), dict) else {}
    image_url = output.get("imageUrl")
    return CallbackEvent(
        task_id=body.get("taskId"),
        status=_normalize_status(body.get("status")),
        result_url=image_url if isinstance(image_url, str) and image_url else _first_url(output.get("imageUrls")),
        error=body.get("error"),
    )


class CallbackReconciler:
    def __init__(self, store: JobStore, settler: Settler):
        self.store = store
        self.settler = settler

    def receive(self, body: Any) -> Dict[str, Any]:
        """Parse a raw callback body and handle it; never raises."""
        try:
            event = parse_callback(body)
        except Exception:
            logger.exception("[Callback] Unparseable payload")
            return {"received": True, "error": "Internal processing error"}
        return self.handle(event)

    def handle(self, event: CallbackEvent) -> Dict[str, Any]:
        try:
            return self._handle(event)
        except Exception:
            logger.exception("[Callback] Error handling task %s", event.task_id)
            return {"received": True, "error": "Internal processing error"}

    def _handle(self, event: CallbackEvent) -> Dict[str, Any]:
        logger.info("[Callback] Received task %s status=%s has_output=%s",
                    event.task_id, event.status, bool(event.result_url))
        if not event.task_id:
            return {"received": False, "error": "Missing taskId"}

        job = self.store.get_by_provider_task(event.task_id)
        if job is None:
            logger.warning("[Callback] Job not found for task %s", event.task_id)
            return {"received": True, "warning": "Job not found"}
        if is_terminal(job.status):
            logger.info("[Callback] Job %s already %s, ignoring duplicate", job.id, job.status)
            return {"received": True, "status": job.status, "duplicate": True}

        if event.status == "processing":
            return {"received": True, "status": "processing"}
        if event.status == "failed":
            resolution = Resolution.failed(event.error or "Generation failed")
        elif not event.result_url:
            resolution = Resolution.failed("No image URL in callback")
        else:
            resolution = Resolution.succeeded(event.result_url)

        self.settler.settle(job.id, resolution)
        final = self.store.get(job.id)
        return {"received": True, "status": final.status if final else "unknown"}
