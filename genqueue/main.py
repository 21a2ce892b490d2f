from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging

from fastapi import FastAPI, Depends, BackgroundTasks, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from genqueue.auth import current_user
from genqueue.db import init_db
from genqueue.errors import GenQueueError, NotFound
from genqueue.log import configure_logging
from genqueue.models import User, Workspace
from genqueue.schemas import GenerateRequest, GenerateResponse, JobView
from genqueue.services import Services, build_services
from genqueue.settings import settings

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}


def _services(request: Request) -> Services:
    return request.app.state.services


def _visible(ws: Optional[Workspace], user: User) -> bool:
    return ws is not None and (ws.owner_user_id == user.id or user.default_workspace_id == ws.id)


def create_app(services: Optional[Services] = None) -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services()
        init_db(app.state.services.engine)
        yield

    app = FastAPI(title="genqueue", lifespan=lifespan)
    app.state.services = services

    # ----- CORS (tighten per deployment) -----
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GenQueueError)
    async def genqueue_error(request: Request, exc: GenQueueError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})

    @app.get("/healthz", include_in_schema=False)
    def healthz():
        return {"ok": True}

    # ----- Admission -----
    @app.post("/api/generate", response_model=GenerateResponse)
    def generate(
        payload: GenerateRequest,
        bg: BackgroundTasks,
        request: Request,
        user: User = Depends(current_user),
    ):
        svc = _services(request)
        result = svc.admission.admit(user, payload)
        if result.queued:
            # same-process wake-up; the periodic worker loop is the fallback
            bg.add_task(svc.worker.drain)
        n = len(result.job_ids)
        return GenerateResponse(
            job_ids=result.job_ids,
            tier=result.tier.value,
            queued=result.queued,
            message=f"Queued {n} generation job(s)" if result.queued else f"Created {n} job(s); queueing deferred",
        )

    # ----- Job status -----
    @app.get("/api/jobs/{job_id}", response_model=JobView)
    def job_status(job_id: str, request: Request, user: User = Depends(current_user)):
        svc = _services(request)
        job = svc.store.get(job_id)
        if not job or not _visible(svc.store.get_workspace(job.workspace_id), user):
            raise NotFound("Job not found")
        return JobView.from_job(job)

    @app.get("/api/workspaces/{workspace_id}/jobs", response_model=List[JobView])
    def workspace_jobs(
        workspace_id: str,
        request: Request,
        limit: int = Query(50, ge=1, le=200),
        user: User = Depends(current_user),
    ):
        svc = _services(request)
        if not _visible(svc.store.get_workspace(workspace_id), user):
            raise NotFound("Workspace not found")
        return [JobView.from_job(j) for j in svc.store.list_by_workspace(workspace_id, limit)]

    # ----- Provider callbacks (always 200) -----
    @app.post("/api/queue/callback")
    async def queue_callback(request: Request):
        try:
            body = await request.json()
        except ValueError:
            logger.warning("[Callback] Unparseable body")
            return {"received": False, "error": "Invalid JSON"}
        # settling downloads and uploads; keep it off the event loop
        return await run_in_threadpool(_services(request).reconciler.receive, body)

    @app.get("/api/queue/callback")
    def queue_callback_probe():
        return {
            "status": "ok",
            "endpoint": "provider callback handler",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ----- Ephemeral exchange -----
    @app.get("/api/exchange/{token}")
    def exchange_get(token: str, request: Request):
        entry = _services(request).exchange.get(token)
        if entry is None:
            return Response("Not found", status_code=404, headers=NO_STORE)
        return Response(entry.content, media_type=entry.content_type, headers=NO_STORE)

    @app.head("/api/exchange/{token}")
    def exchange_head(token: str, request: Request):
        entry = _services(request).exchange.get(token)
        if entry is None:
            return Response(status_code=404, headers=NO_STORE)
        headers: Dict[str, str] = {
            **NO_STORE,
            "Content-Type": entry.content_type,
            "Content-Length": str(len(entry.content)),
        }
        return Response(status_code=200, headers=headers)

    # ----- Worker wake-up -----
    @app.post("/api/worker/tick")
    def worker_tick(request: Request):
        return _services(request).worker.drain()

    return app


app = create_app()
