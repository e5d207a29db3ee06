from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Body, HTTPException

from discussion_reader.parsing import ParseJobPhase, ParseJobRecord, ParseJobState

from api.dependencies import (
    build_job_id,
    build_worker,
    build_worker_config,
    get_job_queue,
    get_repo,
    get_storage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("")
def create_job(background_tasks: BackgroundTasks, payload: Dict[str, Any] = Body(...)):
    html = payload.get("html")
    if not isinstance(html, str) or not html.strip():
        raise HTTPException(status_code=400, detail="Page markup must be a non-empty string")
    globals_ = payload.get("globals") or {}
    page_name = payload.get("pageName") or globals_.get("currentPageName") or "page"

    repo = get_repo()
    job_id = build_job_id(page_name, html)
    if repo.get_job(job_id):
        raise HTTPException(status_code=409, detail=f"Job already exists: {job_id}")

    get_storage().save_page_html(job_id, html)
    job = ParseJobRecord(
        id=job_id,
        page_name=page_name,
        state=ParseJobState.QUEUED,
        phase=ParseJobPhase.PRECHECK,
        config_json=payload.get("config") or {},
        globals_json=globals_,
    )
    repo.save_job(job)

    job_queue = get_job_queue()
    if job_queue is not None:
        job_queue.enqueue_parse_job(job_id, build_worker_config())
    else:
        background_tasks.add_task(_run_job, job_id)
    return {"job_id": job_id, "page_name": page_name}


@router.get("/{job_id}")
def get_job(job_id: str):
    job = get_repo().get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {
        "id": job.id,
        "page_name": job.page_name,
        "state": job.state,
        "phase": job.phase,
        "comment_count": job.comment_count,
        "section_count": job.section_count,
        "error_message": job.error_message,
    }


@router.get("/{job_id}/result")
def get_job_result(job_id: str):
    job = get_repo().get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    if job.state != ParseJobState.COMPLETED:
        raise HTTPException(status_code=409, detail=f"Job {job_id} is {job.state.value}")
    result = get_storage().read_parse_output(job_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No parse output stored for {job_id}")
    return result


def _run_job(job_id: str) -> None:
    try:
        build_worker().run_job(job_id)
    except Exception:  # noqa: BLE001
        # The failure is already recorded on the job.
        logger.exception("Parse job %s failed", job_id)
