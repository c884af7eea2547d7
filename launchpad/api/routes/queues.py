"""
launchpad.api.routes.queues — Queue operations (JWT-protected)
===============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from launchpad.api.deps import get_current_admin, get_queue
from launchpad.constants import ALL_QUEUES
from launchpad.database.engine import run_db
from launchpad.database.models import DeadLetterJob
from launchpad.errors import LaunchpadError
from launchpad.queue.job_queue import JobQueue

router = APIRouter(
    prefix="/queues",
    tags=["queues"],
    dependencies=[Depends(get_current_admin)],
)


def _check_queue(name: str) -> str:
    if name not in ALL_QUEUES:
        raise HTTPException(404, f"Unknown queue {name!r}")
    return name


def _dead_letter_dict(d: DeadLetterJob) -> dict:
    error = LaunchpadError.from_message(d.last_error) if d.last_error else None
    return {
        "id": d.id,
        "job_id": d.job_id,
        "queue": d.queue,
        "type": d.type,
        "dao_id": d.dao_id,
        "attempts": d.attempts,
        "error_code": d.error_code,
        "last_error": d.last_error,
        "message": error.description if error else None,
        "failed_at": d.failed_at.isoformat() if d.failed_at else None,
    }


@router.get("")
async def list_queue_metrics(queue: JobQueue = Depends(get_queue)):
    return [await run_db(queue.metrics, name) for name in ALL_QUEUES]


@router.get("/{name}")
async def queue_metrics(name: str, queue: JobQueue = Depends(get_queue)):
    return await run_db(queue.metrics, _check_queue(name))


@router.get("/{name}/dead-letters")
async def list_dead_letters(
    name: str,
    limit: int = Query(100, ge=1, le=500),
    queue: JobQueue = Depends(get_queue),
):
    rows = await run_db(queue.dead_letters, _check_queue(name), limit)
    return [_dead_letter_dict(d) for d in rows]


@router.post("/dead-letters/{dead_letter_id}/requeue")
async def requeue_dead_letter(dead_letter_id: int, queue: JobQueue = Depends(get_queue)):
    job_id = await run_db(queue.requeue_dead_letter, dead_letter_id)
    return {"job_id": job_id}


@router.post("/{name}/pause")
async def pause_queue(name: str, queue: JobQueue = Depends(get_queue)):
    await run_db(queue.pause, _check_queue(name))
    return {"queue": name, "paused": True}


@router.post("/{name}/resume")
async def resume_queue(name: str, queue: JobQueue = Depends(get_queue)):
    await run_db(queue.resume, _check_queue(name))
    return {"queue": name, "paused": False}
