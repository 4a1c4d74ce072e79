"""
/api/v1/jobs endpoints.
Status of the batch jobs (imports, CMV recompute, mapping reprocess, marketplace
sync) and of the queue they run on.
"""

from collections import Counter
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Worker
from rq.exceptions import NoSuchJobError
from rq.job import Job

from ecom_finance.config import settings
from ecom_finance.dependencies import verify_api_key
from ecom_finance.schemas.jobs import JobProgress, JobStatus, QueueStats

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


def _redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL)


def _job_status(job: Job) -> JobStatus:
    progress = job.meta.get("progress")
    return JobStatus(
        job_id=job.id,
        tipo=job.meta.get("kind"),
        empresa_id=job.meta.get("empresa_id"),
        status=str(job.get_status()),
        progresso=JobProgress(**progress) if progress else None,
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
        error_message=str(job.exc_info).strip().splitlines()[-1] if job.exc_info else None,
        result=job.result if job.is_finished else None,
    )


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(empresa_id: Optional[str] = Query(None)):
    """Queue counters; queued jobs are broken down by kind, optionally for one company."""
    try:
        conn = _redis()
        q = Queue(settings.QUEUE_NAME, connection=conn)
        queued = [j for j in q.get_jobs() if empresa_id is None or j.meta.get("empresa_id") == empresa_id]
        return QueueStats(
            queue_name=settings.QUEUE_NAME,
            queued=len(queued),
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            workers=len(Worker.all(connection=conn)),
            queued_by_kind=dict(Counter(j.meta.get("kind", "unknown") for j in queued)),
        )
    except RedisError as e:
        logger.warning("queue_unavailable", error=str(e))
        raise HTTPException(status_code=503, detail=f"Fila indisponível: {e}")


@router.get("/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Status of a batch job, with done/total progress while it runs."""
    try:
        job = Job.fetch(job_id, connection=_redis())
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail=f"Job não encontrado: {job_id}")
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Fila indisponível: {e}")
    return _job_status(job)
