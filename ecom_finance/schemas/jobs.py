"""
Pydantic schemas for RQ job and queue status.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class EnqueuedJob(BaseModel):
    """Either an RQ job id, or the result of the inline run when the queue is down."""
    rq_job_id: Optional[str] = None
    enfileirado: bool
    resultado: Optional[Any] = None


class JobProgress(BaseModel):
    done: int = 0
    total: int = 0


class JobStatus(BaseModel):
    job_id: str
    tipo: Optional[str] = None           # import, cmv, reprocess_mappings, ml_sync
    empresa_id: Optional[str] = None
    status: str
    progresso: Optional[JobProgress] = None
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Any] = None


class QueueStats(BaseModel):
    queue_name: str
    queued: int
    started: int
    finished: int
    failed: int
    workers: int
    queued_by_kind: dict[str, int] = {}
