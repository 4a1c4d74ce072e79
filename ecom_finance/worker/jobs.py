"""
RQ job functions for the batch operations.
These are the entry points that the worker calls; each one runs to completion
in a single invocation.
"""

import asyncio
from typing import Optional

import structlog
from redis import Redis
from rq import Queue, get_current_job

from ecom_finance.config import settings
from ecom_finance.observability import metrics

logger = structlog.get_logger(__name__)

RESULT_TTL = 86400        # 24 hours
FAILURE_TTL = 604800      # 7 days


def get_queue() -> Queue:
    """Get the batch job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def _enqueue(func, *args, description: str, kind: str, empresa_id: str) -> str:
    q = get_queue()
    job = q.enqueue(
        func,
        *args,
        meta={"kind": kind, "empresa_id": empresa_id},
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=RESULT_TTL,
        failure_ttl=FAILURE_TTL,
        description=description,
    )
    logger.info("job_enqueued", rq_job_id=job.id, kind=kind, empresa_id=empresa_id)
    return job.id


def _report_progress(done: int, total: int) -> None:
    job = get_current_job()
    if job is None:
        return
    job.meta["progress"] = {"done": done, "total": total}
    job.save_meta()


def _run(coro_factory, **context) -> dict:
    """Run one async job body on a fresh event loop."""
    metrics.worker_jobs_active.inc()
    logger.info("job_started", **context)
    try:
        result = asyncio.run(_with_store(coro_factory))
        logger.info("job_completed", **context)
        return result
    except Exception as e:
        logger.error("job_failed", error=str(e), **context)
        raise
    finally:
        metrics.worker_jobs_active.dec()


async def _with_store(coro_factory) -> dict:
    from ecom_finance.models.database import async_session_factory, engine
    from ecom_finance.storage.sql_store import SqlDataStore

    try:
        return await coro_factory(SqlDataStore(async_session_factory))
    finally:
        # Pooled connections belong to this job's event loop
        await engine.dispose()


# ── File import ──────────────────────────────────────────────

def enqueue_import(
    empresa_id: str,
    job_id: str,
    upload_path: str,
    filename: str,
    canal: Optional[str] = None,
    expected_month: Optional[int] = None,
    expected_year: Optional[int] = None,
) -> str:
    return _enqueue(
        process_import_job,
        empresa_id, job_id, upload_path, filename, canal, expected_month, expected_year,
        description=f"import {filename}",
        kind="import",
        empresa_id=empresa_id,
    )


def process_import_job(
    empresa_id: str,
    job_id: str,
    upload_path: str,
    filename: str,
    canal: Optional[str] = None,
    expected_month: Optional[int] = None,
    expected_year: Optional[int] = None,
) -> dict:
    from ecom_finance.pipeline.importer import ImportPipeline
    from ecom_finance.storage.upload_store import UploadStore

    async def body(store) -> dict:
        content = UploadStore().load(upload_path)
        summary = await ImportPipeline(store).process(
            content, filename, empresa_id, canal,
            job_id=job_id, expected_month=expected_month, expected_year=expected_year,
        )
        return summary.model_dump(mode="json")

    return _run(body, job_id=job_id, empresa_id=empresa_id, kind="import")


# ── CMV recompute ────────────────────────────────────────────

def enqueue_cmv_recompute(empresa_id: str) -> str:
    return _enqueue(
        recompute_cmv_job, empresa_id,
        description=f"cmv {empresa_id}", kind="cmv", empresa_id=empresa_id,
    )


def recompute_cmv_job(empresa_id: str) -> dict:
    from ecom_finance.pipeline.cmv import recompute_cmv_batch

    async def body(store) -> dict:
        result = await recompute_cmv_batch(store, empresa_id, on_progress=_report_progress)
        return result.model_dump(mode="json")

    return _run(body, empresa_id=empresa_id, kind="cmv")


# ── SKU mapping reprocess ────────────────────────────────────

def enqueue_reprocess_mappings(empresa_id: str) -> str:
    return _enqueue(
        reprocess_mappings_job, empresa_id,
        description=f"mappings {empresa_id}", kind="reprocess_mappings", empresa_id=empresa_id,
    )


def reprocess_mappings_job(empresa_id: str) -> dict:
    from ecom_finance.pipeline.sku_mapping import reprocess_mappings

    async def body(store) -> dict:
        return await reprocess_mappings(store, empresa_id)

    return _run(body, empresa_id=empresa_id, kind="reprocess_mappings")


# ── Marketplace sync ─────────────────────────────────────────

def enqueue_sync(empresa_id: str, days_back: Optional[int] = None) -> str:
    return _enqueue(
        sync_orders_job, empresa_id, days_back,
        description=f"ml sync {empresa_id}", kind="ml_sync", empresa_id=empresa_id,
    )


def sync_orders_job(empresa_id: str, days_back: Optional[int] = None) -> dict:
    from ecom_finance.integrations.sync import sync_orders

    async def body(store) -> dict:
        summary = await sync_orders(store, empresa_id, days_back)
        return summary.model_dump(mode="json")

    return _run(body, empresa_id=empresa_id, kind="ml_sync")
