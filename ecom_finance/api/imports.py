"""
/api/v1/imports endpoints.
Report upload, pre-import checks, job progress and cancellation.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from ecom_finance.api.errors import http_error
from ecom_finance.dependencies import get_store, get_upload_store, verify_api_key
from ecom_finance.pipeline.errors import PipelineError
from ecom_finance.pipeline.importer import (
    JOBS_TABLE,
    ImportPipeline,
    cancel_import,
    preview_overlap,
    preview_period,
)
from ecom_finance.pipeline.overlap_check import OverlapValidation
from ecom_finance.pipeline.period_check import PeriodValidation
from ecom_finance.schemas.imports import ImportJobListResponse, ImportJobResponse, ImportUploadResponse
from ecom_finance.storage.repository import DataStore
from ecom_finance.storage.upload_store import UploadStore, upload_path, validate_upload

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/imports", tags=["imports"], dependencies=[Depends(verify_api_key)])


async def _read_validated(file: UploadFile) -> bytes:
    data = await file.read()
    try:
        validate_upload(file.filename or "", data)
    except PipelineError as e:
        raise http_error(e)
    return data


@router.post("", response_model=ImportUploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_report(
    file: UploadFile = File(...),
    empresa_id: str = Form(...),
    canal: Optional[str] = Form(None),
    mes: Optional[int] = Form(None, ge=1, le=12),
    ano: Optional[int] = Form(None, ge=2000, le=2100),
    store: DataStore = Depends(get_store),
    uploads: UploadStore = Depends(get_upload_store),
):
    """Upload a channel report or OFX statement for import.

    The import runs on the worker; without a reachable queue it runs inline
    and the summary is returned with the response.
    """
    data = await _read_validated(file)
    filename = file.filename or "upload"

    pipeline = ImportPipeline(store)
    job = await pipeline.create_job(empresa_id, filename, canal)
    path = uploads.save(upload_path(empresa_id, job["id"], filename), data)

    try:
        from ecom_finance.worker.jobs import enqueue_import
        rq_job_id = enqueue_import(empresa_id, job["id"], path, filename, canal, mes, ano)
        return ImportUploadResponse(
            job_id=job["id"],
            arquivo_nome=filename,
            status=job["status"],
            enfileirado=True,
            rq_job_id=rq_job_id,
        )
    except Exception as e:
        logger.warning("enqueue_failed_running_inline", job_id=job["id"], error=str(e))

    try:
        summary = await pipeline.process(
            data, filename, empresa_id, canal,
            job_id=job["id"], expected_month=mes, expected_year=ano,
        )
    except PipelineError as e:
        raise http_error(e)
    return ImportUploadResponse(
        job_id=job["id"],
        arquivo_nome=filename,
        status=summary.status,
        enfileirado=False,
        resumo=summary,
        message="Importação concluída",
    )


@router.post("/period-check", response_model=PeriodValidation)
async def check_period(
    file: UploadFile = File(...),
    mes: int = Form(..., ge=1, le=12),
    ano: int = Form(..., ge=2000, le=2100),
):
    """Compare the report's dominant month with the expected one."""
    data = await _read_validated(file)
    try:
        return preview_period(data, file.filename or "", mes, ano)
    except PipelineError as e:
        raise http_error(e)


@router.post("/overlap-check", response_model=OverlapValidation)
async def check_overlap(
    file: UploadFile = File(...),
    empresa_id: str = Form(...),
    canal: Optional[str] = Form(None),
    store: DataStore = Depends(get_store),
):
    """Share of the report's references that are already imported."""
    data = await _read_validated(file)
    try:
        return await preview_overlap(store, data, file.filename or "", empresa_id, canal)
    except PipelineError as e:
        raise http_error(e)


@router.get("", response_model=ImportJobListResponse)
async def list_jobs(
    empresa_id: str = Query(...),
    limit: int = Query(20, ge=1, le=100),
    store: DataStore = Depends(get_store),
):
    jobs = await store.find(JOBS_TABLE, {"empresa_id": empresa_id}, order_by="-criado_em", limit=limit)
    total = await store.count(JOBS_TABLE, {"empresa_id": empresa_id})
    return ImportJobListResponse(jobs=[ImportJobResponse(**j) for j in jobs], total=total)


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_job(job_id: str, store: DataStore = Depends(get_store)):
    job = await store.find_one(JOBS_TABLE, {"id": job_id})
    if job is None:
        raise HTTPException(status_code=404, detail=f"Import job not found: {job_id}")
    return ImportJobResponse(**job)


@router.post("/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_job(job_id: str, store: DataStore = Depends(get_store)):
    """Request cancellation; the import stops before its next row."""
    cancelled = await cancel_import(store, job_id)
    if cancelled is not None:
        return ImportJobResponse(**cancelled)
    job = await store.find_one(JOBS_TABLE, {"id": job_id})
    if job is None:
        raise HTTPException(status_code=404, detail=f"Import job not found: {job_id}")
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Import job is not running (status: {job['status']})",
    )
