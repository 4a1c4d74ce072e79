"""
/api/v1/sku-mappings endpoints.
Pending marketplace SKUs, confirming a mapping, and relinking history.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from ecom_finance.dependencies import get_store, verify_api_key
from ecom_finance.pipeline.sku_mapping import (
    backfill_unlinked_items,
    map_sku,
    pending_mappings,
    reprocess_mappings,
)
from ecom_finance.schemas.jobs import EnqueuedJob
from ecom_finance.schemas.mappings import BackfillRequest, MapSkuRequest, MapSkuResponse, SkuMappingResponse
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/sku-mappings", tags=["sku-mappings"], dependencies=[Depends(verify_api_key)])


@router.get("/pending", response_model=list[SkuMappingResponse])
async def list_pending(
    empresa_id: str = Query(...),
    canal: Optional[str] = Query(None),
    store: DataStore = Depends(get_store),
):
    """Marketplace SKUs seen in imports that no product is linked to yet."""
    return [SkuMappingResponse(**m) for m in await pending_mappings(store, empresa_id, canal)]


@router.post("", response_model=MapSkuResponse)
async def confirm_mapping(body: MapSkuRequest, store: DataStore = Depends(get_store)):
    product = await store.find_one("produtos", {"id": body.produto_id, "empresa_id": body.empresa_id})
    if product is None:
        raise HTTPException(status_code=404, detail=f"Produto não encontrado: {body.produto_id}")
    result = await map_sku(
        store,
        body.empresa_id,
        body.canal,
        body.sku_marketplace,
        body.produto_id,
        sku_id=body.sku_id,
        rotulo=body.rotulo,
    )
    return MapSkuResponse(
        mapeamento=SkuMappingResponse(**result.mapeamento),
        itens_atualizados=result.itens_atualizados,
    )


@router.post("/reprocess", response_model=EnqueuedJob)
async def reprocess(empresa_id: str = Query(...), store: DataStore = Depends(get_store)):
    """Relink unlinked items through every confirmed mapping of the company."""
    try:
        from ecom_finance.worker.jobs import enqueue_reprocess_mappings
        return EnqueuedJob(rq_job_id=enqueue_reprocess_mappings(empresa_id), enfileirado=True)
    except Exception as e:
        logger.warning("enqueue_failed_running_inline", empresa_id=empresa_id, error=str(e))
    return EnqueuedJob(enfileirado=False, resultado=await reprocess_mappings(store, empresa_id))


@router.post("/backfill")
async def backfill(body: BackfillRequest, store: DataStore = Depends(get_store)):
    return await backfill_unlinked_items(store, body.empresa_id, body.canal, limit=body.limit)
