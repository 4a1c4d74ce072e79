"""
/api/v1/cmv endpoints.
Cost-of-goods attribution for reconciled sales.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from ecom_finance.dependencies import get_store, verify_api_key
from ecom_finance.pipeline.cmv import TransactionCmvResult, process_transaction_cmv, recompute_cmv_batch
from ecom_finance.pipeline.reconciliation import TRANSACTIONS_TABLE
from ecom_finance.schemas.jobs import EnqueuedJob
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/cmv", tags=["cmv"], dependencies=[Depends(verify_api_key)])


@router.post("/recompute", response_model=EnqueuedJob)
async def recompute(empresa_id: str = Query(...), store: DataStore = Depends(get_store)):
    """Cost every reconciled sale that still has uncosted items."""
    try:
        from ecom_finance.worker.jobs import enqueue_cmv_recompute
        return EnqueuedJob(rq_job_id=enqueue_cmv_recompute(empresa_id), enfileirado=True)
    except Exception as e:
        logger.warning("enqueue_failed_running_inline", empresa_id=empresa_id, error=str(e))
    result = await recompute_cmv_batch(store, empresa_id)
    return EnqueuedJob(enfileirado=False, resultado=result.model_dump(mode="json"))


@router.post("/transactions/{transaction_id}", response_model=TransactionCmvResult)
async def cost_transaction(transaction_id: str, store: DataStore = Depends(get_store)):
    transaction = await store.find_one(TRANSACTIONS_TABLE, {"id": transaction_id})
    if transaction is None:
        raise HTTPException(status_code=404, detail=f"Transação não encontrada: {transaction_id}")
    return await process_transaction_cmv(store, transaction)
