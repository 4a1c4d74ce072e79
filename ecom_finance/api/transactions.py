"""
/api/v1/transactions endpoints.
Listing and the reconciliation lifecycle of marketplace transactions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ecom_finance.api.errors import http_error
from ecom_finance.dependencies import get_store, verify_api_key
from ecom_finance.pipeline import reconciliation
from ecom_finance.pipeline.errors import PipelineError
from ecom_finance.pipeline.reconciliation import (
    TRANSACTIONS_TABLE,
    BatchReconciliationResult,
    ReconciliationResult,
)
from ecom_finance.pipeline.stock import StockValidation, validate_transaction_stock
from ecom_finance.schemas.transactions import (
    BatchReconcileRequest,
    ReconcileRequest,
    TransactionListResponse,
    TransactionResponse,
)
from ecom_finance.storage.repository import DataStore

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    empresa_id: str = Query(...),
    status: Optional[str] = Query(None),
    canal: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: DataStore = Depends(get_store),
):
    """List a company's transactions, newest first."""
    filters = {"empresa_id": empresa_id}
    if status:
        filters["status"] = status
    if canal:
        filters["canal"] = canal
    total = await store.count(TRANSACTIONS_TABLE, filters)
    rows = await store.find(TRANSACTIONS_TABLE, filters, order_by="-data_transacao", limit=offset + limit)
    return TransactionListResponse(
        transactions=[TransactionResponse(**r) for r in rows[offset:]],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{transaction_id}/stock", response_model=StockValidation)
async def check_stock(transaction_id: str, store: DataStore = Depends(get_store)):
    """Would reconciling this transaction overdraw stock?"""
    return await validate_transaction_stock(store, transaction_id)


@router.post("/{transaction_id}/reconcile", response_model=ReconciliationResult)
async def reconcile_transaction(
    transaction_id: str,
    body: ReconcileRequest,
    store: DataStore = Depends(get_store),
):
    try:
        return await reconciliation.reconcile(
            store, transaction_id, body.categoria_id, body.centro_custo_id, body.validar_estoque
        )
    except PipelineError as e:
        raise http_error(e)


@router.post("/{transaction_id}/ignore", response_model=ReconciliationResult)
async def ignore_transaction(transaction_id: str, store: DataStore = Depends(get_store)):
    try:
        return await reconciliation.ignore(store, transaction_id)
    except PipelineError as e:
        raise http_error(e)


@router.post("/{transaction_id}/reopen", response_model=ReconciliationResult)
async def reopen_transaction(transaction_id: str, store: DataStore = Depends(get_store)):
    try:
        return await reconciliation.reopen(store, transaction_id)
    except PipelineError as e:
        raise http_error(e)


@router.post("/reconcile-batch", response_model=BatchReconciliationResult)
async def reconcile_batch(body: BatchReconcileRequest, store: DataStore = Depends(get_store)):
    """Reconcile many transactions; failures are reported per id."""
    return await reconciliation.reconcile_batch(store, body.ids, body.categoria_id, body.centro_custo_id)
