"""
Reconciliation state machine for marketplace transactions.

    importado / pendente / pendente_sync ──► conciliado ──► ignorado
                       ▲                         │              │
                       └──────── reopen ─────────┴──────────────┘

Reconciling validates stock, writes the ledger movement and costs the
items (CMV). Reopening or ignoring a reconciled transaction reverses both
the ledger movement and the CMV rows.
"""

from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from ecom_finance.models.enums import MovementOrigin, TxStatus
from ecom_finance.observability import metrics
from ecom_finance.pipeline.cmv import TransactionCmvResult, process_transaction_cmv, remove_transaction_cmv
from ecom_finance.pipeline.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PipelineError,
)
from ecom_finance.pipeline.ledger import movement_for_transaction, register_movement, remove_movement
from ecom_finance.pipeline.stock import StockValidation, validate_transaction_stock
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

TRANSACTIONS_TABLE = "marketplace_transactions"

OPEN_STATUSES = {TxStatus.IMPORTADO.value, TxStatus.PENDENTE.value, TxStatus.PENDENTE_SYNC.value}

TRANSITIONS: dict[str, set[str]] = {
    TxStatus.IMPORTADO.value: {TxStatus.CONCILIADO.value, TxStatus.IGNORADO.value},
    TxStatus.PENDENTE.value: {TxStatus.CONCILIADO.value, TxStatus.IGNORADO.value},
    TxStatus.PENDENTE_SYNC.value: {TxStatus.CONCILIADO.value, TxStatus.IGNORADO.value},
    TxStatus.CONCILIADO.value: {TxStatus.IGNORADO.value, TxStatus.PENDENTE.value},
    TxStatus.IGNORADO.value: {TxStatus.PENDENTE.value},
}


class ReconciliationResult(BaseModel):
    transacao: dict
    status_anterior: str
    movimento_id: Optional[str] = None
    cmv: Optional[TransactionCmvResult] = None
    estoque: Optional[StockValidation] = None


class BatchReconciliationResult(BaseModel):
    conciliadas: int = 0
    bloqueadas_estoque: int = 0
    erros: int = 0
    mensagens: list[str] = Field(default_factory=list)


def check_transition(current: str, target: str) -> None:
    if target not in TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, target)


async def _load(store: DataStore, transaction_id: str) -> Row:
    transaction = await store.find_one(TRANSACTIONS_TABLE, {"id": transaction_id})
    if transaction is None:
        raise NotFoundError("Transação", transaction_id)
    return transaction


async def _set_status(store: DataStore, transaction: Row, status: str, **patch) -> Row:
    updated = await store.update(TRANSACTIONS_TABLE, {"id": transaction["id"]}, {"status": status, **patch})
    metrics.reconciliation_transitions_total.labels(
        from_status=transaction["status"], to_status=status
    ).inc()
    logger.info(
        "transaction_status_changed",
        transaction_id=transaction["id"],
        from_status=transaction["status"],
        to_status=status,
    )
    return updated[0]


async def _reverse_effects(store: DataStore, transaction_id: str) -> None:
    await remove_movement(store, transaction_id, MovementOrigin.MARKETPLACE.value)
    await remove_transaction_cmv(store, transaction_id)


async def reconcile(
    store: DataStore,
    transaction_id: str,
    categoria_id: Optional[str] = None,
    centro_custo_id: Optional[str] = None,
    validate_stock: bool = True,
) -> ReconciliationResult:
    """Confirm category / cost center and finalize a transaction."""
    transaction = await _load(store, transaction_id)
    previous = transaction["status"]
    check_transition(previous, TxStatus.CONCILIADO.value)

    stock = None
    if validate_stock:
        stock = await validate_transaction_stock(store, transaction_id)
        if not stock.valido:
            raise InsufficientStockError(stock)

    patch = {}
    if categoria_id:
        patch["categoria_id"] = categoria_id
    if centro_custo_id:
        patch["centro_custo_id"] = centro_custo_id
    updated = await _set_status(store, transaction, TxStatus.CONCILIADO.value, **patch)

    categoria = None
    if updated.get("categoria_id"):
        categoria = await store.find_one("categorias", {"id": updated["categoria_id"]})
    movement_id = None
    movement = movement_for_transaction(updated, categoria)
    if movement is not None:
        movement_id = (await register_movement(store, movement))["id"]

    cmv = await process_transaction_cmv(store, updated)
    return ReconciliationResult(
        transacao=updated,
        status_anterior=previous,
        movimento_id=movement_id,
        cmv=cmv,
        estoque=stock,
    )


async def ignore(store: DataStore, transaction_id: str) -> ReconciliationResult:
    transaction = await _load(store, transaction_id)
    previous = transaction["status"]
    check_transition(previous, TxStatus.IGNORADO.value)
    if previous == TxStatus.CONCILIADO.value:
        await _reverse_effects(store, transaction_id)
    updated = await _set_status(store, transaction, TxStatus.IGNORADO.value)
    return ReconciliationResult(transacao=updated, status_anterior=previous)


async def reopen(store: DataStore, transaction_id: str) -> ReconciliationResult:
    """Back to pendente; removes the ledger movement and CMV rows."""
    transaction = await _load(store, transaction_id)
    previous = transaction["status"]
    check_transition(previous, TxStatus.PENDENTE.value)
    await _reverse_effects(store, transaction_id)
    updated = await _set_status(store, transaction, TxStatus.PENDENTE.value)
    return ReconciliationResult(transacao=updated, status_anterior=previous)


async def reconcile_batch(
    store: DataStore,
    transaction_ids: Sequence[str],
    categoria_id: Optional[str] = None,
    centro_custo_id: Optional[str] = None,
) -> BatchReconciliationResult:
    """Reconcile many transactions; each failure is counted, never fatal."""
    result = BatchReconciliationResult()
    for transaction_id in transaction_ids:
        try:
            await reconcile(store, transaction_id, categoria_id, centro_custo_id)
        except InsufficientStockError as e:
            result.bloqueadas_estoque += 1
            result.mensagens.append(f"{transaction_id}: {e.message}")
        except PipelineError as e:
            result.erros += 1
            result.mensagens.append(f"{transaction_id}: {e.message}")
        else:
            result.conciliadas += 1
    logger.info("reconcile_batch_finished", **result.model_dump(exclude={"mensagens"}))
    return result
