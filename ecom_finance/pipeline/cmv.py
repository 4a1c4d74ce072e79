"""
CMV (cost of goods sold) attribution for marketplace sales.

For each linked item of a reconciled transaction:
  custo_unitario  = product (or SKU) average cost
  custo_total     = quantidade × custo_unitario
  receita_total   = preco_total, else preco_unitario × quantidade
  margem_bruta    = receita_total − custo_total      (only when revenue is known)
  margem_percent. = margem_bruta / receita_total × 100 (only when revenue > 0)

At most one cmv_registros row exists per item: referencia_id is the item
id and is checked before every insert, so re-running a batch adds nothing.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from ecom_finance.models.enums import MovementOrigin, TxStatus
from ecom_finance.observability import metrics
from ecom_finance.pipeline.sku_mapping import SkuMappingCache
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

CMV_TABLE = "cmv_registros"
ITEMS_TABLE = "marketplace_transaction_items"

ProgressCallback = Callable[[int, int], None]


class ItemCmv(BaseModel):
    item_id: str
    transaction_id: str
    produto_id: str
    produto_nome: Optional[str] = None
    quantidade: int
    custo_unitario: Decimal
    custo_total: Decimal
    preco_venda_unitario: Optional[Decimal] = None
    receita_total: Optional[Decimal] = None
    margem_bruta: Optional[Decimal] = None
    margem_percentual: Optional[Decimal] = None


class UnmappedItem(BaseModel):
    item_id: str
    sku_marketplace: Optional[str] = None
    descricao: Optional[str] = None


class TransactionCmvResult(BaseModel):
    processados: list[ItemCmv] = Field(default_factory=list)
    sem_mapeamento: list[UnmappedItem] = Field(default_factory=list)
    ja_registrados: int = 0
    erros: list[dict] = Field(default_factory=list)


class BatchCmvResult(BaseModel):
    transacoes_processadas: int = 0
    itens_cmv: int = 0
    itens_sem_mapeamento: int = 0
    erros: int = 0


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def compute_item_cmv(item: Row, produto_id: str, custo_unitario: Decimal, produto_nome: Optional[str] = None) -> ItemCmv:
    quantidade = int(item.get("quantidade") or 1)
    custo_unitario = _decimal(custo_unitario) or Decimal("0")
    custo_total = quantidade * custo_unitario

    preco_unitario = _decimal(item.get("preco_unitario"))
    receita = _decimal(item.get("preco_total"))
    if receita is None and preco_unitario:
        receita = preco_unitario * quantidade

    margem = receita - custo_total if receita is not None else None
    percentual = None
    if receita is not None and receita > 0:
        percentual = (margem / receita * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    return ItemCmv(
        item_id=item["id"],
        transaction_id=item["transaction_id"],
        produto_id=produto_id,
        produto_nome=produto_nome,
        quantidade=quantidade,
        custo_unitario=custo_unitario,
        custo_total=_money(custo_total),
        preco_venda_unitario=preco_unitario,
        receita_total=_money(receita) if receita is not None else None,
        margem_bruta=_money(margem) if margem is not None else None,
        margem_percentual=percentual,
    )


async def _product_cost(store: DataStore, item: Row) -> Optional[tuple[str, Decimal, Optional[str]]]:
    """(produto_id, unit cost, name). SKU average cost wins when set."""
    if item.get("sku_id"):
        sku = await store.find_one("produto_skus", {"id": item["sku_id"]})
        if sku:
            product = await store.find_one("produtos", {"id": sku["produto_id"]})
            cost = sku.get("custo_medio")
            if cost is None and product:
                cost = product.get("custo_medio")
            return sku["produto_id"], _decimal(cost) or Decimal("0"), (product or {}).get("nome")
    if item.get("produto_id"):
        product = await store.find_one("produtos", {"id": item["produto_id"]})
        if product:
            return product["id"], _decimal(product.get("custo_medio")) or Decimal("0"), product.get("nome")
    return None


async def process_transaction_cmv(
    store: DataStore,
    transaction: Row,
    cache: Optional[SkuMappingCache] = None,
) -> TransactionCmvResult:
    """Cost every linked, not yet costed item of one transaction."""
    result = TransactionCmvResult()
    items = await store.find(ITEMS_TABLE, {"transaction_id": transaction["id"]})
    if not items:
        return result

    existing = await store.find(CMV_TABLE, {"referencia_id__in": [i["id"] for i in items]})
    costed = {r["referencia_id"] for r in existing}
    if cache is None:
        cache = SkuMappingCache(store, transaction["empresa_id"], transaction["canal"])

    records = []
    for item in items:
        if item["id"] in costed:
            result.ja_registrados += 1
            metrics.cmv_items_total.labels(outcome="skipped").inc()
            continue
        try:
            if not item.get("produto_id") and not item.get("sku_id"):
                resolved = await cache.resolve(
                    item.get("sku_marketplace"), item.get("anuncio_id"), item.get("variacao_id")
                )
                if resolved.linked:
                    item["produto_id"], item["sku_id"] = resolved.produto_id, resolved.sku_id
                    await store.update(
                        ITEMS_TABLE, {"id": item["id"]},
                        {"produto_id": resolved.produto_id, "sku_id": resolved.sku_id},
                    )

            product = await _product_cost(store, item)
            if product is None:
                result.sem_mapeamento.append(UnmappedItem(
                    item_id=item["id"],
                    sku_marketplace=item.get("sku_marketplace"),
                    descricao=item.get("descricao_item"),
                ))
                metrics.cmv_items_total.labels(outcome="unmapped").inc()
                continue

            cmv = compute_item_cmv(item, *product)
        except (ArithmeticError, ValueError, KeyError) as e:
            logger.warning("cmv_item_failed", item_id=item["id"], error=str(e))
            result.erros.append({"item_id": item["id"], "erro": str(e)})
            metrics.cmv_items_total.labels(outcome="error").inc()
            continue

        result.processados.append(cmv)
        records.append(_cmv_row(transaction, cmv))
        metrics.cmv_items_total.labels(outcome="costed").inc()

    if records:
        await store.insert(CMV_TABLE, records)
        logger.info("cmv_registered", transaction_id=transaction["id"], records=len(records))
    return result


def _cmv_row(transaction: Row, cmv: ItemCmv) -> Row:
    data = transaction.get("data_transacao")
    return {
        "empresa_id": transaction["empresa_id"],
        "produto_id": cmv.produto_id,
        "data": data if isinstance(data, date) else date.fromisoformat(str(data)),
        "origem": MovementOrigin.MARKETPLACE.value,
        "canal": transaction.get("canal"),
        "quantidade": Decimal(cmv.quantidade),
        "custo_unitario": cmv.custo_unitario,
        "custo_total": cmv.custo_total,
        "preco_venda_unitario": cmv.preco_venda_unitario,
        "receita_total": cmv.receita_total,
        "margem_bruta": cmv.margem_bruta,
        "margem_percentual": cmv.margem_percentual,
        "referencia_id": cmv.item_id,
        "observacoes": f"Venda marketplace - Item {cmv.item_id}",
    }


async def recompute_cmv_batch(
    store: DataStore,
    empresa_id: str,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchCmvResult:
    """Cost every reconciled transaction of a company that still has uncosted items.

    A failure on one transaction is counted and the batch continues.
    """
    result = BatchCmvResult()
    transactions = await store.find(
        "marketplace_transactions",
        {"empresa_id": empresa_id, "status": TxStatus.CONCILIADO.value},
        order_by="-data_transacao",
    )
    if not transactions:
        logger.info("cmv_batch_empty", empresa_id=empresa_id)
        return result

    costed = {
        r["referencia_id"]
        for r in await store.find(
            CMV_TABLE,
            {"empresa_id": empresa_id, "origem": MovementOrigin.MARKETPLACE.value, "referencia_id__isnull": False},
        )
    }
    items = await store.find(ITEMS_TABLE, {"transaction_id__in": [t["id"] for t in transactions]})
    pending_ids = {i["transaction_id"] for i in items if i["id"] not in costed}
    pending = [t for t in transactions if t["id"] in pending_ids]

    caches: dict[str, SkuMappingCache] = {}
    total = len(pending)
    logger.info("cmv_batch_started", empresa_id=empresa_id, transactions=total)
    for index, transaction in enumerate(pending):
        canal = transaction["canal"]
        cache = caches.setdefault(canal, SkuMappingCache(store, empresa_id, canal))
        try:
            outcome = await process_transaction_cmv(store, transaction, cache)
        except Exception as e:
            logger.warning("cmv_transaction_failed", transaction_id=transaction["id"], error=str(e))
            result.erros += 1
        else:
            result.transacoes_processadas += 1
            result.itens_cmv += len(outcome.processados)
            result.itens_sem_mapeamento += len(outcome.sem_mapeamento)
            result.erros += len(outcome.erros)
        if on_progress:
            on_progress(index + 1, total)

    logger.info("cmv_batch_finished", empresa_id=empresa_id, **result.model_dump())
    return result


async def remove_transaction_cmv(store: DataStore, transaction_id: str) -> int:
    """Delete every CMV row referencing an item of the transaction."""
    items = await store.find(ITEMS_TABLE, {"transaction_id": transaction_id})
    if not items:
        return 0
    removed = await store.delete(CMV_TABLE, {"referencia_id__in": [i["id"] for i in items]})
    if removed:
        logger.info("cmv_removed", transaction_id=transaction_id, records=removed)
    return removed
