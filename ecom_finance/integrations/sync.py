"""
Pull-based Mercado Livre order sync.

Orders updated in the last N days are converted to candidate transactions and
go through the same natural-key upsert/merge and SKU resolution as file
imports. Per order:

  valor_bruto     = total_amount
  comissao        = Σ payments[].marketplace_fee
  frete_vendedor  = shipment sender_cost, else base_cost, else shipping.cost
  frete_comprador = shipment receiver_cost
  valor_liquido   = valor_bruto − comissao − frete_vendedor
  status          = importado when paid, else pendente

Webhook drafts (status pendente_sync) are completed when the sync sees the
order paid.
"""

import time
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import structlog
from dateutil import parser as date_parser
from pydantic import BaseModel

from ecom_finance.config import settings
from ecom_finance.integrations.integration_log import write_log
from ecom_finance.integrations.mercado_livre import PROVIDER, MercadoLivreClient
from ecom_finance.integrations.tokens import get_valid_token
from ecom_finance.models.enums import (
    Channel,
    EntryDirection,
    IntegrationLogStatus,
    TransactionType,
    TxStatus,
)
from ecom_finance.observability import metrics
from ecom_finance.observability.logging import bind_job_context, clear_job_context
from ecom_finance.pipeline.dedupe import TRANSACTIONS_TABLE, UpsertOutcome, upsert_transaction
from ecom_finance.pipeline.errors import IntegrationError, PipelineError
from ecom_finance.pipeline.sku_mapping import SkuMappingCache, resolve_item
from ecom_finance.schemas.canonical import CandidateItem, CandidateTransaction
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

CANAL = Channel.MERCADO_LIVRE.value

LOGISTIC_TYPES = {
    "fulfillment": "full",
    "xd_drop_off": "flex",
    "cross_docking": "flex",
    "self_service": "coleta",
    "drop_off": "coleta",
    "not_specified": "coleta",
    "custom": "retirada",
}


class SyncSummary(BaseModel):
    total_pedidos: int = 0
    registros_processados: int = 0
    registros_criados: int = 0
    registros_atualizados: int = 0
    registros_erro: int = 0
    itens_vinculados: int = 0
    shipping_extraidos: int = 0
    duracao_ms: int = 0


def _decimal(value) -> Decimal:
    return Decimal(str(value or 0))


def order_date(order: dict) -> date:
    raw = order.get("date_closed") or order.get("date_created")
    if not raw:
        raise ValueError(f"Pedido {order.get('id')} sem data")
    return date_parser.isoparse(raw).date()


def shipping_type(shipment: Optional[dict]) -> Optional[str]:
    raw = (shipment or {}).get("logistic_type") or ""
    return LOGISTIC_TYPES.get(raw, raw or None)


def order_items(order: dict) -> list[CandidateItem]:
    items = []
    for line in order.get("order_items") or []:
        listing = line.get("item") or {}
        quantity = int(line.get("quantity") or 1)
        unit_price = _decimal(line.get("unit_price"))
        items.append(CandidateItem(
            sku_marketplace=listing.get("seller_sku") or listing.get("id"),
            anuncio_id=listing.get("id"),
            variacao_id=str(listing["variation_id"]) if listing.get("variation_id") else None,
            descricao_item=listing.get("title") or "",
            quantidade=quantity,
            preco_unitario=unit_price,
            preco_total=unit_price * quantity,
            pedido_id=str(order["id"]),
        ))
    return items


def order_to_candidate(order: dict, shipment: Optional[dict] = None) -> CandidateTransaction:
    gross = _decimal(order.get("total_amount"))
    fees = sum((_decimal(p.get("marketplace_fee")) for p in order.get("payments") or []), Decimal("0"))
    shipment = shipment or {}
    seller_shipping = _decimal(
        shipment.get("sender_cost")
        or shipment.get("base_cost")
        or (order.get("shipping") or {}).get("cost")
    )
    order_id = str(order["id"])
    return CandidateTransaction(
        canal=CANAL,
        referencia_externa=order_id,
        pedido_id=order_id,
        data_transacao=order_date(order),
        descricao=f"Venda #{order_id}",
        tipo_transacao=TransactionType.VENDA.value,
        tipo_lancamento=EntryDirection.CREDITO.value,
        valor_bruto=gross,
        valor_liquido=gross - fees - seller_shipping,
        comissao=fees,
        frete_vendedor=seller_shipping,
        frete_comprador=_decimal(shipment.get("receiver_cost")),
        tipo_envio=shipping_type(shipment),
        status=TxStatus.IMPORTADO.value if order.get("status") == "paid" else TxStatus.PENDENTE.value,
        origem_extrato="api_mercado_livre",
        itens=order_items(order),
    )


def draft_from_order(order: dict) -> CandidateTransaction:
    """Minimal sale pushed by a webhook. Fees, shipping and net stay None so a
    later merge never overwrites figures the sync already stored."""
    order_id = str(order["id"])
    nickname = (order.get("buyer") or {}).get("nickname")
    return CandidateTransaction(
        canal=CANAL,
        referencia_externa=order_id,
        pedido_id=order_id,
        data_transacao=order_date(order),
        descricao=f"Venda #{order_id}" + (f" - {nickname}" if nickname else ""),
        tipo_transacao=TransactionType.VENDA.value,
        tipo_lancamento=EntryDirection.CREDITO.value,
        valor_bruto=_decimal(order.get("total_amount")),
        status=TxStatus.PENDENTE_SYNC.value if order.get("status") == "paid" else TxStatus.PENDENTE.value,
        origem_extrato="webhook_mercado_livre",
        itens=order_items(order),
    )


async def upsert_order(
    store: DataStore,
    empresa_id: str,
    candidate: CandidateTransaction,
    cache: SkuMappingCache,
) -> tuple[UpsertOutcome, int]:
    """Resolve SKUs and upsert; returns the outcome and linked item count."""
    linked = 0
    for item in candidate.itens:
        if await resolve_item(cache, item):
            linked += 1
    outcome = await upsert_transaction(store, empresa_id, candidate)
    return outcome, linked


async def _complete_draft(store: DataStore, outcome: UpsertOutcome, candidate: CandidateTransaction) -> None:
    if outcome.created or candidate.status != TxStatus.IMPORTADO.value:
        return
    await store.update(
        TRANSACTIONS_TABLE,
        {
            "id": outcome.transaction_id,
            "status__in": [TxStatus.PENDENTE_SYNC.value, TxStatus.PENDENTE.value],
        },
        {"status": TxStatus.IMPORTADO.value},
    )


async def _fetch_shipment(client: MercadoLivreClient, order: dict) -> Optional[dict]:
    shipment_id = (order.get("shipping") or {}).get("id")
    if not shipment_id:
        return None
    try:
        return await client.get_shipment(str(shipment_id))
    except IntegrationError as e:
        logger.warning("ml_shipment_unavailable", order_id=order.get("id"), error=e.message)
        return None


async def sync_orders(
    store: DataStore,
    empresa_id: str,
    days_back: Optional[int] = None,
    client: Optional[MercadoLivreClient] = None,
) -> SyncSummary:
    """Import every order updated in the last ``days_back`` days."""
    days_back = days_back or settings.ML_SYNC_DAYS_BACK
    start = time.monotonic()
    summary = SyncSummary()
    bind_job_context(empresa_id=empresa_id, canal=CANAL, operation="ml_sync")
    owns_client = client is None
    client = client or MercadoLivreClient()
    try:
        token = await get_valid_token(store, empresa_id, client)
        client.access_token = token["access_token"]
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        orders = await client.search_orders(token.get("user_id_provider"), since)
        summary.total_pedidos = len(orders)

        cache = SkuMappingCache(store, empresa_id, CANAL)
        for order in orders:
            summary.registros_processados += 1
            try:
                shipment = await _fetch_shipment(client, order)
                candidate = order_to_candidate(order, shipment)
                if candidate.tipo_envio:
                    summary.shipping_extraidos += 1
                outcome, linked = await upsert_order(store, empresa_id, candidate, cache)
                await _complete_draft(store, outcome, candidate)
            except Exception as e:
                summary.registros_erro += 1
                logger.warning("ml_order_failed", order_id=order.get("id"), error=str(e))
                continue
            summary.itens_vinculados += linked
            if outcome.created:
                summary.registros_criados += 1
            else:
                summary.registros_atualizados += 1
    except PipelineError as e:
        await write_log(
            store, empresa_id, PROVIDER, "sync", IntegrationLogStatus.ERROR, e.message,
            duracao_ms=int((time.monotonic() - start) * 1000),
        )
        metrics.integration_calls_total.labels(provider=PROVIDER, operation="sync", status="error").inc()
        raise
    finally:
        if owns_client:
            await client.close()
        clear_job_context()

    summary.duracao_ms = int((time.monotonic() - start) * 1000)
    status = IntegrationLogStatus.PARTIAL if summary.registros_erro else IntegrationLogStatus.SUCCESS
    await write_log(
        store, empresa_id, PROVIDER, "sync", status,
        f"Sync concluído: {summary.registros_criados} novos, {summary.registros_atualizados} atualizados, "
        f"{summary.shipping_extraidos} com tipo_envio, {summary.itens_vinculados} itens mapeados",
        detalhes={"days_back": days_back, "total_orders": summary.total_pedidos},
        processados=summary.registros_processados,
        criados=summary.registros_criados,
        atualizados=summary.registros_atualizados,
        erros=summary.registros_erro,
        duracao_ms=summary.duracao_ms,
    )
    metrics.integration_calls_total.labels(provider=PROVIDER, operation="sync", status=status.value).inc()
    logger.info("ml_sync_finished", empresa_id=empresa_id, **summary.model_dump())
    return summary
