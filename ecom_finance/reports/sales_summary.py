"""
Sales summary for a period, computed server-side by the get_vendas_resumo
procedure. summarize_transactions is the same rollup in Python; it backs the
procedure in the in-memory store.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel

from ecom_finance.models.enums import TxStatus
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

PROCEDURE = "get_vendas_resumo"

# summary field → transaction column
SUMMED_COLUMNS = {
    "total_bruto": "valor_bruto",
    "total_liquido": "valor_liquido",
    "total_comissao": "comissao",
    "total_tarifas": "tarifa",
    "total_frete_comprador": "frete_comprador",
    "total_frete_vendedor": "frete_vendedor",
    "total_ads": "ads",
    "total_impostos": "imposto",
}


class SalesSummary(BaseModel):
    total_bruto: Decimal = Decimal("0")
    total_liquido: Decimal = Decimal("0")
    total_comissao: Decimal = Decimal("0")
    total_tarifas: Decimal = Decimal("0")
    total_frete_comprador: Decimal = Decimal("0")
    total_frete_vendedor: Decimal = Decimal("0")
    total_ads: Decimal = Decimal("0")
    total_impostos: Decimal = Decimal("0")
    total_transacoes: int = 0
    transacoes_sem_categoria: int = 0
    transacoes_nao_conciliadas: int = 0


def summarize_transactions(transactions: Iterable[Row]) -> SalesSummary:
    summary = SalesSummary()
    for tx in transactions:
        summary.total_transacoes += 1
        for field, column in SUMMED_COLUMNS.items():
            if tx.get(column) is not None:
                setattr(summary, field, getattr(summary, field) + Decimal(str(tx[column])))
        if not tx.get("categoria_id"):
            summary.transacoes_sem_categoria += 1
        if tx.get("status") != TxStatus.CONCILIADO.value:
            summary.transacoes_nao_conciliadas += 1
    return summary


async def vendas_resumo_procedure(store: DataStore, params: dict) -> list[dict]:
    filters = {
        "data_transacao__gte": params["p_data_inicio"],
        "data_transacao__lte": params["p_data_fim"],
        "status__ne": TxStatus.IGNORADO.value,
    }
    if params.get("p_empresa_id"):
        filters["empresa_id"] = params["p_empresa_id"]
    if params.get("p_canal"):
        filters["canal"] = params["p_canal"]
    rows = await store.find("marketplace_transactions", filters)
    return [summarize_transactions(rows).model_dump()]


async def load_sales_summary(
    store: DataStore,
    empresa_id: Optional[str],
    start: date,
    end: date,
    canal: Optional[str] = None,
) -> SalesSummary:
    """Period rollup; empresa_id None covers every company."""
    result = await store.call_procedure(PROCEDURE, {
        "p_empresa_id": empresa_id,
        "p_data_inicio": start,
        "p_data_fim": end,
        "p_canal": canal,
    })
    row = result[0] if isinstance(result, list) and result else result
    if not row:
        return SalesSummary()
    summary = SalesSummary.model_validate({k: v for k, v in row.items() if v is not None})
    logger.debug("sales_summary_loaded", empresa_id=empresa_id, transacoes=summary.total_transacoes)
    return summary
