"""
Stock validation before reconciling a marketplace transaction.

SKU-level stock takes precedence over product-level stock. Unlinked items
never block: they do not move stock.
"""

from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)


class StockItemValidation(BaseModel):
    item_id: str
    sku_marketplace: Optional[str] = None
    produto_nome: Optional[str] = None
    quantidade_solicitada: int
    estoque_disponivel: Decimal = Decimal("0")
    valido: bool = True
    mensagem: str = ""


class StockValidation(BaseModel):
    valido: bool = True
    itens: list[StockItemValidation] = Field(default_factory=list)
    mensagem_geral: str = ""
    itens_sem_vinculacao: int = 0
    itens_com_estoque_insuficiente: int = 0


def _shortfall(available: Decimal, requested: int) -> str:
    return f"Estoque insuficiente. Disponível: {available:g}, Necessário: {requested}"


async def validate_transaction_stock(store: DataStore, transaction_id: str) -> StockValidation:
    result = StockValidation()
    items = await store.find("marketplace_transaction_items", {"transaction_id": transaction_id})
    if not items:
        result.mensagem_geral = "Nenhum item vinculado. Estoque não será afetado."
        return result

    for item in items:
        check = StockItemValidation(
            item_id=item["id"],
            sku_marketplace=item.get("sku_marketplace"),
            produto_nome=item.get("descricao_item"),
            quantidade_solicitada=int(item.get("quantidade") or 1),
        )

        if not item.get("produto_id") and not item.get("sku_id"):
            check.mensagem = "Sem vinculação de produto. Estoque não será baixado."
            result.itens_sem_vinculacao += 1
            result.itens.append(check)
            continue

        if item.get("sku_id"):
            record = await store.find_one("produto_skus", {"id": item["sku_id"]})
            missing = "SKU não encontrado no sistema."
            if record:
                product = await store.find_one("produtos", {"id": record["produto_id"]})
                check.produto_nome = f"{(product or {}).get('nome', '')} - {record['codigo_sku']}"
        else:
            record = await store.find_one("produtos", {"id": item["produto_id"]})
            missing = "Produto não encontrado no sistema."
            if record:
                check.produto_nome = record["nome"]

        if record is None:
            check.valido = False
            check.mensagem = missing
        else:
            available = Decimal(str(record.get("estoque_atual") or 0))
            check.estoque_disponivel = available
            if available < check.quantidade_solicitada:
                check.valido = False
                check.mensagem = _shortfall(available, check.quantidade_solicitada)
            else:
                check.mensagem = "OK"

        if not check.valido:
            result.valido = False
            result.itens_com_estoque_insuficiente += 1
        result.itens.append(check)

    if result.valido:
        if result.itens_sem_vinculacao:
            result.mensagem_geral = (
                f"Validação OK. {result.itens_sem_vinculacao} item(s) sem vinculação serão ignorados."
            )
        else:
            result.mensagem_geral = "Estoque validado com sucesso."
    else:
        result.mensagem_geral = (
            f"{result.itens_com_estoque_insuficiente} item(s) com estoque insuficiente."
        )
        logger.info(
            "stock_validation_failed",
            transaction_id=transaction_id,
            short=result.itens_com_estoque_insuficiente,
        )
    return result
