"""
Unified financial ledger (movimentos_financeiros).

Every module that moves money (bank statements, card invoices, payables,
receivables, marketplace reconciliation, manual entries) writes through
register_movement. (referencia_id, origem) is the upsert key, so creating,
updating and removing a movement from any origin is idempotent.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel

from ecom_finance.models.enums import EntryDirection, MovementDirection, MovementOrigin
from ecom_finance.pipeline.errors import LedgerError
from ecom_finance.pipeline.regime import determine_regime
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

MOVEMENTS_TABLE = "movimentos_financeiros"
MOVEMENT_KEY = ("referencia_id", "origem")


class MovementInput(BaseModel):
    data: Optional[date] = None
    tipo: str                                # entrada, saida
    origem: str
    descricao: str
    valor: Decimal
    empresa_id: Optional[str] = None
    tipo_transacao: Optional[str] = None
    referencia_id: Optional[str] = None
    categoria_id: Optional[str] = None
    categoria_nome: Optional[str] = None
    centro_custo_id: Optional[str] = None
    centro_custo_nome: Optional[str] = None
    responsavel_id: Optional[str] = None
    forma_pagamento: Optional[str] = None
    cliente_nome: Optional[str] = None
    fornecedor_nome: Optional[str] = None
    observacoes: Optional[str] = None


def _validate(movement: MovementInput) -> None:
    if movement.data is None:
        raise LedgerError("Campo data é obrigatório")
    if movement.valor is None or movement.valor <= 0:
        raise LedgerError("Campo valor deve ser maior que zero")
    if not movement.empresa_id:
        raise LedgerError("Campo empresa_id é obrigatório")
    if movement.tipo not in (MovementDirection.ENTRADA.value, MovementDirection.SAIDA.value):
        raise LedgerError(f"Tipo de movimento inválido: {movement.tipo}")


async def register_movement(store: DataStore, movement: MovementInput) -> Row:
    """Create or update a movement. The regime is always derived here."""
    _validate(movement)
    row = movement.model_dump()
    row["regime"] = determine_regime(movement.origem, movement.tipo_transacao)

    if movement.referencia_id:
        saved = (await store.upsert(MOVEMENTS_TABLE, [row], MOVEMENT_KEY))[0]
    else:
        saved = (await store.insert(MOVEMENTS_TABLE, [row]))[0]
    logger.debug(
        "movement_registered",
        origem=movement.origem,
        referencia_id=movement.referencia_id,
        regime=row["regime"],
        valor=movement.valor,
    )
    return saved


async def remove_movement(store: DataStore, referencia_id: str, origem: str) -> int:
    removed = await store.delete(MOVEMENTS_TABLE, {"referencia_id": referencia_id, "origem": origem})
    if removed:
        logger.debug("movement_removed", origem=origem, referencia_id=referencia_id)
    return removed


def movement_for_transaction(
    transaction: Row,
    categoria: Optional[Row] = None,
    centro_custo: Optional[Row] = None,
) -> Optional[MovementInput]:
    """Ledger entry for a reconciled marketplace transaction; None when it has no value."""
    valor = transaction.get("valor_liquido")
    if not valor:
        valor = transaction.get("valor_bruto")
    valor = abs(Decimal(str(valor))) if valor else Decimal("0")
    if valor <= 0:
        return None
    credit = transaction.get("tipo_lancamento") == EntryDirection.CREDITO.value
    return MovementInput(
        data=transaction.get("data_transacao"),
        tipo=MovementDirection.ENTRADA.value if credit else MovementDirection.SAIDA.value,
        origem=MovementOrigin.MARKETPLACE.value,
        tipo_transacao=transaction.get("tipo_transacao"),
        descricao=transaction.get("descricao") or "Transação marketplace",
        valor=valor,
        empresa_id=transaction.get("empresa_id"),
        referencia_id=transaction["id"],
        categoria_id=categoria["id"] if categoria else transaction.get("categoria_id"),
        categoria_nome=categoria["nome"] if categoria else None,
        centro_custo_id=centro_custo["id"] if centro_custo else transaction.get("centro_custo_id"),
        centro_custo_nome=centro_custo.get("nome") if centro_custo else None,
        cliente_nome=transaction.get("conta_nome"),
        observacoes=f"{transaction.get('canal')} - pedido {transaction.get('pedido_id') or '-'}",
    )
