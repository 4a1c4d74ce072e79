"""
Pydantic transaction schemas for the reconciliation endpoints.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ReconcileRequest(BaseModel):
    categoria_id: Optional[str] = None
    centro_custo_id: Optional[str] = None
    validar_estoque: bool = True


class BatchReconcileRequest(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=500)
    categoria_id: Optional[str] = None
    centro_custo_id: Optional[str] = None


class TransactionResponse(BaseModel):
    """Single marketplace transaction in API response."""
    id: str
    empresa_id: str
    canal: str
    referencia_externa: Optional[str] = None
    pedido_id: Optional[str] = None
    data_transacao: date
    data_repasse: Optional[date] = None
    descricao: Optional[str] = None
    tipo_transacao: str
    tipo_lancamento: str
    valor_bruto: Optional[Decimal] = None
    valor_liquido: Optional[Decimal] = None
    comissao: Optional[Decimal] = None
    tarifa: Optional[Decimal] = None
    frete_vendedor: Optional[Decimal] = None
    frete_comprador: Optional[Decimal] = None
    ads: Optional[Decimal] = None
    imposto: Optional[Decimal] = None
    outros_descontos: Optional[Decimal] = None
    tipo_envio: Optional[str] = None
    status: str
    categoria_id: Optional[str] = None
    centro_custo_id: Optional[str] = None


class TransactionListResponse(BaseModel):
    """Paginated transaction list."""
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int
