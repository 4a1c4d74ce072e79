"""
Canonical candidate schemas.
These are the normalized records every parser and the marketplace sync produce,
before deduplication and persistence.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class CandidateItem(BaseModel):
    """One product line of a sale."""
    sku_marketplace: Optional[str] = None
    anuncio_id: Optional[str] = None
    variacao_id: Optional[str] = None
    descricao_item: str
    quantidade: int = 1
    preco_unitario: Optional[Decimal] = None
    preco_total: Optional[Decimal] = None
    produto_id: Optional[str] = None
    sku_id: Optional[str] = None
    pedido_id: Optional[str] = None         # grouping key while parsing
    loja: Optional[str] = None
    linha_origem: Optional[int] = None

    @field_validator("quantidade", mode="before")
    @classmethod
    def _at_least_one(cls, value: Any) -> int:
        try:
            return max(1, int(float(str(value).replace(",", "."))))
        except (TypeError, ValueError):
            return 1

    def to_row(self, transaction_id: str, empresa_id: str, canal: str) -> dict:
        return {
            "transaction_id": transaction_id,
            "empresa_id": empresa_id,
            "canal": canal,
            "sku_marketplace": self.sku_marketplace,
            "anuncio_id": self.anuncio_id,
            "variacao_id": self.variacao_id,
            "descricao_item": self.descricao_item,
            "quantidade": self.quantidade,
            "preco_unitario": self.preco_unitario,
            "preco_total": self.preco_total,
            "produto_id": self.produto_id,
            "sku_id": self.sku_id,
        }


class CandidateTransaction(BaseModel):
    """One sales-channel event (sale, payout, fee) ready for dedupe/merge."""
    canal: str
    referencia_externa: str
    pedido_id: Optional[str] = None
    data_transacao: date
    data_repasse: Optional[date] = None
    descricao: str
    tipo_transacao: str
    tipo_lancamento: str                    # credito, debito
    valor_bruto: Optional[Decimal] = None
    valor_liquido: Optional[Decimal] = None
    # Complementary fields: None means "not present in this report"
    comissao: Optional[Decimal] = None
    tarifa: Optional[Decimal] = None
    frete_vendedor: Optional[Decimal] = None
    frete_comprador: Optional[Decimal] = None
    ads: Optional[Decimal] = None
    imposto: Optional[Decimal] = None
    outros_descontos: Optional[Decimal] = None
    conta_nome: Optional[str] = None
    tipo_envio: Optional[str] = None
    status: str = "importado"
    origem_extrato: Optional[str] = None
    linha_origem: Optional[int] = None
    itens: list[CandidateItem] = Field(default_factory=list)

    def natural_key(self) -> tuple:
        return (self.canal, self.referencia_externa, self.tipo_transacao, self.tipo_lancamento)

    def to_row(self, empresa_id: str, import_job_id: Optional[str] = None) -> dict:
        row = self.model_dump(exclude={"itens"})
        row["empresa_id"] = empresa_id
        row["import_job_id"] = import_job_id
        return row


class RowError(BaseModel):
    linha: Optional[int] = None
    mensagem: str


class ParseStats(BaseModel):
    total_linhas_arquivo: int = 0
    total_transacoes_geradas: int = 0
    total_com_valor_zero: int = 0
    total_descartadas_por_formato: int = 0
    total_linhas_vazias: int = 0
    total_com_itens: int = 0


class ParseResult(BaseModel):
    report_type: str
    canal: str
    header_row: int = 0
    transacoes: list[CandidateTransaction] = Field(default_factory=list)
    erros: list[RowError] = Field(default_factory=list)
    estatisticas: ParseStats = Field(default_factory=ParseStats)
    granularidade: str = "transacao"        # transacao, item
    warnings: list[str] = Field(default_factory=list)

    def add_error(self, linha: Optional[int], mensagem: str) -> None:
        self.erros.append(RowError(linha=linha, mensagem=mensagem))
