"""
SQLAlchemy ORM models.
Table and column names mirror the hosted database schema exactly; ids are
stored as UUIDs but handled as strings throughout the application.
"""

import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    Text,
    ForeignKey,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ecom_finance.models.database import Base


def _uuid_pk():
    return mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()),
        server_default=text("gen_random_uuid()")
    )


def _created_at():
    return mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )


def _money(nullable: bool = True):
    return mapped_column(Numeric(15, 2), nullable=nullable)


# ────────────────────────────────────────────────────────────
# MARKETPLACE TRANSACTIONS
# ────────────────────────────────────────────────────────────
class MarketplaceTransaction(Base):
    __tablename__ = "marketplace_transactions"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    canal: Mapped[str] = mapped_column(Text, nullable=False)
    referencia_externa: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pedido_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    data_transacao: Mapped[date] = mapped_column(Date, nullable=False)
    data_repasse: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    descricao: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tipo_transacao: Mapped[str] = mapped_column(Text, nullable=False)
    tipo_lancamento: Mapped[str] = mapped_column(Text, nullable=False)
    valor_bruto: Mapped[Optional[Decimal]] = _money()
    valor_liquido: Mapped[Optional[Decimal]] = _money()
    # Fee breakdown; NULL means "not reported yet", never zero-filled
    comissao: Mapped[Optional[Decimal]] = _money()
    tarifa: Mapped[Optional[Decimal]] = _money()
    frete_vendedor: Mapped[Optional[Decimal]] = _money()
    frete_comprador: Mapped[Optional[Decimal]] = _money()
    ads: Mapped[Optional[Decimal]] = _money()
    imposto: Mapped[Optional[Decimal]] = _money()
    outros_descontos: Mapped[Optional[Decimal]] = _money()
    conta_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tipo_envio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="importado", server_default="importado"
    )
    categoria_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    centro_custo_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    origem_extrato: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    import_job_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    linha_origem: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    criado_em: Mapped[datetime] = _created_at()
    atualizado_em: Mapped[datetime] = _created_at()

    itens = relationship(
        "MarketplaceTransactionItem", back_populates="transacao", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "empresa_id", "canal", "referencia_externa", "tipo_transacao", "tipo_lancamento",
            name="uq_mkt_tx_key",
        ),
        Index("idx_mkt_tx_empresa_data", "empresa_id", "data_transacao"),
        Index("idx_mkt_tx_pedido", "empresa_id", "pedido_id"),
        Index("idx_mkt_tx_status", "status"),
    )


class MarketplaceTransactionItem(Base):
    __tablename__ = "marketplace_transaction_items"

    id: Mapped[str] = _uuid_pk()
    transaction_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("marketplace_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Denormalised so retroactive SKU mapping can target items directly
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    canal: Mapped[str] = mapped_column(Text, nullable=False)
    sku_marketplace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    anuncio_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    variacao_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    descricao_item: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantidade: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    preco_unitario: Mapped[Optional[Decimal]] = _money()
    preco_total: Mapped[Optional[Decimal]] = _money()
    produto_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    sku_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    criado_em: Mapped[datetime] = _created_at()

    transacao = relationship("MarketplaceTransaction", back_populates="itens")

    __table_args__ = (
        Index("idx_mkt_items_tx", "transaction_id"),
        Index("idx_mkt_items_sku", "empresa_id", "canal", "sku_marketplace"),
    )


# ────────────────────────────────────────────────────────────
# PRODUCTS & SKU MAPPING
# ────────────────────────────────────────────────────────────
class Produto(Base):
    __tablename__ = "produtos"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    nome: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custo_medio: Mapped[Decimal] = mapped_column(
        Numeric(15, 4), nullable=False, default=0, server_default="0"
    )
    estoque_atual: Mapped[Decimal] = mapped_column(
        Numeric(15, 3), nullable=False, default=0, server_default="0"
    )
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    criado_em: Mapped[datetime] = _created_at()


class ProdutoSku(Base):
    __tablename__ = "produto_skus"

    id: Mapped[str] = _uuid_pk()
    produto_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("produtos.id", ondelete="CASCADE"), nullable=False
    )
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    codigo_sku: Mapped[str] = mapped_column(Text, nullable=False)
    variacao: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custo_medio: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 4), nullable=True)
    estoque_atual: Mapped[Decimal] = mapped_column(
        Numeric(15, 3), nullable=False, default=0, server_default="0"
    )
    criado_em: Mapped[datetime] = _created_at()


class ProdutoMarketplaceMap(Base):
    __tablename__ = "produto_marketplace_map"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    canal: Mapped[str] = mapped_column(Text, nullable=False)
    sku_marketplace: Mapped[str] = mapped_column(Text, nullable=False)
    anuncio_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    variacao_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    produto_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    sku_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    sku_interno: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rotulo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pendente", server_default="pendente")
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    criado_em: Mapped[datetime] = _created_at()
    atualizado_em: Mapped[datetime] = _created_at()

    __table_args__ = (
        UniqueConstraint("empresa_id", "canal", "sku_marketplace", name="uq_sku_map_key"),
        Index("idx_sku_map_status", "empresa_id", "status"),
    )


# ────────────────────────────────────────────────────────────
# CMV
# ────────────────────────────────────────────────────────────
class CmvRegistro(Base):
    __tablename__ = "cmv_registros"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    produto_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    data: Mapped[date] = mapped_column(Date, nullable=False)
    origem: Mapped[str] = mapped_column(Text, nullable=False)
    canal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantidade: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)
    custo_unitario: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)
    custo_total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    preco_venda_unitario: Mapped[Optional[Decimal]] = _money()
    receita_total: Mapped[Optional[Decimal]] = _money()
    margem_bruta: Mapped[Optional[Decimal]] = _money()
    margem_percentual: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 2), nullable=True)
    referencia_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    observacoes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criado_em: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_cmv_referencia", "referencia_id"),
        Index("idx_cmv_empresa_data", "empresa_id", "data"),
    )


# ────────────────────────────────────────────────────────────
# FINANCIAL MOVEMENTS (hub ledger)
# ────────────────────────────────────────────────────────────
class MovimentoFinanceiro(Base):
    __tablename__ = "movimentos_financeiros"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    data: Mapped[date] = mapped_column(Date, nullable=False)
    tipo: Mapped[str] = mapped_column(Text, nullable=False)
    origem: Mapped[str] = mapped_column(Text, nullable=False)
    tipo_transacao: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    regime: Mapped[str] = mapped_column(Text, nullable=False)
    descricao: Mapped[str] = mapped_column(Text, nullable=False)
    valor: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    referencia_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    categoria_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    categoria_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    centro_custo_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    centro_custo_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responsavel_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    forma_pagamento: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cliente_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fornecedor_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    observacoes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criado_em: Mapped[datetime] = _created_at()

    __table_args__ = (
        UniqueConstraint("referencia_id", "origem", name="uq_movimento_ref_origem"),
        Index("idx_movimentos_empresa_data", "empresa_id", "data"),
        Index("idx_movimentos_regime", "empresa_id", "regime"),
    )


class Categoria(Base):
    __tablename__ = "categorias"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    nome: Mapped[str] = mapped_column(Text, nullable=False)
    tipo: Mapped[str] = mapped_column(Text, nullable=False)
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


# ────────────────────────────────────────────────────────────
# IMPORT JOBS
# ────────────────────────────────────────────────────────────
class MarketplaceImportJob(Base):
    __tablename__ = "marketplace_import_jobs"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    canal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    arquivo_nome: Mapped[str] = mapped_column(Text, nullable=False)
    total_linhas: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    linhas_processadas: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    linhas_importadas: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    linhas_duplicadas: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    linhas_com_erro: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="processando", server_default="processando"
    )
    mensagem_erro: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criado_em: Mapped[datetime] = _created_at()
    atualizado_em: Mapped[datetime] = _created_at()
    finalizado_em: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_import_jobs_empresa", "empresa_id", "criado_em"),
    )


# ────────────────────────────────────────────────────────────
# INTEGRATIONS
# ────────────────────────────────────────────────────────────
class IntegracaoToken(Base):
    __tablename__ = "integracao_tokens"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id_provider: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criado_em: Mapped[datetime] = _created_at()
    atualizado_em: Mapped[datetime] = _created_at()

    __table_args__ = (
        UniqueConstraint("empresa_id", "provider", name="uq_integracao_token"),
        Index("idx_integracao_user", "provider", "user_id_provider"),
    )


class IntegracaoLog(Base):
    __tablename__ = "integracao_logs"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    tipo: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    mensagem: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detalhes: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    registros_processados: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    registros_criados: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    registros_atualizados: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    registros_erro: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    duracao_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    criado_em: Mapped[datetime] = _created_at()


# ────────────────────────────────────────────────────────────
# ACCOUNTS RECEIVABLE
# ────────────────────────────────────────────────────────────
class ContaReceber(Base):
    __tablename__ = "contas_receber"

    id: Mapped[str] = _uuid_pk()
    empresa_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    cliente_nome: Mapped[str] = mapped_column(Text, nullable=False)
    descricao: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    documento: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    origem: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    data_emissao: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    data_vencimento: Mapped[date] = mapped_column(Date, nullable=False)
    data_recebimento: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valor_total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    valor_recebido: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=0, server_default="0")
    valor_em_aberto: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="em_aberto", server_default="em_aberto")
    categoria_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    centro_custo_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    empresa_nome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_contas_receber_venc", "empresa_id", "data_vencimento"),
    )


# Table name → model, used by the generic data-access layer
TABLES = {
    model.__tablename__: model
    for model in (
        MarketplaceTransaction,
        MarketplaceTransactionItem,
        Produto,
        ProdutoSku,
        ProdutoMarketplaceMap,
        CmvRegistro,
        MovimentoFinanceiro,
        Categoria,
        MarketplaceImportJob,
        IntegracaoToken,
        IntegracaoLog,
        ContaReceber,
    )
}

# Natural keys enforced by unique constraints, by table name
UNIQUE_KEYS = {
    "marketplace_transactions": (
        "empresa_id", "canal", "referencia_externa", "tipo_transacao", "tipo_lancamento",
    ),
    "produto_marketplace_map": ("empresa_id", "canal", "sku_marketplace"),
    "movimentos_financeiros": ("referencia_id", "origem"),
    "integracao_tokens": ("empresa_id", "provider"),
}
