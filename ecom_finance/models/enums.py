"""
Python enums matching the values stored in the hosted database.
Values MUST match the existing rows exactly (Portuguese, lower snake case).
"""

from enum import Enum


class Channel(str, Enum):
    MERCADO_LIVRE = "mercado_livre"
    MERCADO_PAGO = "mercado_pago"
    SHOPEE = "shopee"
    SHEIN = "shein"
    TIKTOK_SHOP = "tiktok_shop"
    AMAZON = "amazon"
    MAGALU = "magalu"
    OUTRO = "outro"


class ReportType(str, Enum):
    """Layout family of an uploaded marketplace report."""
    MERCADO_LIVRE = "mercado_livre"
    MERCADO_PAGO = "mercado_pago"
    SHOPEE = "shopee"
    GENERIC = "generic"


class TxStatus(str, Enum):
    IMPORTADO = "importado"
    PENDENTE = "pendente"
    PENDENTE_SYNC = "pendente_sync"
    CONCILIADO = "conciliado"
    IGNORADO = "ignorado"


class EntryDirection(str, Enum):
    CREDITO = "credito"
    DEBITO = "debito"


class TransactionType(str, Enum):
    VENDA = "venda"
    REPASSE = "repasse"
    TARIFA_MARKETPLACE = "tarifa_marketplace"
    FRETE_MARKETPLACE = "frete_marketplace"
    ADS = "ads"
    ESTORNO = "estorno"
    ANTECIPACAO = "antecipacao"
    TAXA_PARCELAMENTO = "taxa_parcelamento"
    OUTRO = "outro"


class Regime(str, Enum):
    COMPETENCIA = "competencia"
    CAIXA = "caixa"


class MovementOrigin(str, Enum):
    MANUAL = "manual"
    BANCO = "banco"
    CARTAO = "cartao"
    CONTAS_PAGAR = "contas_pagar"
    CONTAS_RECEBER = "contas_receber"
    MARKETPLACE = "marketplace"


class MovementDirection(str, Enum):
    ENTRADA = "entrada"
    SAIDA = "saida"


class ImportJobStatus(str, Enum):
    PROCESSANDO = "processando"
    CONCLUIDO = "concluido"
    ERRO = "erro"


class SkuMappingStatus(str, Enum):
    PENDENTE = "pendente"
    AUTO = "auto"
    CONFIRMADO = "confirmado"


class ReceivableStatus(str, Enum):
    EM_ABERTO = "em_aberto"
    PARCIALMENTE_RECEBIDO = "parcialmente_recebido"
    RECEBIDO = "recebido"
    VENCIDO = "vencido"
    CANCELADO = "cancelado"


class IntegrationLogStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class CategoryType(str, Enum):
    """DRE line a category rolls up to."""
    RECEITAS = "Receitas"
    DEDUCOES = "Deduções"
    CUSTOS = "Custos"
    DESPESAS_OPERACIONAIS = "Despesas Operacionais"
    DESPESAS_PESSOAL = "Despesas com Pessoal"
    DESPESAS_ADMINISTRATIVAS = "Despesas Administrativas"
    DESPESAS_COMERCIAIS = "Despesas Comerciais / Marketing"
    DESPESAS_FINANCEIRAS = "Despesas Financeiras"
    IMPOSTOS = "Impostos"
    OUTRAS = "Outras Receitas / Despesas"
