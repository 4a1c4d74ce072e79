"""
Shared machinery for per-channel report parsers.

Each parser turns string rows (header included) into candidate transactions.
Row problems are accumulated on the ParseResult; only a structurally
unusable file raises FileValidationError.
"""

import re
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

import structlog

from ecom_finance.config import settings
from ecom_finance.models.enums import EntryDirection, ReportType, TransactionType
from ecom_finance.pipeline.errors import RowParseError
from ecom_finance.pipeline.parsers.items import attach_items, parse_items
from ecom_finance.pipeline.header_mapper import (
    AliasTable,
    ColumnMap,
    cell,
    find_header_row,
    has_item_columns,
    resolve_columns,
)
from ecom_finance.schemas.canonical import CandidateTransaction, ParseResult

logger = structlog.get_logger(__name__)

MAX_REFERENCE_LENGTH = 150
MAX_REFERENCE_DESCRIPTION = 80

# First match wins. Payout terms come before sale terms so that
# "Liberação de dinheiro de venda" is a payout, not a sale.
TRANSACTION_TYPE_RULES: list[tuple[TransactionType, Optional[EntryDirection], list[str]]] = [
    (TransactionType.REPASSE, EntryDirection.CREDITO,
     ["liberação", "liberacao", "repasse", "saque", "transferência", "transferencia", "retirada"]),
    (TransactionType.VENDA, EntryDirection.CREDITO, ["venda", "pagamento", "payment", "sale"]),
    (TransactionType.TAXA_PARCELAMENTO, EntryDirection.DEBITO, ["juros", "parcelamento"]),
    (TransactionType.TARIFA_MARKETPLACE, EntryDirection.DEBITO,
     ["tarifa", "comissão", "comissao", "custo por vender", "fee", "taxa"]),
    (TransactionType.FRETE_MARKETPLACE, EntryDirection.DEBITO, ["envio", "frete", "full", "shipping"]),
    (TransactionType.ADS, EntryDirection.DEBITO, ["publicidade", "ads", "anúncio", "anuncio"]),
    (TransactionType.ESTORNO, EntryDirection.DEBITO,
     ["estorno", "devolução", "devolucao", "cancelamento", "refund", "chargeback"]),
    (TransactionType.ANTECIPACAO, EntryDirection.DEBITO, ["antecipação", "antecipacao"]),
]


def classify_transaction_type(text: str, amount: Optional[Decimal] = None) -> tuple[str, str]:
    """(tipo_transacao, tipo_lancamento) from a description or type label."""
    normalized = (text or "").lower()
    for tx_type, direction, terms in TRANSACTION_TYPE_RULES:
        if any(term in normalized for term in terms):
            if tx_type == TransactionType.REPASSE and amount is not None and amount < 0:
                return tx_type.value, EntryDirection.DEBITO.value
            return tx_type.value, direction.value
    sign = EntryDirection.DEBITO if amount is not None and amount < 0 else EntryDirection.CREDITO
    return TransactionType.OUTRO.value, sign.value


def build_external_reference(
    data: Optional[str],
    pedido: Optional[str],
    valor: Any,
    descricao: Optional[str],
    id_unico: Optional[str] = None,
) -> str:
    """
    Stable reference for the natural key.
    A report-native unique id wins; otherwise date_order_value_description.
    """
    if id_unico and str(id_unico).strip():
        return str(id_unico).strip()[:MAX_REFERENCE_LENGTH]

    value = valor if valor not in (None, "") else 0
    if isinstance(value, Decimal):
        value = value.normalize() if value != 0 else Decimal(0)
        value = format(value, "f")
    parts = [
        str(data or "").strip(),
        str(pedido or "").strip(),
        str(value),
        str(descricao or "").strip()[:MAX_REFERENCE_DESCRIPTION],
    ]
    return "_".join(re.sub(r"\s+", " ", p).strip() for p in parts)[:MAX_REFERENCE_LENGTH]


def abs_or_none(value: Optional[Decimal]) -> Optional[Decimal]:
    return abs(value) if value is not None else None


def first_nonzero(*values: Optional[Decimal]) -> Decimal:
    for value in values:
        if value:
            return value
    return Decimal("0")


class ReportParser(ABC):
    """Strategy for one report layout."""

    report_type: ReportType = ReportType.GENERIC
    aliases: AliasTable = []
    fee_aliases: AliasTable = []
    header_markers: list[str] = []
    # Parsers that build their own items from the transaction row
    builds_items: bool = False

    def __init__(self, canal: str):
        self.canal = canal

    # ── Hooks ────────────────────────────────────────────────

    def validate_columns(self, columns: ColumnMap, headers: Sequence[str]) -> None:
        """Raise FileValidationError when required columns are missing."""

    @abstractmethod
    def parse_row(
        self, row: Sequence[str], columns: ColumnMap, linha: int, result: ParseResult
    ) -> list[CandidateTransaction]:
        """Candidates for one data row; [] to skip (stats updated by the parser)."""

    # ── Template ─────────────────────────────────────────────

    def locate_header(self, rows: Sequence[Sequence[str]]) -> int:
        return find_header_row(rows, self.header_markers, settings.HEADER_SEARCH_ROWS)

    def parse(self, rows: Sequence[Sequence[str]]) -> ParseResult:
        result = ParseResult(report_type=self.report_type.value, canal=self.canal)
        if not rows:
            return result

        header_idx = self.locate_header(rows)
        headers = [str(h) for h in rows[header_idx]]
        data_rows = list(rows[header_idx + 1:])
        sample = next((r for r in data_rows if any(r)), None)
        columns = resolve_columns(headers, self.aliases, self.fee_aliases, sample)
        logger.info(
            "report_columns_resolved",
            report_type=self.report_type.value,
            header_row=header_idx,
            found={k: v for k, v in columns.items() if v >= 0},
        )
        self.validate_columns(columns, headers)

        result.header_row = header_idx
        result.estatisticas.total_linhas_arquivo = len(data_rows)
        for offset, row in enumerate(data_rows):
            # 1-based line number in the original file
            linha = header_idx + offset + 2
            if not any(str(c).strip() for c in row):
                result.estatisticas.total_linhas_vazias += 1
                continue
            try:
                candidates = self.parse_row(row, columns, linha, result)
            except (RowParseError, ValueError, ArithmeticError) as exc:
                message = exc.message if isinstance(exc, RowParseError) else str(exc)
                logger.warning("row_parse_failed", linha=linha, error=message)
                result.add_error(linha, message)
                continue
            for candidate in candidates:
                candidate.linha_origem = linha
            result.transacoes.extend(candidates)

        if not self.builds_items and has_item_columns(headers):
            items = parse_items(rows[header_idx:], self.report_type)
            attach_items(result.transacoes, items)
            result.granularidade = "item"
        elif any(t.itens for t in result.transacoes):
            result.granularidade = "item"

        result.estatisticas.total_transacoes_geradas = len(result.transacoes)
        result.estatisticas.total_com_itens = sum(1 for t in result.transacoes if t.itens)
        logger.info(
            "report_parsed",
            report_type=self.report_type.value,
            **result.estatisticas.model_dump(),
            errors=len(result.erros),
        )
        return result

    # ── Helpers ──────────────────────────────────────────────

    @staticmethod
    def text(row: Sequence[str], columns: ColumnMap, field: str) -> str:
        return cell(row, columns.get(field, -1))

    @staticmethod
    def iso(value: Optional[date]) -> str:
        return value.isoformat() if value else ""
