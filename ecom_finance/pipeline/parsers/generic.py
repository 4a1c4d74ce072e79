"""
Fallback parser for channels without a dedicated layout.

Needs a date, a description and a value column; type and reference
columns are used when present.
"""

from typing import Sequence

from ecom_finance.models.enums import ReportType
from ecom_finance.pipeline.amount_parser import parse_amount_br, parse_number
from ecom_finance.pipeline.channel_detector import normalize_channel
from ecom_finance.pipeline.date_parser import parse_date
from ecom_finance.pipeline.errors import FileValidationError, RowParseError
from ecom_finance.pipeline.header_mapper import GENERIC_ALIASES, ColumnMap
from ecom_finance.pipeline.parsers.base import (
    ReportParser,
    build_external_reference,
    classify_transaction_type,
)
from ecom_finance.schemas.canonical import CandidateTransaction, ParseResult


class GenericParser(ReportParser):
    report_type = ReportType.GENERIC
    aliases = GENERIC_ALIASES

    def validate_columns(self, columns: ColumnMap, headers: Sequence[str]) -> None:
        missing = [f for f in ("data", "valor") if columns.get(f, -1) < 0]
        if missing:
            raise FileValidationError(
                f"Colunas obrigatórias não encontradas: {', '.join(missing)}. "
                f"Headers: {', '.join(headers[:15])}"
            )

    def parse_row(
        self, row: Sequence[str], columns: ColumnMap, linha: int, result: ParseResult
    ) -> list[CandidateTransaction]:
        data_raw = self.text(row, columns, "data")
        valor_raw = self.text(row, columns, "valor")
        descricao = self.text(row, columns, "descricao") or "Transação importada"

        data = parse_date(data_raw)
        if data is None:
            if not data_raw and not valor_raw:
                result.estatisticas.total_linhas_vazias += 1
                return []
            raise RowParseError(f"Data inválida: '{data_raw}'", linha)

        parsed = parse_amount_br(valor_raw)
        if not parsed.valid:
            raise RowParseError(f"Valor inválido: '{valor_raw}'", linha)
        valor = parsed.amount
        if not valor:
            result.estatisticas.total_com_valor_zero += 1

        tipo_raw = self.text(row, columns, "tipo")
        tipo_transacao, tipo_lancamento = classify_transaction_type(tipo_raw or descricao, valor)
        pedido_id = self.text(row, columns, "pedido_id") or None
        canal = self.canal
        loja = self.text(row, columns, "canal")
        if loja and canal == "outro":
            canal = normalize_channel(loja)

        bruto_raw = self.text(row, columns, "valor_bruto")
        bruto = abs(parse_number(bruto_raw)) if bruto_raw else abs(valor)
        return [
            CandidateTransaction(
                canal=canal,
                referencia_externa=build_external_reference(
                    data.isoformat(), pedido_id, valor, descricao,
                    self.text(row, columns, "referencia") or None,
                ),
                pedido_id=pedido_id,
                data_transacao=data,
                descricao=descricao,
                tipo_transacao=tipo_transacao,
                tipo_lancamento=tipo_lancamento,
                valor_bruto=bruto,
                valor_liquido=abs(valor),
                conta_nome=loja or None,
                origem_extrato="relatorio_generico",
            )
        ]
