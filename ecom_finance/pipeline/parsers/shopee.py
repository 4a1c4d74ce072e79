"""
Shopee order/income report parser.
"""

from decimal import Decimal
from typing import Sequence

from ecom_finance.models.enums import EntryDirection, ReportType, TransactionType
from ecom_finance.pipeline.amount_parser import parse_number, parse_optional_number
from ecom_finance.pipeline.date_parser import parse_date
from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.header_mapper import SHOPEE_ALIASES, ColumnMap
from ecom_finance.pipeline.parsers.base import (
    ReportParser,
    abs_or_none,
    build_external_reference,
    classify_transaction_type,
    first_nonzero,
)
from ecom_finance.schemas.canonical import CandidateTransaction, ParseResult

DEFAULT_DESCRIPTION = "Transação Shopee"
DEBIT_TYPE_TERMS = ("refund", "cancel", "estorno", "devolução", "devolucao", "return", "taxa", "fee")


class ShopeeParser(ReportParser):
    report_type = ReportType.SHOPEE
    aliases = SHOPEE_ALIASES

    def validate_columns(self, columns: ColumnMap, headers: Sequence[str]) -> None:
        if columns["data"] < 0 and columns["data_repasse"] < 0:
            raise FileValidationError(
                "Formato não reconhecido do relatório Shopee. Nenhuma coluna de data encontrada. "
                f"Headers: {', '.join(headers[:15])}"
            )

    def _fee(self, row, columns: ColumnMap, field: str):
        return abs_or_none(parse_optional_number(self.text(row, columns, field)))

    def parse_row(
        self, row: Sequence[str], columns: ColumnMap, linha: int, result: ParseResult
    ) -> list[CandidateTransaction]:
        stats = result.estatisticas
        data = parse_date(self.text(row, columns, "data")) or parse_date(self.text(row, columns, "data_repasse"))
        data_repasse = parse_date(self.text(row, columns, "data_repasse"))

        valor_total = parse_number(self.text(row, columns, "valor_total"))
        valor_produto = parse_number(self.text(row, columns, "valor_produto"))
        comissao = self._fee(row, columns, "comissao")
        taxa_transacao = self._fee(row, columns, "taxa_transacao")
        taxa_servico = self._fee(row, columns, "taxa_servico")
        frete = self._fee(row, columns, "frete_vendedor")
        descontos = self._fee(row, columns, "descontos")
        liquido = parse_number(self.text(row, columns, "valor_liquido"))

        taxas = sum((f for f in (comissao, taxa_transacao, taxa_servico) if f is not None), Decimal("0"))
        if not liquido and (valor_total or valor_produto):
            liquido = (
                first_nonzero(valor_total, valor_produto) - taxas
                - (frete or Decimal("0")) + (descontos or Decimal("0"))
            )

        descricao = (
            self.text(row, columns, "tipo")
            or self.text(row, columns, "descricao")
            or self.text(row, columns, "nome_produto")
            or DEFAULT_DESCRIPTION
        )
        has_value = bool(valor_total or liquido or valor_produto)
        if data is None and descricao == DEFAULT_DESCRIPTION and not has_value:
            stats.total_linhas_vazias += 1
            return []
        if not has_value:
            stats.total_com_valor_zero += 1
        if data is None:
            stats.total_descartadas_por_formato += 1
            return []

        pedido_id = self.text(row, columns, "pedido_id") or None
        id_transacao = self.text(row, columns, "id_transacao") or None
        tipo_raw = self.text(row, columns, "tipo").lower()
        is_debit = any(term in tipo_raw for term in DEBIT_TYPE_TERMS) or liquido < 0

        if tipo_raw:
            tipo_transacao, _ = classify_transaction_type(tipo_raw, liquido)
            if tipo_transacao == TransactionType.OUTRO.value and not is_debit:
                tipo_transacao = TransactionType.VENDA.value
        else:
            tipo_transacao = TransactionType.VENDA.value
        tipo_lancamento = EntryDirection.DEBITO.value if is_debit else EntryDirection.CREDITO.value

        referencia = build_external_reference(
            data.isoformat(),
            pedido_id,
            abs(first_nonzero(liquido, valor_total, valor_produto)),
            descricao,
            id_transacao or pedido_id,
        )
        return [
            CandidateTransaction(
                canal=self.canal,
                referencia_externa=referencia,
                pedido_id=pedido_id,
                data_transacao=data,
                data_repasse=data_repasse,
                descricao=descricao,
                tipo_transacao=tipo_transacao,
                tipo_lancamento=tipo_lancamento,
                valor_bruto=abs(first_nonzero(valor_total, valor_produto, liquido)),
                valor_liquido=abs(first_nonzero(liquido, valor_total, valor_produto)),
                comissao=comissao,
                tarifa=(
                    (taxa_transacao or Decimal("0")) + (taxa_servico or Decimal("0"))
                    if taxa_transacao is not None or taxa_servico is not None else None
                ),
                frete_vendedor=frete,
                outros_descontos=descontos,
                origem_extrato="relatorio_shopee",
            )
        ]
