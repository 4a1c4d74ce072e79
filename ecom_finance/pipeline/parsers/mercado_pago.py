"""
Mercado Pago report parser.

Two layouts share the channel:
- settlement/sales export (date_created, transaction_amount, net_received_amount...)
- billing report ("Data do movimento", "Valor da tarifa"), one fee per row
"""

from typing import Sequence

from ecom_finance.models.enums import EntryDirection, ReportType, TransactionType
from ecom_finance.pipeline.amount_parser import parse_number
from ecom_finance.pipeline.date_parser import parse_date
from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.header_mapper import (
    MERCADO_PAGO_ALIASES,
    AliasTable,
    ColumnMap,
    normalize_header,
    resolve_columns,
)
from ecom_finance.pipeline.parsers.base import (
    ReportParser,
    build_external_reference,
    classify_transaction_type,
    first_nonzero,
)
from ecom_finance.schemas.canonical import CandidateTransaction, ParseResult

DEFAULT_DESCRIPTION = "Transação MP"
BILLING_DEFAULT_DESCRIPTION = "Tarifa MP"

SKIPPED_STATUSES = ("pending", "cancelled", "rejected")
DEBIT_OPERATION_TERMS = ("refund", "chargeback", "estorno", "devolução", "devolucao")

BILLING_ALIASES: AliasTable = [
    ("data", ["data do movimento", "data movimento", "data", "fecha"]),
    ("detalhe", ["detalhe", "descrição", "descricao", "detail"]),
    ("valor_tarifa", ["valor da tarifa", "valor tarifa", "tarifa"]),
    ("valor_operacao", ["valor da operação", "valor operação", "valor operacao"]),
    ("tipo", ["tipo de operação", "tipo operação", "tipo operacao", "tipo"]),
    ("numero_movimento", ["número do movimento", "numero do movimento", "numero movimento"]),
    ("tarifa_estornada", ["tarifa estornada", "estornada"]),
]

HEADER_MARKERS = [
    "data de criação", "date_created", "transaction_amount", "valor da transação",
    "valor da tarifa", "data do movimento",
]


def is_billing_layout(headers: Sequence[str]) -> bool:
    normalized = [normalize_header(h) for h in headers]
    return any("valor da tarifa" in h or "data do movimento" in h for h in normalized)


class MercadoPagoParser(ReportParser):
    report_type = ReportType.MERCADO_PAGO
    aliases = MERCADO_PAGO_ALIASES
    header_markers = HEADER_MARKERS

    def __init__(self, canal: str):
        super().__init__(canal)
        self.billing = False
        self._billing_columns: ColumnMap = {}

    def validate_columns(self, columns: ColumnMap, headers: Sequence[str]) -> None:
        self.billing = is_billing_layout(headers)
        if self.billing:
            self._billing_columns = resolve_columns(headers, BILLING_ALIASES)
            if self._billing_columns["data"] < 0:
                raise FileValidationError("Relatório de faturamento MP sem coluna de data")
            return
        if columns["data"] < 0 or (columns["valor_bruto"] < 0 and columns["valor_liquido"] < 0):
            raise FileValidationError(
                "Formato não reconhecido do relatório Mercado Pago. "
                f"Headers: {', '.join(headers[:15])}"
            )

    def parse_row(
        self, row: Sequence[str], columns: ColumnMap, linha: int, result: ParseResult
    ) -> list[CandidateTransaction]:
        if self.billing:
            return self._parse_billing_row(row, result)
        return self._parse_sales_row(row, columns, result)

    def _parse_sales_row(self, row, columns: ColumnMap, result: ParseResult) -> list[CandidateTransaction]:
        stats = result.estatisticas
        bruto = parse_number(self.text(row, columns, "valor_bruto"))
        tarifa = abs(parse_number(self.text(row, columns, "tarifa")))
        liquido = parse_number(self.text(row, columns, "valor_liquido"))
        if not liquido and bruto:
            liquido = bruto - tarifa

        data = parse_date(self.text(row, columns, "data"))
        descricao = (
            self.text(row, columns, "descricao")
            or self.text(row, columns, "tipo")
            or DEFAULT_DESCRIPTION
        )
        if data is None and descricao == DEFAULT_DESCRIPTION and not bruto and not liquido:
            stats.total_linhas_vazias += 1
            return []
        if not bruto and not liquido:
            stats.total_com_valor_zero += 1

        status = self.text(row, columns, "status").lower()
        if any(s in status for s in SKIPPED_STATUSES) or data is None:
            stats.total_descartadas_por_formato += 1
            return []

        operacao = self.text(row, columns, "tipo").lower()
        is_debit = any(term in operacao for term in DEBIT_OPERATION_TERMS) or liquido < 0

        referencia_raw = self.text(row, columns, "referencia")
        pedido_id = self.text(row, columns, "pedido_id") or referencia_raw or None
        tipo_transacao, _ = classify_transaction_type(operacao or descricao, liquido)
        if is_debit and tipo_transacao in (TransactionType.VENDA.value, TransactionType.OUTRO.value):
            tipo_transacao = TransactionType.ESTORNO.value
        tipo_lancamento = EntryDirection.DEBITO.value if is_debit else EntryDirection.CREDITO.value

        referencia = build_external_reference(
            data.isoformat(), pedido_id, abs(liquido) or abs(bruto), descricao, referencia_raw or None
        )
        return [
            CandidateTransaction(
                canal=self.canal,
                referencia_externa=referencia,
                pedido_id=pedido_id,
                data_transacao=data,
                data_repasse=parse_date(self.text(row, columns, "data_repasse")),
                descricao=descricao,
                tipo_transacao=tipo_transacao,
                tipo_lancamento=tipo_lancamento,
                valor_bruto=abs(first_nonzero(bruto, liquido)),
                valor_liquido=abs(first_nonzero(liquido, bruto)),
                tarifa=tarifa if columns.get("tarifa", -1) >= 0 else None,
                origem_extrato="relatorio_mercado_pago",
            )
        ]

    def _parse_billing_row(self, row, result: ParseResult) -> list[CandidateTransaction]:
        stats = result.estatisticas
        columns = self._billing_columns
        data = parse_date(self.text(row, columns, "data"))
        detalhe = self.text(row, columns, "detalhe") or BILLING_DEFAULT_DESCRIPTION
        valor_tarifa = parse_number(self.text(row, columns, "valor_tarifa"))
        valor_operacao = parse_number(self.text(row, columns, "valor_operacao"))

        if data is None and detalhe == BILLING_DEFAULT_DESCRIPTION and not valor_tarifa and not valor_operacao:
            stats.total_linhas_vazias += 1
            return []
        if not valor_tarifa and not valor_operacao:
            stats.total_com_valor_zero += 1
        if data is None:
            stats.total_descartadas_por_formato += 1
            return []

        estornada = bool(self.text(row, columns, "tarifa_estornada"))
        movimento = self.text(row, columns, "numero_movimento") or None
        referencia = build_external_reference(
            data.isoformat(), movimento, valor_tarifa, detalhe, movimento
        )
        return [
            CandidateTransaction(
                canal=self.canal,
                referencia_externa=referencia,
                pedido_id=movimento,
                data_transacao=data,
                descricao=detalhe,
                tipo_transacao=(
                    TransactionType.ESTORNO.value if estornada
                    else TransactionType.TARIFA_MARKETPLACE.value
                ),
                tipo_lancamento=EntryDirection.CREDITO.value if estornada else EntryDirection.DEBITO.value,
                valor_bruto=abs(first_nonzero(valor_operacao, valor_tarifa)),
                valor_liquido=abs(valor_tarifa),
                tarifa=None if estornada else abs(valor_tarifa),
                origem_extrato="faturamento_mercado_pago",
            )
        ]

