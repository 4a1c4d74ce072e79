"""
Mercado Livre fee/sales report ("Relatório de tarifas") parser.
"""

from decimal import Decimal
from typing import Sequence

from ecom_finance.models.enums import ReportType, TransactionType
from ecom_finance.pipeline.amount_parser import parse_number, parse_optional_number
from ecom_finance.pipeline.date_parser import normalize_date, parse_date
from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.header_mapper import (
    MERCADO_LIVRE_ALIASES,
    MERCADO_LIVRE_FEE_ALIASES,
    MERCADO_LIVRE_HEADER_MARKERS,
    ColumnMap,
)
from ecom_finance.pipeline.parsers.base import (
    ReportParser,
    abs_or_none,
    build_external_reference,
    classify_transaction_type,
    first_nonzero,
)
from ecom_finance.pipeline.sku_mapping import extract_listing_id
from ecom_finance.schemas.canonical import CandidateItem, CandidateTransaction, ParseResult

DEFAULT_DESCRIPTION = "Transação ML"


class MercadoLivreParser(ReportParser):
    report_type = ReportType.MERCADO_LIVRE
    aliases = MERCADO_LIVRE_ALIASES
    fee_aliases = MERCADO_LIVRE_FEE_ALIASES
    header_markers = MERCADO_LIVRE_HEADER_MARKERS
    builds_items = True

    def validate_columns(self, columns: ColumnMap, headers: Sequence[str]) -> None:
        if columns["data"] < 0 or columns["valor_liquido"] < 0:
            raise FileValidationError(
                "Formato inesperado do relatório ML. "
                f"Colunas encontradas: data={columns['data']}, liquido={columns['valor_liquido']}. "
                f"Headers: {', '.join(headers[:10])}"
            )

    def parse_row(
        self, row: Sequence[str], columns: ColumnMap, linha: int, result: ParseResult
    ) -> list[CandidateTransaction]:
        stats = result.estatisticas
        data_raw = self.text(row, columns, "data")
        tipo_raw = self.text(row, columns, "tipo")
        bruto = parse_number(self.text(row, columns, "valor_bruto"))
        liquido = parse_number(self.text(row, columns, "valor_liquido"))
        data = parse_date(data_raw)

        if data is None and not tipo_raw and not bruto and not liquido:
            stats.total_linhas_vazias += 1
            return []
        if not bruto and not liquido:
            stats.total_com_valor_zero += 1
        if data is None:
            stats.total_descartadas_por_formato += 1
            return []

        if tipo_raw:
            descricao = tipo_raw
        elif self.text(row, columns, "valor_bruto"):
            descricao = f"Tarifa: R$ {bruto:.2f}"
        else:
            descricao = DEFAULT_DESCRIPTION

        id_unico = (
            self.text(row, columns, "id_tarifa")
            or self.text(row, columns, "id_transacao")
            or self.text(row, columns, "id_interno")
        )
        pedido_id = self.text(row, columns, "pedido_id") or None

        valor = liquido if liquido else bruto
        tipo_transacao, tipo_lancamento = classify_transaction_type(descricao, liquido)
        referencia = build_external_reference(
            normalize_date(data), pedido_id, valor, descricao, id_unico or None
        )

        comissao = abs_or_none(parse_optional_number(self.text(row, columns, "comissao")))
        tarifa = abs_or_none(parse_optional_number(self.text(row, columns, "tarifa")))
        frete = abs_or_none(parse_optional_number(self.text(row, columns, "frete_vendedor")))
        desconto = abs_or_none(parse_optional_number(self.text(row, columns, "desconto")))
        ads = abs_or_none(parse_optional_number(self.text(row, columns, "ads")))
        imposto = abs_or_none(parse_optional_number(self.text(row, columns, "imposto")))

        candidate = CandidateTransaction(
            canal=self.canal,
            referencia_externa=referencia,
            pedido_id=pedido_id,
            data_transacao=data,
            descricao=descricao,
            tipo_transacao=tipo_transacao,
            tipo_lancamento=tipo_lancamento,
            valor_bruto=abs(first_nonzero(bruto, liquido)),
            valor_liquido=abs(first_nonzero(liquido, bruto)),
            comissao=comissao,
            tarifa=tarifa,
            frete_vendedor=frete,
            ads=ads,
            imposto=imposto,
            outros_descontos=desconto,
            conta_nome=self.text(row, columns, "conta_nome") or self.text(row, columns, "canal_vendas") or None,
            tipo_envio=self.text(row, columns, "tipo_envio") or None,
            origem_extrato="relatorio_mercado_livre",
        )

        item = self._item(row, columns, descricao, tipo_transacao)
        if item is not None:
            item.pedido_id = pedido_id
            candidate.itens.append(item)
        return [candidate]

    def _item(self, row, columns: ColumnMap, descricao: str, tipo_transacao: str):
        listing = self.text(row, columns, "anuncio_id")
        nome = self.text(row, columns, "nome_item")
        is_sale = tipo_transacao == TransactionType.VENDA.value or "venda" in descricao.lower()
        if not (listing or nome) or not is_sale:
            return None

        unit = parse_optional_number(self.text(row, columns, "preco_unitario"))
        total = parse_optional_number(self.text(row, columns, "preco_total"))
        item = CandidateItem(
            sku_marketplace=listing or None,
            anuncio_id=extract_listing_id(listing) if listing else None,
            descricao_item=nome or descricao,
            quantidade=self.text(row, columns, "quantidade") or 1,
        )
        item.preco_unitario = unit
        if total:
            item.preco_total = total
        elif unit is not None:
            item.preco_total = unit * Decimal(item.quantidade)
        return item
