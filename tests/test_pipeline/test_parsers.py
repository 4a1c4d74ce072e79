"""
Tests for the per-channel report parsers.
"""

from datetime import date
from decimal import Decimal

import pytest

from ecom_finance.models.enums import ReportType
from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.file_reader import read_table
from ecom_finance.pipeline.parsers.base import build_external_reference, classify_transaction_type
from ecom_finance.pipeline.parsers.registry import get_parser
from tests.conftest import ml_report


def _parse(content: bytes, report_type: ReportType, canal: str, filename: str = "r.csv"):
    return get_parser(report_type, canal).parse(read_table(content, filename).rows)


class TestClassification:

    def test_payout_before_sale(self):
        assert classify_transaction_type("Liberação de dinheiro de venda") == ("repasse", "credito")

    def test_negative_payout_is_debit(self):
        assert classify_transaction_type("Retirada", Decimal("-10")) == ("repasse", "debito")

    def test_fee(self):
        assert classify_transaction_type("Custo por vender") == ("tarifa_marketplace", "debito")

    def test_unknown_uses_sign(self):
        assert classify_transaction_type("Ajuste", Decimal("-1")) == ("outro", "debito")
        assert classify_transaction_type("Ajuste", Decimal("1")) == ("outro", "credito")


class TestExternalReference:

    def test_native_id_wins(self):
        assert build_external_reference("2024-03-15", "1", Decimal("10"), "Venda", " ABC ") == "ABC"

    def test_composite(self):
        ref = build_external_reference("2024-03-15", "2000001", Decimal("85.00"), "Venda  do   item")
        assert ref == "2024-03-15_2000001_85_Venda do item"

    def test_bounded_length(self):
        assert len(build_external_reference("2024-03-15", "1", 1, "x" * 500)) <= 150


class TestMercadoLivreParser:

    def test_sales_and_fees(self, ml_sales_csv):
        result = _parse(ml_sales_csv, ReportType.MERCADO_LIVRE, "mercado_livre")
        assert len(result.transacoes) == 3
        sale = result.transacoes[0]
        assert sale.referencia_externa == "T1"
        assert sale.pedido_id == "2000001"
        assert sale.data_transacao == date(2024, 3, 15)
        assert (sale.tipo_transacao, sale.tipo_lancamento) == ("venda", "credito")
        assert sale.valor_bruto == Decimal("100.00")
        assert sale.valor_liquido == Decimal("85.00")
        assert sale.comissao is None
        assert sale.linha_origem == 2

        fee = result.transacoes[2]
        assert (fee.tipo_transacao, fee.tipo_lancamento) == ("tarifa_marketplace", "debito")
        assert fee.valor_liquido == Decimal("15.00")

    def test_bad_date_row_discarded(self):
        content = ml_report(["xx/yy;Venda;1;10,00;10,00;T9", "15/03/2024;Venda;2;10,00;10,00;T10"])
        result = _parse(content, ReportType.MERCADO_LIVRE, "mercado_livre")
        assert [t.referencia_externa for t in result.transacoes] == ["T10"]
        assert result.estatisticas.total_descartadas_por_formato == 1

    def test_missing_columns(self):
        with pytest.raises(FileValidationError):
            _parse(b"Foo;Bar\n1;2\n", ReportType.MERCADO_LIVRE, "mercado_livre")

    def test_listing_item(self):
        content = (
            "Data da tarifa;Tipo de tarifa;Número da venda;Valor líquido;MLB;Título do anúncio;Quantidade;Preço unitário\n"
            "15/03/2024;Venda;2000001;85,00;mlb123456;Camiseta Azul;2;50,00\n"
        ).encode("utf-8")
        result = _parse(content, ReportType.MERCADO_LIVRE, "mercado_livre")
        item = result.transacoes[0].itens[0]
        assert item.anuncio_id == "MLB123456"
        assert item.descricao_item == "Camiseta Azul"
        assert item.quantidade == 2
        assert item.preco_total == Decimal("100.00")
        assert result.granularidade == "item"


class TestMercadoPagoParser:

    CSV = (
        "date_created,operation_type,transaction_amount,mercadopago_fee,net_received_amount,status,source_id\n"
        "2024-03-15T10:00:00,regular_payment,100.00,4.99,95.01,approved,555\n"
        "2024-03-16T10:00:00,refund,50.00,0,-50.00,approved,556\n"
        "2024-03-17T10:00:00,regular_payment,30.00,1.00,29.00,pending,557\n"
    ).encode("utf-8")

    def test_settlement_layout(self):
        result = _parse(self.CSV, ReportType.MERCADO_PAGO, "mercado_pago")
        assert len(result.transacoes) == 2
        sale, refund = result.transacoes
        assert sale.referencia_externa == "555"
        assert (sale.tipo_transacao, sale.tipo_lancamento) == ("venda", "credito")
        assert sale.tarifa == Decimal("4.99")
        assert sale.valor_liquido == Decimal("95.01")
        assert (refund.tipo_transacao, refund.tipo_lancamento) == ("estorno", "debito")
        assert result.estatisticas.total_descartadas_por_formato == 1

    def test_billing_layout(self):
        content = (
            "Data do movimento;Detalhe;Valor da tarifa;Número do movimento\n"
            "15/03/2024;Tarifa de processamento;3,50;M1\n"
        ).encode("utf-8")
        result = _parse(content, ReportType.MERCADO_PAGO, "mercado_pago")
        fee = result.transacoes[0]
        assert (fee.tipo_transacao, fee.tipo_lancamento) == ("tarifa_marketplace", "debito")
        assert fee.tarifa == Decimal("3.50")
        assert fee.referencia_externa == "M1"


class TestShopeeParser:

    def test_items_attached_to_order(self):
        content = (
            "Número do pedido;Data do pedido;Nome do produto;SKU do produto;Quantidade;"
            "Valor total do pedido;Taxa de comissão;Receita do vendedor\n"
            "900001;15/03/2024;Camiseta Azul;CAM-AZ;2;120,00;14,40;105,60\n"
        ).encode("utf-8")
        result = _parse(content, ReportType.SHOPEE, "shopee")
        sale = result.transacoes[0]
        assert sale.referencia_externa == "900001"
        assert sale.tipo_transacao == "venda"
        assert sale.comissao == Decimal("14.40")
        assert sale.valor_liquido == Decimal("105.60")
        assert [(i.sku_marketplace, i.quantidade) for i in sale.itens] == [("CAM-AZ", 2)]
        assert result.granularidade == "item"


class TestGenericParser:

    def test_row_errors_are_collected(self):
        content = "Data;Descrição;Valor\n15/03/2024;Venda balcão;100,00\nxx;Foo;10,00\n".encode("utf-8")
        result = _parse(content, ReportType.GENERIC, "amazon")
        assert len(result.transacoes) == 1
        assert result.transacoes[0].canal == "amazon"
        assert result.erros[0].linha == 3

    def test_required_columns(self):
        with pytest.raises(FileValidationError):
            _parse(b"Foo;Bar\n1;2\n", ReportType.GENERIC, "outro")
