"""
Tests for column resolution and header detection.
"""

from ecom_finance.pipeline.header_mapper import (
    MERCADO_LIVRE_ALIASES,
    MERCADO_LIVRE_FEE_ALIASES,
    cell,
    find_column_index,
    find_fee_column_index,
    find_header_row,
    has_item_columns,
    resolve_columns,
)


class TestFindColumnIndex:

    def test_case_insensitive_substring(self):
        headers = ["ID", "Data da Venda", "Valor"]
        assert find_column_index(headers, ["data"]) == 1

    def test_earlier_alias_wins(self):
        headers = ["Total", "Valor líquido"]
        assert find_column_index(headers, ["valor líquido", "total"]) == 1

    def test_missing(self):
        assert find_column_index(["a", "b"], ["data"]) == -1

    def test_whitespace_normalised(self):
        assert find_column_index(["  Número   da venda "], ["número da venda"]) == 0


class TestFeeColumns:

    def test_date_headers_excluded(self):
        headers = ["Data da tarifa", "Valor da tarifa"]
        assert find_fee_column_index(headers, ["tarifa"]) == 1

    def test_date_sample_rejected(self):
        headers = ["Frete", "Custo de envio"]
        sample = ["15/03/2024", "12,90"]
        assert find_fee_column_index(headers, ["frete", "envio"], sample) == 1

    def test_free_text_sample_rejected(self):
        headers = ["Comissão"]
        sample = ["Comissão cobrada sobre a venda do anúncio"]
        assert find_fee_column_index(headers, ["comissão"], sample) == -1

    def test_resolve_columns_ml_layout(self):
        headers = ["Data da tarifa", "Tipo de tarifa", "Número da venda", "Valor líquido", "Comissão"]
        columns = resolve_columns(headers, MERCADO_LIVRE_ALIASES, MERCADO_LIVRE_FEE_ALIASES)
        assert columns["data"] == 0
        assert columns["tipo"] == 1
        assert columns["pedido_id"] == 2
        assert columns["valor_liquido"] == 3
        assert columns["comissao"] == 4
        assert columns["ads"] == -1


class TestHeaderRow:

    def test_marker_row(self):
        rows = [["Relatório de tarifas"], ["Período", "03/2024"], ["Data da tarifa", "Valor"], ["15/03/2024", "1"]]
        assert find_header_row(rows, ["data da tarifa"]) == 2

    def test_first_dense_row(self):
        rows = [["Título"], ["Data", "Valor"], ["15/03/2024", "1"]]
        assert find_header_row(rows) == 1


class TestCells:

    def test_cell_bounds(self):
        assert cell(["a", " b "], 1) == "b"
        assert cell(["a"], 5) == ""
        assert cell(["a"], -1) == ""

    def test_nan_is_empty(self):
        assert cell(["nan"], 0) == ""

    def test_item_columns(self):
        assert has_item_columns(["Pedido", "SKU", "Quantidade"])
        assert not has_item_columns(["Pedido", "Valor"])
