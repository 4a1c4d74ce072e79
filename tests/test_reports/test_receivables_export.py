"""
Tests for the receivables XLSX and CSV exports.
"""

import codecs
import io
from datetime import date
from decimal import Decimal

from openpyxl import load_workbook

from ecom_finance.reports.receivables_export import (
    build_receivables_csv,
    build_receivables_workbook,
    export_filename,
    forecast_rows,
    load_receivables,
)
from tests.conftest import EMPRESA

TODAY = date(2024, 3, 10)

CONTAS = [
    {
        "cliente_nome": "Loja Centro",
        "descricao": "NF 101",
        "data_emissao": date(2024, 2, 1),
        "data_vencimento": date(2024, 2, 20),
        "valor_total": Decimal("300.00"),
        "valor_recebido": Decimal("0"),
        "valor_em_aberto": Decimal("300.00"),
        "status": "em_aberto",
    },
    {
        "cliente_nome": "Atacado Sul",
        "descricao": "NF 102",
        "data_vencimento": date(2024, 4, 5),
        "valor_total": Decimal("100.00"),
        "valor_recebido": Decimal("0"),
        "valor_em_aberto": Decimal("100.00"),
        "status": "em_aberto",
    },
    {
        "cliente_nome": "Loja Centro",
        "descricao": "NF 99",
        "data_vencimento": date(2024, 3, 1),
        "data_recebimento": date(2024, 3, 2),
        "valor_total": Decimal("150.00"),
        "valor_recebido": Decimal("150.00"),
        "valor_em_aberto": Decimal("0"),
        "status": "recebido",
    },
]


class TestWorkbook:

    def _load(self, **kwargs):
        return load_workbook(io.BytesIO(build_receivables_workbook(CONTAS, TODAY, **kwargs)))

    def test_sheets(self):
        wb = self._load()
        assert wb.sheetnames == [
            "Contas a Receber", "Aging Report", "Análise por Cliente", "Previsão Recebimentos", "Resumo",
        ]

    def test_optional_sheets(self):
        wb = self._load(include_aging=False, include_clients=False, include_forecast=False)
        assert wb.sheetnames == ["Contas a Receber", "Resumo"]

    def test_listing(self):
        ws = self._load()["Contas a Receber"]
        header = [c.value for c in ws[1]]
        row = dict(zip(header, [c.value for c in ws[2]]))
        assert row["Cliente"] == "Loja Centro"
        assert row["Data Vencimento"] == "20/02/2024"
        assert row["Status"] == "Vencido"
        assert row["Dias Atraso"] == 19
        assert row["Faixa Aging"] == "1-30 dias"
        assert row["Documento"] == "-"
        assert ws["H2"].number_format == '"R$" #,##0.00'

    def test_aging_total_row(self):
        rows = list(self._load()["Aging Report"].iter_rows(values_only=True))
        assert rows[-1][0] == "TOTAL"
        assert rows[-1][1] == 2
        assert float(rows[-1][2]) == 400.0

    def test_clients_sorted_by_total(self):
        rows = list(self._load()["Análise por Cliente"].iter_rows(min_row=2, values_only=True))
        assert [r[0] for r in rows] == ["Loja Centro", "Atacado Sul"]
        assert rows[0][-1] == "66.7%"


def test_forecast_months():
    rows = forecast_rows(CONTAS, TODAY)
    assert len(rows) == 6
    assert rows[0]["Mês"] == "março de 2024"
    assert rows[0]["Recebido"] == Decimal("150.00")
    assert rows[1]["Previsto"] == Decimal("100.00")
    assert rows[1]["Diferença"] == Decimal("-100.00")


def test_csv_export():
    content = build_receivables_csv(CONTAS, TODAY)
    assert content.startswith(codecs.BOM_UTF8)
    lines = content.decode("utf-8-sig").splitlines()
    assert lines[0] == "Cliente;Descrição;Data Vencimento;Valor Total;Valor em Aberto;Status;Dias Atraso"
    assert lines[1].startswith("Loja Centro;NF 101;20/02/2024;")
    assert lines[1].endswith(";Vencido;19")


def test_export_filename():
    assert export_filename("xlsx", TODAY) == "contas_receber_2024-03-10.xlsx"


async def test_load_receivables_orders_by_due_date(store):
    await store.insert("contas_receber", [{**c, "empresa_id": EMPRESA} for c in CONTAS])
    contas = await load_receivables(store, EMPRESA)
    assert [c["descricao"] for c in contas] == ["NF 101", "NF 99", "NF 102"]
    assert len(await load_receivables(store, EMPRESA, status="recebido")) == 1
