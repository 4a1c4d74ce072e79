"""
Tests for receivables aging.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from ecom_finance.reports.aging import aging_bucket, build_aging, days_overdue

TODAY = date(2024, 6, 15)


@pytest.mark.parametrize("days_late,expected", [
    (-5, "A Vencer"),
    (0, "A Vencer"),
    (1, "1-30 dias"),
    (30, "1-30 dias"),
    (31, "31-60 dias"),
    (60, "31-60 dias"),
    (61, "61-90 dias"),
    (90, "61-90 dias"),
    (91, "90+ dias"),
])
def test_bucket_boundaries(days_late, expected):
    assert aging_bucket(TODAY - timedelta(days=days_late), TODAY) == expected


def test_closed_items_are_not_aged():
    assert aging_bucket(TODAY - timedelta(days=100), TODAY, "recebido") == "N/A"


def test_days_overdue_accepts_iso_text():
    assert days_overdue("2024-06-10", TODAY) == 5


def _conta(cliente: str, days_late: int, aberto: str, total: str, status: str = "em_aberto") -> dict:
    return {
        "cliente_nome": cliente,
        "data_vencimento": TODAY - timedelta(days=days_late),
        "valor_em_aberto": Decimal(aberto),
        "valor_total": Decimal(total),
        "status": status,
    }


class TestBuildAging:

    def setup_method(self):
        self.report = build_aging([
            _conta("Cliente A", -5, "100", "100"),
            _conta("Cliente B", 10, "50", "50"),
            _conta("Cliente C", 95, "200", "200"),
            _conta("Cliente D", 40, "0", "150", status="recebido"),
            _conta("Cliente E", 40, "999", "999", status="cancelado"),
        ], TODAY)

    def test_buckets(self):
        values = {b.faixa: (b.quantidade, b.valor) for b in self.report.faixas}
        assert values["A Vencer"] == (1, Decimal("100"))
        assert values["1-30 dias"] == (1, Decimal("50"))
        assert values["31-60 dias"] == (0, Decimal("0"))
        assert values["90+ dias"] == (1, Decimal("200"))
        assert self.report.faixas[0].percentual == Decimal("28.6")

    def test_totals(self):
        assert self.report.total_em_aberto == Decimal("350")
        assert self.report.total_vencido == Decimal("250")
        assert self.report.total_carteira == Decimal("500")
        assert self.report.percentual_inadimplencia == Decimal("50.0")

    def test_alerts(self):
        titles = {a.titulo: a for a in self.report.alertas}
        assert titles["Inadimplência Crítica (+90 dias)"].clientes == ["Cliente C"]
        assert titles["Taxa de Inadimplência Elevada"].severidade == "critico"
        assert len(self.report.alertas) == 2


def test_no_alerts_for_healthy_portfolio():
    report = build_aging([_conta("Cliente A", 5, "10", "100"), _conta("Cliente B", -1, "90", "900")], TODAY)
    assert report.percentual_inadimplencia == Decimal("1.0")
    assert report.alertas == []
