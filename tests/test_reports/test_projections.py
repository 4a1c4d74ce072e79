"""
Tests for revenue/profit projections.
"""

from datetime import date
from decimal import Decimal

from ecom_finance.pipeline.ledger import MovementInput, register_movement
from ecom_finance.reports.projections import (
    MonthHistory,
    build_projections,
    history_window,
    load_projections,
    monthly_history,
)
from tests.conftest import EMPRESA

TODAY = date(2024, 7, 10)


def _history() -> list[MonthHistory]:
    return [
        MonthHistory(mes="2024-05", mes_label="mai/24", faturamento=Decimal("1000"),
                     despesas=Decimal("500"), lucro=Decimal("500")),
        MonthHistory(mes="2024-06", mes_label="jun/24", faturamento=Decimal("2000"),
                     despesas=Decimal("700"), lucro=Decimal("1300")),
    ]


def test_history_window():
    assert history_window(TODAY) == (date(2024, 1, 1), date(2024, 6, 30))


def test_monthly_history():
    history = monthly_history([
        {"data": date(2024, 5, 3), "tipo": "entrada", "valor": Decimal("100")},
        {"data": date(2024, 5, 9), "tipo": "saida", "valor": Decimal("-40")},
        {"data": date(2024, 6, 1), "tipo": "saida", "valor": Decimal("10")},
    ])
    assert [(h.mes, h.mes_label, h.lucro) for h in history] == [
        ("2024-05", "mai/24", Decimal("60")),
        ("2024-06", "jun/24", Decimal("-10")),
    ]


class TestScenarios:

    def test_scenario_factors(self):
        result = build_projections(_history(), months=3, today=TODAY)
        assert result.cenarios["otimista"].faturamento == Decimal("1800.00")
        assert result.cenarios["otimista"].lucro_liquido == Decimal("1260.00")
        assert result.cenarios["otimista"].margem == Decimal("70.0")
        assert result.cenarios["realista"].lucro_liquido == Decimal("975.00")
        assert result.cenarios["realista"].margem == Decimal("61.9")
        assert result.cenarios["pessimista"].lucro_liquido == Decimal("645.00")

    def test_monthly_growth(self):
        result = build_projections(_history(), months=3, today=TODAY)
        assert [p.mes for p in result.projecao_faturamento] == ["jul", "ago", "set"]
        assert result.projecao_faturamento[0].realista == Decimal("1575")
        assert result.projecao_faturamento[1].realista == Decimal("1607")
        assert result.projecao_lucro[1].realista == Decimal("1007")

    def test_without_history(self):
        result = build_projections([], months=2, today=TODAY)
        assert not result.has_data
        assert result.cenarios["realista"].margem == Decimal("0")
        assert len(result.projecao_faturamento) == 2


async def test_load_uses_trailing_accrual_movements(store):
    def movement(ref: str, when: date, tipo_transacao: str = "venda") -> MovementInput:
        return MovementInput(
            data=when, tipo="entrada", origem="marketplace", tipo_transacao=tipo_transacao,
            descricao="Venda", valor=Decimal("100.00"), empresa_id=EMPRESA, referencia_id=ref,
        )

    await register_movement(store, movement("tx-1", date(2024, 5, 10)))
    await register_movement(store, movement("tx-2", date(2024, 5, 11), tipo_transacao="repasse"))
    await register_movement(store, movement("tx-3", date(2024, 7, 1)))

    result = await load_projections(store, EMPRESA, months=1, today=TODAY)
    assert [h.mes for h in result.historico] == ["2024-05"]
    assert result.historico[0].faturamento == Decimal("100.00")
