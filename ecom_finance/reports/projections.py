"""
Revenue and profit projections from the trailing six complete months.

Three scenarios scale the monthly averages:
  otimista    revenue ×1.20, cost ×0.90
  realista    revenue ×1.05, cost ×1.00
  pessimista  revenue ×0.85, cost ×1.05
Month i of the forward projection multiplies revenue by (1 + 0.02·i).
"""

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

import structlog
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, Field

from ecom_finance.models.enums import MovementDirection, Regime
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

HISTORY_MONTHS = 6
MONTHLY_GROWTH = Decimal("0.02")
MONTH_ABBR_PT = ["jan", "fev", "mar", "abr", "mai", "jun", "jul", "ago", "set", "out", "nov", "dez"]

# scenario → (revenue factor, cost factor)
SCENARIOS = {
    "otimista": (Decimal("1.20"), Decimal("0.90")),
    "realista": (Decimal("1.05"), Decimal("1.00")),
    "pessimista": (Decimal("0.85"), Decimal("1.05")),
}


class MonthHistory(BaseModel):
    mes: str                # YYYY-MM
    mes_label: str          # jan/24
    faturamento: Decimal
    despesas: Decimal
    lucro: Decimal


class Scenario(BaseModel):
    faturamento: Decimal
    lucro_liquido: Decimal
    margem: Decimal


class MonthProjection(BaseModel):
    mes: str
    otimista: Decimal
    realista: Decimal
    pessimista: Decimal


class Projections(BaseModel):
    historico: list[MonthHistory] = Field(default_factory=list)
    cenarios: dict[str, Scenario] = Field(default_factory=dict)
    projecao_faturamento: list[MonthProjection] = Field(default_factory=list)
    projecao_lucro: list[MonthProjection] = Field(default_factory=list)
    meses_projecao: int = 6

    @property
    def has_data(self) -> bool:
        return bool(self.historico)


def _round(value: Decimal, places: str = "0.01") -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def margin(revenue: Decimal, profit: Decimal) -> Decimal:
    if revenue <= 0:
        return Decimal("0")
    return _round(profit / revenue * 100, "0.1")


def history_window(today: date) -> tuple[date, date]:
    """First day six months back through the last day of the previous month."""
    first_of_month = today.replace(day=1)
    return first_of_month - relativedelta(months=HISTORY_MONTHS), first_of_month - relativedelta(days=1)


def monthly_history(movements: Iterable[dict]) -> list[MonthHistory]:
    inflow: dict[str, Decimal] = defaultdict(Decimal)
    outflow: dict[str, Decimal] = defaultdict(Decimal)
    for movement in movements:
        when = movement["data"]
        key = f"{when.year:04d}-{when.month:02d}"
        amount = abs(Decimal(str(movement["valor"])))
        if movement.get("tipo") == MovementDirection.ENTRADA.value:
            inflow[key] += amount
        else:
            outflow[key] += amount
        inflow.setdefault(key, Decimal("0"))

    history = []
    for key in sorted(inflow):
        year, month = (int(p) for p in key.split("-"))
        history.append(MonthHistory(
            mes=key,
            mes_label=f"{MONTH_ABBR_PT[month - 1]}/{year % 100:02d}",
            faturamento=inflow[key],
            despesas=outflow[key],
            lucro=inflow[key] - outflow[key],
        ))
    return history


def build_projections(
    history: list[MonthHistory], months: int = 6, today: Optional[date] = None
) -> Projections:
    today = today or date.today()
    result = Projections(historico=history, meses_projecao=months)
    count = len(history)
    revenue = sum((h.faturamento for h in history), Decimal("0")) / count if count else Decimal("0")
    costs = sum((h.despesas for h in history), Decimal("0")) / count if count else Decimal("0")

    for name, (revenue_factor, cost_factor) in SCENARIOS.items():
        projected_revenue = revenue * revenue_factor
        profit = projected_revenue - costs * cost_factor
        result.cenarios[name] = Scenario(
            faturamento=_round(projected_revenue),
            lucro_liquido=_round(profit),
            margem=margin(projected_revenue, profit),
        )

    for i in range(months):
        month = today + relativedelta(months=i)
        label = MONTH_ABBR_PT[month.month - 1]
        growth = 1 + MONTHLY_GROWTH * i
        revenues = {n: revenue * f * growth for n, (f, _) in SCENARIOS.items()}
        profits = {n: revenues[n] - costs * c for n, (_, c) in SCENARIOS.items()}
        result.projecao_faturamento.append(
            MonthProjection(mes=label, **{n: _round(v, "1") for n, v in revenues.items()})
        )
        result.projecao_lucro.append(
            MonthProjection(mes=label, **{n: _round(v, "1") for n, v in profits.items()})
        )
    return result


async def load_projections(
    store: DataStore, empresa_id: str, months: int = 6, today: Optional[date] = None
) -> Projections:
    today = today or date.today()
    start, end = history_window(today)
    movements = await store.find(
        "movimentos_financeiros",
        {
            "empresa_id": empresa_id,
            "regime": Regime.COMPETENCIA.value,
            "data__gte": start,
            "data__lte": end,
        },
    )
    projections = build_projections(monthly_history(movements), months, today)
    logger.info("projections_built", empresa_id=empresa_id, history_months=len(projections.historico))
    return projections
