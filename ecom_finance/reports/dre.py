"""
DRE (income statement) aggregation.

Consumes accrual-regime ledger movements only. Each movement is attributed to
the DRE line of its category type; amounts are summed in absolute value per
line and per category within the line. CMV rows can be added to the Custos
line for marketplace sales costed by the CMV engine.
"""

import calendar
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from ecom_finance.models.enums import CategoryType, Regime
from ecom_finance.pipeline.date_parser import month_name_pt
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

CMV_CATEGORY = "CMV Marketplace"
EXPENSE_TYPES = (
    CategoryType.DESPESAS_OPERACIONAIS,
    CategoryType.DESPESAS_PESSOAL,
    CategoryType.DESPESAS_ADMINISTRATIVAS,
    CategoryType.DESPESAS_COMERCIAIS,
    CategoryType.DESPESAS_FINANCEIRAS,
)


class DreCategory(BaseModel):
    nome: str
    valor: Decimal


class DreLine(BaseModel):
    nome: str
    valor: Decimal = Decimal("0")
    categorias: list[DreCategory] = Field(default_factory=list)


class DreEntry(BaseModel):
    valor: Decimal
    categoria_tipo: Optional[str] = None
    categoria_nome: Optional[str] = None


class Dre(BaseModel):
    periodo: str
    receita_bruta: Decimal
    deducoes: DreLine
    receita_liquida: Decimal
    custos: DreLine
    lucro_bruto: Decimal
    despesas_operacionais: DreLine
    despesas_pessoal: DreLine
    despesas_administrativas: DreLine
    despesas_comerciais: DreLine
    despesas_financeiras: DreLine
    total_despesas: Decimal
    ebitda: Decimal
    outras_receitas_despesas: DreLine
    lucro_antes_ir: Decimal
    impostos: DreLine
    lucro_liquido: Decimal
    margem_bruta: Optional[Decimal] = None
    margem_liquida: Optional[Decimal] = None
    linhas: dict[str, DreLine] = Field(default_factory=dict)


def _percent(part: Decimal, whole: Decimal) -> Optional[Decimal]:
    if whole <= 0:
        return None
    return (part / whole * 100).quantize(Decimal("0.1"))


def build_dre(entries: Iterable[DreEntry], periodo: str) -> Dre:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    by_category: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    for entry in entries:
        if not entry.categoria_tipo:
            continue
        amount = abs(entry.valor)
        totals[entry.categoria_tipo] += amount
        by_category[entry.categoria_tipo][entry.categoria_nome or "Sem nome"] += amount

    def line(tipo: CategoryType) -> DreLine:
        return DreLine(
            nome=tipo.value,
            valor=totals.get(tipo.value, Decimal("0")),
            categorias=[DreCategory(nome=n, valor=v) for n, v in sorted(by_category[tipo.value].items())],
        )

    lines = {t.value: line(t) for t in CategoryType}
    receita_bruta = lines[CategoryType.RECEITAS.value].valor
    deducoes = lines[CategoryType.DEDUCOES.value]
    receita_liquida = receita_bruta - deducoes.valor
    custos = lines[CategoryType.CUSTOS.value]
    lucro_bruto = receita_liquida - custos.valor
    total_despesas = sum((lines[t.value].valor for t in EXPENSE_TYPES), Decimal("0"))
    ebitda = lucro_bruto - total_despesas
    outras = lines[CategoryType.OUTRAS.value]
    lucro_antes_ir = ebitda + outras.valor
    impostos = lines[CategoryType.IMPOSTOS.value]
    lucro_liquido = lucro_antes_ir - impostos.valor

    return Dre(
        periodo=periodo,
        receita_bruta=receita_bruta,
        deducoes=deducoes,
        receita_liquida=receita_liquida,
        custos=custos,
        lucro_bruto=lucro_bruto,
        despesas_operacionais=lines[CategoryType.DESPESAS_OPERACIONAIS.value],
        despesas_pessoal=lines[CategoryType.DESPESAS_PESSOAL.value],
        despesas_administrativas=lines[CategoryType.DESPESAS_ADMINISTRATIVAS.value],
        despesas_comerciais=lines[CategoryType.DESPESAS_COMERCIAIS.value],
        despesas_financeiras=lines[CategoryType.DESPESAS_FINANCEIRAS.value],
        total_despesas=total_despesas,
        ebitda=ebitda,
        outras_receitas_despesas=outras,
        lucro_antes_ir=lucro_antes_ir,
        impostos=impostos,
        lucro_liquido=lucro_liquido,
        margem_bruta=_percent(lucro_bruto, receita_bruta),
        margem_liquida=_percent(lucro_liquido, receita_bruta),
        linhas=lines,
    )


def month_range(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


async def load_dre(
    store: DataStore,
    empresa_id: str,
    year: int,
    month: int,
    include_cmv: bool = True,
) -> Dre:
    """DRE of one month from accrual movements (plus CMV rows)."""
    start, end = month_range(year, month)
    movements = await store.find(
        "movimentos_financeiros",
        {
            "empresa_id": empresa_id,
            "regime": Regime.COMPETENCIA.value,
            "data__gte": start,
            "data__lte": end,
        },
    )
    category_ids = sorted({m["categoria_id"] for m in movements if m.get("categoria_id")})
    categories = {}
    if category_ids:
        categories = {c["id"]: c for c in await store.find("categorias", {"id__in": category_ids})}

    entries = []
    for movement in movements:
        categoria = categories.get(movement.get("categoria_id"))
        entries.append(DreEntry(
            valor=Decimal(str(movement["valor"])),
            categoria_tipo=categoria["tipo"] if categoria else None,
            categoria_nome=movement.get("categoria_nome") or (categoria or {}).get("nome"),
        ))

    if include_cmv:
        cmv_rows = await store.find(
            "cmv_registros", {"empresa_id": empresa_id, "data__gte": start, "data__lte": end}
        )
        for row in cmv_rows:
            entries.append(DreEntry(
                valor=Decimal(str(row["custo_total"])),
                categoria_tipo=CategoryType.CUSTOS.value,
                categoria_nome=CMV_CATEGORY,
            ))

    uncategorized = sum(1 for e in entries if not e.categoria_tipo)
    if uncategorized:
        logger.info("dre_uncategorized_movements", empresa_id=empresa_id, count=uncategorized)
    return build_dre(entries, f"{month_name_pt(month)} {year}")
