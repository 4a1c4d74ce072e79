"""
Period compatibility check for the monthly closing checklist.

Samples the first rows of a report, finds the dominant (month, year) and
compares it with the checklist period. A mismatch is a warning only: the
upload still proceeds.
"""

from collections import Counter
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel

from ecom_finance.config import settings
from ecom_finance.pipeline.date_parser import MonthYear, extract_month_year, month_name_pt
from ecom_finance.pipeline.header_mapper import cell, find_column_index, find_header_row

logger = structlog.get_logger(__name__)

DATE_COLUMN_ALIASES = [
    "data", "date", "fecha", "data da tarifa", "data transação", "data do movimento",
    "data da venda", "data de criação", "created", "data pedido", "data_transacao",
]


class Periodo(BaseModel):
    mes: int
    ano: int


class PeriodoDetalhes(BaseModel):
    datas_encontradas: int
    data_minima: str
    data_maxima: str
    mes_frequente: int
    ano_frequente: int


class PeriodValidation(BaseModel):
    valido: bool
    periodo_detectado: Optional[Periodo] = None
    periodo_esperado: Periodo
    alerta_incompatibilidade: bool = False
    mensagem_erro: Optional[str] = None
    detalhes: Optional[PeriodoDetalhes] = None


def find_date_column(headers: Sequence[str], first_row: Optional[Sequence[str]]) -> int:
    idx = find_column_index(headers, DATE_COLUMN_ALIASES)
    if idx >= 0 or first_row is None:
        return idx
    # No date-like header: first column whose first value parses as a date
    for i in range(len(first_row)):
        if extract_month_year(cell(first_row, i)):
            return i
    return -1


def dominant_period(dates: Sequence[MonthYear]) -> Optional[Periodo]:
    if not dates:
        return None
    (month, year), _ = Counter((d.month, d.year) for d in dates).most_common(1)[0]
    return Periodo(mes=month, ano=year)


def _month_label(value: MonthYear) -> str:
    return f"{value.month:02d}/{value.year}"


def validate_period(
    rows: Sequence[Sequence[str]],
    expected_month: int,
    expected_year: int,
    sample_size: Optional[int] = None,
) -> PeriodValidation:
    """Compare the dominant period in the first rows against the expected one."""
    sample_size = sample_size or settings.IMPORT_SAMPLE_SIZE
    expected = Periodo(mes=expected_month, ano=expected_year)
    if not rows:
        return PeriodValidation(
            valido=True, periodo_esperado=expected,
            mensagem_erro="Não foi possível detectar datas no arquivo",
        )

    header_idx = find_header_row(rows, DATE_COLUMN_ALIASES[:1], settings.HEADER_SEARCH_ROWS)
    headers = rows[header_idx]
    sample = [r for r in rows[header_idx + 1:] if any(r)][:sample_size]
    column = find_date_column(headers, sample[0] if sample else None)
    if column < 0:
        return PeriodValidation(
            valido=True, periodo_esperado=expected,
            mensagem_erro="Não foi possível detectar datas no arquivo",
        )

    # Invalid and out-of-range dates are dropped from the sample
    dates = [d for d in (extract_month_year(cell(r, column)) for r in sample) if d is not None]
    detected = dominant_period(dates)
    if detected is None:
        return PeriodValidation(
            valido=True, periodo_esperado=expected,
            mensagem_erro="Não foi possível determinar o período das transações",
        )

    ordered = sorted(dates, key=lambda d: (d.year, d.month, d.day or 0))
    valido = detected.mes == expected_month and detected.ano == expected_year
    result = PeriodValidation(
        valido=valido,
        periodo_detectado=detected,
        periodo_esperado=expected,
        alerta_incompatibilidade=not valido,
        detalhes=PeriodoDetalhes(
            datas_encontradas=len(dates),
            data_minima=_month_label(ordered[0]),
            data_maxima=_month_label(ordered[-1]),
            mes_frequente=detected.mes,
            ano_frequente=detected.ano,
        ),
    )
    if not valido:
        result.mensagem_erro = (
            f"O arquivo parece ser de {month_name_pt(detected.mes)}/{detected.ano}, "
            f"mas o checklist é de {month_name_pt(expected_month)}/{expected_year}"
        )
        logger.warning(
            "period_mismatch",
            detected=f"{detected.mes}/{detected.ano}",
            expected=f"{expected_month}/{expected_year}",
        )
    return result
