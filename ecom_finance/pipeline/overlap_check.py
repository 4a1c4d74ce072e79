"""
Overlap detection: how much of a report is already in the database.

A spread sample of at most 100 external references is checked against
marketplace_transactions for the same company, each under the channel its
row was parsed into. The percentage drives a pre-import warning; it never
blocks the import.
"""

from datetime import date
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel

from ecom_finance.config import settings
from ecom_finance.pipeline.date_parser import parse_date
from ecom_finance.pipeline.header_mapper import cell, find_column_index, find_header_row
from ecom_finance.schemas.canonical import CandidateTransaction
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

REFERENCE_FIELDS = [
    "source_id", "id da operação", "id_operacao", "external_reference", "referência",
    "referencia", "id_transacao", "id transação", "id da transação", "id da tarifa",
    "order_id", "order",
]
DATE_FIELDS = [
    "date_created", "data da tarifa", "data_transacao", "transaction_date", "data do pedido", "data",
]


class SampleTransaction(BaseModel):
    referencia_externa: Optional[str] = None
    data_transacao: Optional[date] = None
    canal: Optional[str] = None         # parsed channel, when it differs per row


class PeriodoAmostra(BaseModel):
    data_inicio: date
    data_fim: date


class OverlapValidation(BaseModel):
    percentual_existente: int = 0
    transacoes_amostra: int = 0
    transacoes_ja_existentes: int = 0
    alerta: bool = False
    alerta_nivel: str = "info"          # info, warning, error
    mensagem: str
    periodo_detectado: Optional[PeriodoAmostra] = None


def spread_sample(items: Sequence, sample_size: int) -> list:
    """Evenly spaced elements so the sample covers the whole file."""
    if len(items) <= sample_size:
        return list(items)
    step = len(items) / sample_size
    return [items[int(i * step)] for i in range(sample_size)]


def sample_from_candidates(
    candidates: Sequence[CandidateTransaction], sample_size: Optional[int] = None
) -> list[SampleTransaction]:
    sample_size = sample_size or settings.IMPORT_SAMPLE_SIZE
    return [
        SampleTransaction(
            referencia_externa=c.referencia_externa, data_transacao=c.data_transacao, canal=c.canal
        )
        for c in spread_sample(candidates, sample_size)
    ]


def sample_from_rows(
    rows: Sequence[Sequence[str]], sample_size: Optional[int] = None
) -> list[SampleTransaction]:
    """Raw-column sample, used when the report cannot be fully parsed."""
    sample_size = sample_size or settings.IMPORT_SAMPLE_SIZE
    if not rows:
        return []
    header_idx = find_header_row(rows, None, settings.HEADER_SEARCH_ROWS)
    headers = rows[header_idx]
    ref_idx = find_column_index(headers, REFERENCE_FIELDS)
    date_idx = find_column_index(headers, DATE_FIELDS)
    if ref_idx < 0 and date_idx < 0:
        return []

    sample = []
    for row in spread_sample([r for r in rows[header_idx + 1:] if any(r)], sample_size):
        reference = cell(row, ref_idx) or None
        when = parse_date(cell(row, date_idx))
        if reference or when:
            sample.append(SampleTransaction(referencia_externa=reference, data_transacao=when))
    return sample


def classify_overlap(percentual: int) -> tuple[bool, str, str]:
    """(alerta, alerta_nivel, mensagem) for an overlap percentage."""
    if percentual >= 95:
        return True, "error", (
            f"{percentual}% das transações já existem. Este arquivo provavelmente já foi importado."
        )
    if percentual >= 80:
        return True, "warning", (
            f"{percentual}% das transações já existem. "
            "Verifique se este arquivo já foi importado parcialmente."
        )
    if percentual >= 50:
        return True, "warning", (
            f"{percentual}% das transações já existem. Pode haver sobreposição com outro relatório."
        )
    if percentual > 0:
        return False, "info", (
            f"{percentual}% das transações já existem (duplicatas serão ignoradas automaticamente)."
        )
    return False, "info", "Transações novas detectadas - nenhuma duplicidade encontrada."


def _channel_key(canal: str) -> str:
    return canal.lower().replace(" ", "_")


async def check_overlap(
    store: DataStore,
    empresa_id: str,
    canal: str,
    sample: Sequence[SampleTransaction],
) -> OverlapValidation:
    if not sample:
        return OverlapValidation(mensagem="Não foi possível extrair transações para validação")

    # Generic reports carry the channel per row; stored rows live under that channel
    by_channel: dict[str, set[str]] = {}
    for s in sample:
        if s.referencia_externa:
            by_channel.setdefault(_channel_key(s.canal or canal), set()).add(s.referencia_externa)
    found: set[tuple[str, str]] = set()
    for channel, references in sorted(by_channel.items()):
        rows = await store.find(
            "marketplace_transactions",
            {
                "empresa_id": empresa_id,
                "canal": channel,
                "referencia_externa__in": sorted(references),
            },
        )
        found.update((channel, r["referencia_externa"]) for r in rows)
    # A reference shared by several rows (sale + fees) is one hit per sampled row
    existing = sum(
        1 for s in sample if (_channel_key(s.canal or canal), s.referencia_externa) in found
    )
    percentual = round(existing / len(sample) * 100)
    alerta, nivel, mensagem = classify_overlap(percentual)

    dates = sorted(s.data_transacao for s in sample if s.data_transacao)
    periodo = PeriodoAmostra(data_inicio=dates[0], data_fim=dates[-1]) if dates else None

    logger.info(
        "overlap_checked",
        empresa_id=empresa_id,
        canal=canal,
        sample=len(sample),
        existing=existing,
        percent=percentual,
    )
    return OverlapValidation(
        percentual_existente=percentual,
        transacoes_amostra=len(sample),
        transacoes_ja_existentes=existing,
        alerta=alerta,
        alerta_nivel=nivel,
        mensagem=mensagem,
        periodo_detectado=periodo,
    )
