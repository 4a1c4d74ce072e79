"""
Import orchestrator: coordinates marketplace report and bank statement imports.

Stages: READ → DETECT → (PERIOD CHECK) → PARSE → RESOLVE SKUS → UPSERT/MERGE → FINALIZE

The import job row is the progress record: counters are flushed every
IMPORT_PROGRESS_EVERY candidates so clients can poll or subscribe, and a
job whose status is flipped to "erro" by a user is treated as cancelled
before the next row. Only a job still "processando" is finalized, so a
cancelled job is never reopened. Row-level failures are counted; only
file-level problems fail the job. The job always ends in a terminal status
with explicit counts.
"""

import time
import traceback
from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel

from ecom_finance.config import settings
from ecom_finance.models.enums import ImportJobStatus, MovementDirection, MovementOrigin
from ecom_finance.observability import metrics
from ecom_finance.observability.logging import bind_job_context, clear_job_context
from ecom_finance.pipeline.channel_detector import channel_for_report, detect_report_type
from ecom_finance.pipeline.dedupe import upsert_transaction
from ecom_finance.pipeline.errors import FileValidationError, PipelineError
from ecom_finance.pipeline.file_reader import decode_text, is_ofx, read_table
from ecom_finance.pipeline.ledger import MOVEMENTS_TABLE, MovementInput, register_movement
from ecom_finance.pipeline.ofx_parser import OfxStatement, parse_ofx
from ecom_finance.pipeline.overlap_check import (
    OverlapValidation,
    check_overlap,
    sample_from_candidates,
    sample_from_rows,
)
from ecom_finance.pipeline.parsers.registry import get_parser
from ecom_finance.pipeline.period_check import PeriodValidation, validate_period
from ecom_finance.pipeline.sku_mapping import SkuMappingCache, resolve_item
from ecom_finance.schemas.canonical import CandidateTransaction
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

JOBS_TABLE = "marketplace_import_jobs"
CANCELLED_MESSAGE = "Importação cancelada pelo usuário"


class ImportSummary(BaseModel):
    job_id: str
    status: str
    canal: Optional[str] = None
    report_type: Optional[str] = None
    total_linhas: int = 0
    linhas_importadas: int = 0
    linhas_duplicadas: int = 0
    linhas_com_erro: int = 0
    itens_vinculados: int = 0
    itens_sem_mapeamento: int = 0
    mensagem_erro: Optional[str] = None
    cancelado: bool = False
    validacao_periodo: Optional[PeriodValidation] = None
    duration_ms: int = 0


class _Counters:
    def __init__(self, total: int = 0):
        self.total = total
        self.processed = 0
        self.imported = 0
        self.duplicated = 0
        self.errors = 0
        self.linked = 0
        self.unlinked = 0
        self.messages: list[str] = []

    def error(self, message: str) -> None:
        self.errors += 1
        if len(self.messages) < settings.IMPORT_MAX_ERROR_EXAMPLES:
            self.messages.append(message)

    def job_patch(self) -> dict:
        return {
            "total_linhas": self.total,
            "linhas_processadas": self.processed,
            "linhas_importadas": self.imported,
            "linhas_duplicadas": self.duplicated,
            "linhas_com_erro": self.errors,
        }


class ImportPipeline:
    """
    Runs one import job end-to-end against a DataStore.
    Marketplace reports go through dedupe/merge; OFX files go to the ledger.
    """

    def __init__(self, store: DataStore):
        self.store = store
        self._caches: dict[str, SkuMappingCache] = {}

    async def create_job(self, empresa_id: str, arquivo_nome: str, canal: Optional[str] = None) -> Row:
        job = (await self.store.insert(JOBS_TABLE, [{
            "empresa_id": empresa_id,
            "canal": canal,
            "arquivo_nome": arquivo_nome,
            "status": ImportJobStatus.PROCESSANDO.value,
        }]))[0]
        logger.info("import_job_created", job_id=job["id"], empresa_id=empresa_id, arquivo=arquivo_nome)
        return job

    async def process(
        self,
        content: bytes,
        filename: str,
        empresa_id: str,
        canal: Optional[str] = None,
        job_id: Optional[str] = None,
        expected_month: Optional[int] = None,
        expected_year: Optional[int] = None,
    ) -> ImportSummary:
        """
        Main entry point: import one uploaded file.
        Raises PipelineError for file-level failures after marking the job.
        """
        started_at = time.time()
        if job_id is None:
            job_id = (await self.create_job(empresa_id, filename, canal))["id"]
        bind_job_context(job_id=job_id, empresa_id=empresa_id)
        logger.info("import_started", arquivo=filename, canal=canal)

        try:
            if is_ofx(filename, content):
                summary = await self._process_ofx(job_id, empresa_id, content)
            else:
                summary = await self._process_report(
                    job_id, empresa_id, content, filename, canal, expected_month, expected_year
                )
            summary.duration_ms = int((time.time() - started_at) * 1000)
            metrics.import_duration_seconds.labels(canal=summary.canal or "banco").observe(
                time.time() - started_at
            )
            logger.info(
                "import_finished",
                status=summary.status,
                imported=summary.linhas_importadas,
                duplicated=summary.linhas_duplicadas,
                errors=summary.linhas_com_erro,
                duration_ms=summary.duration_ms,
            )
            return summary

        except PipelineError as e:
            await self._fail_job(job_id, e.error_code, e.message)
            raise
        except Exception as e:
            error_msg = f"{type(e).__name__}: {str(e)}"
            logger.error("import_failed", error=error_msg, traceback=traceback.format_exc())
            await self._fail_job(job_id, "ERR_PIPELINE", error_msg)
            raise PipelineError(error_msg) from e
        finally:
            self._caches.clear()
            clear_job_context()

    # ─── Marketplace reports ──────────────────────────────────

    async def _process_report(
        self,
        job_id: str,
        empresa_id: str,
        content: bytes,
        filename: str,
        canal: Optional[str],
        expected_month: Optional[int],
        expected_year: Optional[int],
    ) -> ImportSummary:
        # ── READ / DETECT ──
        sheet = read_table(content, filename)
        preamble = [c for row in sheet.rows[: settings.HEADER_SEARCH_ROWS] for c in row if c]
        detection = detect_report_type(filename, preamble, canal)
        report_canal = channel_for_report(detection.report_type, canal)
        logger.info(
            "report_type_detected",
            report_type=detection.report_type.value,
            canal=report_canal,
            confidence=detection.confidence,
            signals=detection.signals,
        )

        # ── PERIOD CHECK (non-blocking) ──
        period = None
        if expected_month and expected_year:
            period = validate_period(sheet.rows, expected_month, expected_year)

        # ── PARSE ──
        parsed = get_parser(detection.report_type, report_canal).parse(sheet.rows)
        counters = _Counters(total=len(parsed.transacoes) + len(parsed.erros))
        for err in parsed.erros:
            counters.error(f"Linha {err.linha}: {err.mensagem}" if err.linha else err.mensagem)
        await self._update_job(job_id, {"canal": report_canal, **counters.job_patch()})

        # ── RESOLVE / UPSERT ──
        cancelled = False
        for index, candidate in enumerate(parsed.transacoes):
            if await self._is_cancelled(job_id):
                cancelled = True
                break
            if index and index % settings.IMPORT_PROGRESS_EVERY == 0:
                await self._update_job(job_id, counters.job_patch())
            await self._import_candidate(job_id, empresa_id, candidate, counters)
        if not cancelled:
            cancelled = not await self._finalize_job(job_id, counters)
        if cancelled:
            logger.warning("import_cancelled", processed=counters.processed, total=counters.total)

        summary = ImportSummary(
            job_id=job_id,
            status=ImportJobStatus.ERRO.value if cancelled else ImportJobStatus.CONCLUIDO.value,
            canal=report_canal,
            report_type=detection.report_type.value,
            total_linhas=counters.total,
            linhas_importadas=counters.imported,
            linhas_duplicadas=counters.duplicated,
            linhas_com_erro=counters.errors,
            itens_vinculados=counters.linked,
            itens_sem_mapeamento=counters.unlinked,
            mensagem_erro=CANCELLED_MESSAGE if cancelled else ("; ".join(counters.messages) or None),
            cancelado=cancelled,
            validacao_periodo=period,
        )
        return summary

    async def _import_candidate(
        self, job_id: str, empresa_id: str, candidate: CandidateTransaction, counters: _Counters
    ) -> None:
        counters.processed += 1
        try:
            if candidate.itens:
                cache = self._cache_for(empresa_id, candidate.canal)
                for item in candidate.itens:
                    if await resolve_item(cache, item):
                        counters.linked += 1
                    else:
                        counters.unlinked += 1
            outcome = await upsert_transaction(self.store, empresa_id, candidate, job_id)
        except Exception as e:
            # Row-level: counted and reported, never aborts the batch
            message = f"Linha {candidate.linha_origem}: {type(e).__name__}: {e}"
            logger.warning("row_import_failed", linha=candidate.linha_origem, error=str(e))
            counters.error(message)
            metrics.import_rows_total.labels(canal=candidate.canal, outcome="error").inc()
            return

        if outcome.created:
            counters.imported += 1
            metrics.import_rows_total.labels(canal=candidate.canal, outcome="created").inc()
        else:
            counters.duplicated += 1
            metrics.import_rows_total.labels(canal=candidate.canal, outcome="merged").inc()

    def _cache_for(self, empresa_id: str, canal: str) -> SkuMappingCache:
        key = f"{empresa_id}:{canal}"
        if key not in self._caches:
            self._caches[key] = SkuMappingCache(self.store, empresa_id, canal)
        return self._caches[key]

    # ─── Bank statements ──────────────────────────────────────

    async def _process_ofx(self, job_id: str, empresa_id: str, content: bytes) -> ImportSummary:
        statement = parse_ofx(decode_text(content))
        counters = _Counters(total=len(statement.transacoes))
        await self._update_job(job_id, counters.job_patch())

        cancelled = False
        for index, movement in enumerate(statement_movements(statement, empresa_id)):
            if await self._is_cancelled(job_id):
                cancelled = True
                break
            if index and index % settings.IMPORT_PROGRESS_EVERY == 0:
                await self._update_job(job_id, counters.job_patch())
            counters.processed += 1
            try:
                exists = await self.store.find_one(
                    MOVEMENTS_TABLE,
                    {"referencia_id": movement.referencia_id, "origem": movement.origem},
                )
                await register_movement(self.store, movement)
            except PipelineError as e:
                counters.error(f"{movement.referencia_id}: {e.message}")
                continue
            if exists:
                counters.duplicated += 1
            else:
                counters.imported += 1

        if not cancelled:
            cancelled = not await self._finalize_job(job_id, counters)
        if cancelled:
            logger.warning("import_cancelled", processed=counters.processed, total=counters.total)
        return ImportSummary(
            job_id=job_id,
            status=ImportJobStatus.ERRO.value if cancelled else ImportJobStatus.CONCLUIDO.value,
            report_type="ofx",
            total_linhas=counters.total,
            linhas_importadas=counters.imported,
            linhas_duplicadas=counters.duplicated,
            linhas_com_erro=counters.errors,
            mensagem_erro=CANCELLED_MESSAGE if cancelled else ("; ".join(counters.messages) or None),
            cancelado=cancelled,
        )

    # ─── Job helpers ──────────────────────────────────────────

    async def _update_job(self, job_id: str, patch: dict) -> bool:
        """Patch a running job; finalized jobs are left untouched."""
        updated = await self.store.update(
            JOBS_TABLE, {"id": job_id, "status": ImportJobStatus.PROCESSANDO.value}, patch
        )
        return bool(updated)

    async def _is_cancelled(self, job_id: str) -> bool:
        job = await self.store.find_one(JOBS_TABLE, {"id": job_id})
        return job is not None and job["status"] == ImportJobStatus.ERRO.value

    async def _finalize_job(self, job_id: str, counters: _Counters) -> bool:
        """Close a running job; False when it was already finalized by a cancel."""
        return await self._update_job(job_id, {
            **counters.job_patch(),
            "status": ImportJobStatus.CONCLUIDO.value,
            "mensagem_erro": "; ".join(counters.messages) or None,
            "finalizado_em": datetime.now(timezone.utc),
        })

    async def _fail_job(self, job_id: str, error_code: str, error_message: str) -> None:
        """Mark the job as failed."""
        try:
            await self._update_job(job_id, {
                "status": ImportJobStatus.ERRO.value,
                "mensagem_erro": error_message[:500],
                "finalizado_em": datetime.now(timezone.utc),
            })
        except Exception:
            logger.error("failed_to_mark_failure", job_id=job_id)
        metrics.import_failures_total.labels(error_code=error_code).inc()


def statement_movements(statement: OfxStatement, empresa_id: str) -> list[MovementInput]:
    """Ledger entries for an OFX statement; FITIDs are scoped by account."""
    account = statement.conta_id or "conta"
    movements = []
    for tx in statement.transacoes:
        movements.append(MovementInput(
            data=tx.data,
            tipo=MovementDirection.ENTRADA.value if tx.tipo_lancamento == "credito" else MovementDirection.SAIDA.value,
            origem=MovementOrigin.BANCO.value,
            tipo_transacao=(tx.trntype or "").lower() or None,
            descricao=tx.descricao,
            valor=tx.valor,
            empresa_id=empresa_id,
            referencia_id=f"ofx:{account}:{tx.referencia_externa}",
            observacoes=statement.banco_nome,
        ))
    return movements


async def cancel_import(store: DataStore, job_id: str) -> Optional[Row]:
    """Cooperative cancellation: the running import stops before its next row."""
    updated = await store.update(
        JOBS_TABLE,
        {"id": job_id, "status": ImportJobStatus.PROCESSANDO.value},
        {
            "status": ImportJobStatus.ERRO.value,
            "mensagem_erro": CANCELLED_MESSAGE,
            "finalizado_em": datetime.now(timezone.utc),
        },
    )
    if updated:
        logger.info("import_cancel_requested", job_id=job_id)
    return updated[0] if updated else None


# ─── Pre-import checks ────────────────────────────────────────

def preview_period(content: bytes, filename: str, expected_month: int, expected_year: int) -> PeriodValidation:
    """Period check of an uploaded report without importing it."""
    return validate_period(read_table(content, filename).rows, expected_month, expected_year)


async def preview_overlap(
    store: DataStore,
    content: bytes,
    filename: str,
    empresa_id: str,
    canal: Optional[str] = None,
) -> OverlapValidation:
    """Share of a report's references already stored for the company."""
    sheet = read_table(content, filename)
    preamble = [c for row in sheet.rows[: settings.HEADER_SEARCH_ROWS] for c in row if c]
    detection = detect_report_type(filename, preamble, canal)
    report_canal = channel_for_report(detection.report_type, canal)
    try:
        parsed = get_parser(detection.report_type, report_canal).parse(sheet.rows)
        sample = sample_from_candidates(parsed.transacoes)
    except FileValidationError as e:
        logger.info("overlap_fallback_to_rows", reason=e.message)
        sample = []
    if not sample:
        sample = sample_from_rows(sheet.rows)
    return await check_overlap(store, empresa_id, report_canal, sample)
