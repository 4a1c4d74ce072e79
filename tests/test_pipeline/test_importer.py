"""
Tests for the import orchestrator.
"""

import pytest

from ecom_finance.config import settings
from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.importer import ImportPipeline, cancel_import, preview_overlap, preview_period
from tests.conftest import EMPRESA, OFX_STATEMENT


class TestReportImport:

    async def test_first_import(self, store, ml_sales_csv):
        summary = await ImportPipeline(store).process(ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        assert summary.status == "concluido"
        assert summary.report_type == "mercado_livre"
        assert summary.linhas_importadas == 3
        assert summary.linhas_duplicadas == 0

        job = await store.find_one("marketplace_import_jobs", {"id": summary.job_id})
        assert job["status"] == "concluido"
        assert job["linhas_importadas"] == 3
        assert job["finalizado_em"] is not None

        rows = await store.find("marketplace_transactions", {"empresa_id": EMPRESA})
        assert {r["import_job_id"] for r in rows} == {summary.job_id}

    async def test_reimport_is_idempotent(self, store, ml_sales_csv):
        pipeline = ImportPipeline(store)
        await pipeline.process(ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        again = await pipeline.process(ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        assert again.linhas_importadas == 0
        assert again.linhas_duplicadas == 3
        assert await store.count("marketplace_transactions") == 3

    async def test_period_mismatch_does_not_block(self, store, ml_sales_csv):
        summary = await ImportPipeline(store).process(
            ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre",
            expected_month=4, expected_year=2024,
        )
        assert summary.linhas_importadas == 3
        validation = summary.validacao_periodo
        assert validation.valido is False
        assert validation.alerta_incompatibilidade is True
        assert (validation.periodo_detectado.mes, validation.periodo_detectado.ano) == (3, 2024)
        assert (validation.periodo_esperado.mes, validation.periodo_esperado.ano) == (4, 2024)

    async def test_structural_failure_marks_job(self, store):
        pipeline = ImportPipeline(store)
        job = await pipeline.create_job(EMPRESA, "x.csv", "mercado_livre")
        with pytest.raises(FileValidationError):
            await pipeline.process(b"Foo;Bar\n1;2\n", "x.csv", EMPRESA, "mercado_livre", job_id=job["id"])
        stored = await store.find_one("marketplace_import_jobs", {"id": job["id"]})
        assert stored["status"] == "erro"
        assert stored["mensagem_erro"]


class TestCancellation:

    async def test_cancel_running_job(self, store):
        job = await ImportPipeline(store).create_job(EMPRESA, "r.csv")
        cancelled = await cancel_import(store, job["id"])
        assert cancelled["status"] == "erro"
        assert await cancel_import(store, job["id"]) is None

    @pytest.mark.parametrize("filename, target_table", [
        ("relatorio.csv", "marketplace_transactions"),
        ("extrato.ofx", "movimentos_financeiros"),
    ])
    async def test_cancelled_job_imports_nothing(self, store, ml_sales_csv, filename, target_table):
        assert settings.IMPORT_PROGRESS_EVERY > 3
        content = ml_sales_csv if filename.endswith(".csv") else OFX_STATEMENT.encode("latin-1")
        pipeline = ImportPipeline(store)
        job = await pipeline.create_job(EMPRESA, filename)
        await cancel_import(store, job["id"])

        summary = await pipeline.process(content, filename, EMPRESA, "mercado_livre", job_id=job["id"])
        assert summary.cancelado is True
        assert summary.status == "erro"
        assert summary.linhas_importadas == 0
        assert await store.count(target_table) == 0

        stored = await store.find_one("marketplace_import_jobs", {"id": job["id"]})
        assert stored["status"] == "erro"
        assert stored["mensagem_erro"] == "Importação cancelada pelo usuário"

    @pytest.mark.parametrize("filename, target_table", [
        ("relatorio.csv", "marketplace_transactions"),
        ("extrato.ofx", "movimentos_financeiros"),
    ])
    async def test_cancel_mid_import_stops_after_row_in_flight(
        self, store, ml_sales_csv, monkeypatch, filename, target_table
    ):
        content = ml_sales_csv if filename.endswith(".csv") else OFX_STATEMENT.encode("latin-1")
        pipeline = ImportPipeline(store)
        job = await pipeline.create_job(EMPRESA, filename)

        original_insert = store.insert

        async def insert_then_cancel(table, rows):
            inserted = await original_insert(table, rows)
            if table == target_table:
                await cancel_import(store, job["id"])
            return inserted

        monkeypatch.setattr(store, "insert", insert_then_cancel)

        summary = await pipeline.process(content, filename, EMPRESA, "mercado_livre", job_id=job["id"])
        assert summary.cancelado is True
        assert summary.linhas_importadas == 1
        assert await store.count(target_table) == 1

        stored = await store.find_one("marketplace_import_jobs", {"id": job["id"]})
        assert stored["status"] == "erro"
        assert stored["mensagem_erro"] == "Importação cancelada pelo usuário"

    async def test_finished_job_is_not_reopened(self, store, ml_sales_csv):
        pipeline = ImportPipeline(store)
        summary = await pipeline.process(ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        assert summary.status == "concluido"
        assert await cancel_import(store, summary.job_id) is None
        stored = await store.find_one("marketplace_import_jobs", {"id": summary.job_id})
        assert stored["status"] == "concluido"


class TestBankStatementImport:

    async def test_ofx_goes_to_ledger(self, store):
        pipeline = ImportPipeline(store)
        content = OFX_STATEMENT.encode("latin-1")
        summary = await pipeline.process(content, "extrato.ofx", EMPRESA)
        assert summary.report_type == "ofx"
        assert summary.linhas_importadas == 2

        movements = await store.find("movimentos_financeiros", {"empresa_id": EMPRESA}, order_by="data")
        assert [m["referencia_id"] for m in movements] == ["ofx:99887:A1", "ofx:99887:A2"]
        assert {m["regime"] for m in movements} == {"caixa"}
        assert [m["tipo"] for m in movements] == ["entrada", "saida"]

        again = await pipeline.process(content, "extrato.ofx", EMPRESA)
        assert again.linhas_duplicadas == 2
        assert await store.count("movimentos_financeiros") == 2


class TestPreviews:

    def test_period_preview(self, ml_sales_csv):
        result = preview_period(ml_sales_csv, "relatorio.csv", 3, 2024)
        assert result.valido is True
        assert result.detalhes.datas_encontradas == 3

    async def test_overlap_before_and_after_import(self, store, ml_sales_csv):
        before = await preview_overlap(store, ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        assert before.percentual_existente == 0
        assert before.alerta is False

        await ImportPipeline(store).process(ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        after = await preview_overlap(store, ml_sales_csv, "relatorio.csv", EMPRESA, "mercado_livre")
        assert after.percentual_existente == 100
        assert after.alerta_nivel == "error"

    @pytest.mark.parametrize("loja, stored_canal", [
        ("Shopee", "shopee"),
        ("Amazon", "amazon"),
    ])
    async def test_overlap_uses_per_row_channel_of_generic_report(self, store, loja, stored_canal):
        content = (
            "Data;Descrição;Valor;Referência;Loja\n"
            f"15/03/2024;Venda 1;100,00;G1;{loja}\n"
            f"16/03/2024;Venda 2;50,00;G2;{loja}\n"
        ).encode("utf-8")
        summary = await ImportPipeline(store).process(content, "vendas.csv", EMPRESA)
        assert summary.linhas_importadas == 2
        rows = await store.find("marketplace_transactions", {"empresa_id": EMPRESA})
        assert {r["canal"] for r in rows} == {stored_canal}

        after = await preview_overlap(store, content, "vendas.csv", EMPRESA)
        assert after.transacoes_amostra == 2
        assert after.percentual_existente == 100
        assert after.alerta_nivel == "error"
