"""
Tests for the pre-import overlap sample and check.
"""

from datetime import date

import pytest

from ecom_finance.pipeline.overlap_check import (
    SampleTransaction,
    check_overlap,
    classify_overlap,
    spread_sample,
)
from tests.conftest import EMPRESA


class TestSpreadSample:

    @pytest.mark.parametrize("size", [150, 199, 250, 1000])
    def test_covers_whole_file(self, size):
        items = list(range(size))
        sample = spread_sample(items, 100)
        assert len(sample) == 100
        assert len(set(sample)) == 100
        assert sample[0] == 0
        assert sample[-1] >= size - size // 100 - 1
        assert sample == sorted(sample)

    @pytest.mark.parametrize("size", [0, 1, 99, 100])
    def test_small_files_are_taken_whole(self, size):
        items = list(range(size))
        assert spread_sample(items, 100) == items


class TestClassifyOverlap:

    @pytest.mark.parametrize("percentual, alerta, nivel", [
        (100, True, "error"),
        (95, True, "error"),
        (80, True, "warning"),
        (50, True, "warning"),
        (10, False, "info"),
        (0, False, "info"),
    ])
    def test_levels(self, percentual, alerta, nivel):
        assert classify_overlap(percentual)[:2] == (alerta, nivel)


class TestCheckOverlap:

    async def _store_rows(self, store, canal, refs):
        await store.insert("marketplace_transactions", [{
            "empresa_id": EMPRESA,
            "canal": canal,
            "referencia_externa": ref,
            "data_transacao": date(2024, 3, 15),
            "tipo_transacao": "venda",
            "tipo_lancamento": "credito",
        } for ref in refs])

    async def test_rows_matched_under_their_own_channel(self, store):
        await self._store_rows(store, "shopee", ["S1", "S2"])
        await self._store_rows(store, "amazon", ["A1"])
        sample = [
            SampleTransaction(referencia_externa="S1", canal="shopee"),
            SampleTransaction(referencia_externa="S2", canal="shopee"),
            SampleTransaction(referencia_externa="A1", canal="amazon"),
            SampleTransaction(referencia_externa="N1", canal="amazon"),
        ]
        result = await check_overlap(store, EMPRESA, "outro", sample)
        assert result.transacoes_ja_existentes == 3
        assert result.percentual_existente == 75

    async def test_same_reference_in_other_channel_is_not_a_hit(self, store):
        await self._store_rows(store, "shopee", ["X1"])
        sample = [SampleTransaction(referencia_externa="X1", canal="amazon")]
        result = await check_overlap(store, EMPRESA, "outro", sample)
        assert result.percentual_existente == 0

    async def test_rows_without_channel_use_report_channel(self, store):
        await self._store_rows(store, "mercado_livre", ["T1"])
        sample = [SampleTransaction(referencia_externa="T1", data_transacao=date(2024, 3, 15))]
        result = await check_overlap(store, EMPRESA, "Mercado Livre", sample)
        assert result.percentual_existente == 100
        assert result.alerta_nivel == "error"
        assert result.periodo_detectado.data_inicio == date(2024, 3, 15)

    async def test_empty_sample(self, store):
        result = await check_overlap(store, EMPRESA, "shopee", [])
        assert result.transacoes_amostra == 0
        assert result.alerta is False
