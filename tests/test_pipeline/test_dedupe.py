"""
Tests for natural-key deduplication and merge-fill.
"""

from datetime import date
from decimal import Decimal

import pytest

from ecom_finance.pipeline.dedupe import FILL_IF_EMPTY, MERGE_FIELDS, merge_fill, upsert_transaction
from ecom_finance.pipeline.errors import UniqueViolation
from ecom_finance.pipeline.importer import ImportPipeline
from ecom_finance.schemas.canonical import CandidateItem, CandidateTransaction
from ecom_finance.storage.memory_store import MemoryDataStore
from tests.conftest import EMPRESA


def _candidate(**overrides) -> CandidateTransaction:
    values = dict(
        canal="mercado_livre",
        referencia_externa="T1",
        pedido_id="2000001",
        data_transacao=date(2024, 3, 15),
        descricao="Venda",
        tipo_transacao="venda",
        tipo_lancamento="credito",
        valor_bruto=Decimal("100.00"),
        valor_liquido=Decimal("85.00"),
    )
    values.update(overrides)
    return CandidateTransaction(**values)


class TestMergeFill:

    def test_never_nulls_existing(self):
        existing = {f: Decimal("1") for f in MERGE_FIELDS + FILL_IF_EMPTY}
        incoming = {f: None for f in MERGE_FIELDS + FILL_IF_EMPTY}
        assert merge_fill(existing, incoming) == {}

    def test_latest_non_null_wins(self):
        patch = merge_fill({"comissao": Decimal("10")}, {"comissao": Decimal("12")})
        assert patch == {"comissao": Decimal("12")}

    def test_fill_only_when_empty(self):
        existing = {"valor_bruto": Decimal("100"), "data_repasse": None}
        incoming = {"valor_bruto": Decimal("90"), "data_repasse": date(2024, 4, 1)}
        assert merge_fill(existing, incoming) == {"data_repasse": date(2024, 4, 1)}


class TestUpsert:

    async def test_create_then_merge(self, store):
        first = await upsert_transaction(store, EMPRESA, _candidate(comissao=Decimal("15.00")))
        second = await upsert_transaction(store, EMPRESA, _candidate(frete_vendedor=Decimal("8.00")))
        assert first.created and not second.created
        assert second.transaction_id == first.transaction_id
        assert second.merged_fields == ["frete_vendedor"]

        stored = await store.find_one("marketplace_transactions", {"id": first.transaction_id})
        assert stored["comissao"] == Decimal("15.00")
        assert stored["frete_vendedor"] == Decimal("8.00")

    async def test_direction_is_part_of_key(self, store):
        await upsert_transaction(store, EMPRESA, _candidate())
        outcome = await upsert_transaction(store, EMPRESA, _candidate(tipo_lancamento="debito"))
        assert outcome.created
        assert await store.count("marketplace_transactions") == 2

    async def test_items_not_duplicated_on_merge(self, store):
        item = CandidateItem(sku_marketplace="CAM-AZ", descricao_item="Camiseta Azul", quantidade=2)
        first = await upsert_transaction(store, EMPRESA, _candidate(itens=[item]))
        again = await upsert_transaction(store, EMPRESA, _candidate(itens=[item]))
        assert first.items_added == 1
        assert again.items_added == 0
        items = await store.find("marketplace_transaction_items", {"transaction_id": first.transaction_id})
        assert len(items) == 1
        assert items[0]["empresa_id"] == EMPRESA
        assert items[0]["canal"] == "mercado_livre"


class StaleLookupStore(MemoryDataStore):
    """Transaction lookups miss a row a concurrent import already wrote."""

    def __init__(self, misses: int = 1):
        super().__init__()
        self.misses = misses

    async def find_one(self, table, filters):
        if table == "marketplace_transactions" and self.misses:
            self.misses -= 1
            return None
        return await super().find_one(table, filters)


class TestConcurrentInsert:

    @pytest.mark.parametrize("overrides, field, expected", [
        ({"comissao": Decimal("15.00")}, "comissao", Decimal("15.00")),
        ({"frete_vendedor": Decimal("8.00")}, "frete_vendedor", Decimal("8.00")),
        ({"data_repasse": date(2024, 4, 1)}, "data_repasse", date(2024, 4, 1)),
    ])
    async def test_unique_violation_becomes_merge(self, overrides, field, expected):
        store = StaleLookupStore(misses=0)
        first = await upsert_transaction(store, EMPRESA, _candidate())
        store.misses = 1

        outcome = await upsert_transaction(store, EMPRESA, _candidate(**overrides))
        assert outcome.created is False
        assert outcome.transaction_id == first.transaction_id
        assert outcome.merged_fields == [field]
        assert await store.count("marketplace_transactions") == 1
        stored = await store.find_one("marketplace_transactions", {"id": first.transaction_id})
        assert stored[field] == expected

    async def test_violation_without_visible_row_is_raised(self):
        store = StaleLookupStore(misses=0)
        await upsert_transaction(store, EMPRESA, _candidate())
        store.misses = 2
        with pytest.raises(UniqueViolation):
            await upsert_transaction(store, EMPRESA, _candidate(comissao=Decimal("15.00")))
        assert await store.count("marketplace_transactions") == 1


ML_HEADER = "Data da tarifa;Tipo de tarifa;Número da venda;Valor líquido;ID da tarifa;Comissão;Frete"


async def test_split_report_fields_are_merged(store):
    """Commission from one upload and shipping from another end up on one row."""
    first = "\n".join([
        ML_HEADER,
        "15/03/2024;Venda;2000001;85,00;T1;15,00;",
        "15/03/2024;Venda;2000002;40,00;T2;6,00;",
        "15/03/2024;Venda;2000003;20,00;T3;3,00;",
    ]).encode("utf-8")
    second = "\n".join([
        ML_HEADER,
        "15/03/2024;Venda;2000001;85,00;T1;;8,00",
    ]).encode("utf-8")

    pipeline = ImportPipeline(store)
    await pipeline.process(first, "mercado_livre_marco.csv", EMPRESA)
    summary = await pipeline.process(second, "mercado_livre_marco_envios.csv", EMPRESA)

    assert summary.linhas_importadas == 0
    assert summary.linhas_duplicadas == 1
    rows = await store.find("marketplace_transactions", {"pedido_id": "2000001"})
    assert len(rows) == 1
    assert rows[0]["comissao"] == Decimal("15.00")
    assert rows[0]["frete_vendedor"] == Decimal("8.00")
