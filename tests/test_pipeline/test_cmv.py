"""
Tests for CMV attribution and stock validation.
"""

from decimal import Decimal

from ecom_finance.pipeline.cmv import compute_item_cmv, process_transaction_cmv, recompute_cmv_batch
from ecom_finance.pipeline.stock import validate_transaction_stock
from tests.conftest import EMPRESA, add_sale


class TestComputeItemCmv:

    def test_margin(self):
        item = {"id": "i1", "transaction_id": "t1", "quantidade": 2, "preco_total": Decimal("100.00")}
        cmv = compute_item_cmv(item, "p1", Decimal("30.00"))
        assert cmv.custo_total == Decimal("60.00")
        assert cmv.receita_total == Decimal("100.00")
        assert cmv.margem_bruta == Decimal("40.00")
        assert cmv.margem_percentual == Decimal("40.00")

    def test_revenue_from_unit_price(self):
        item = {"id": "i1", "transaction_id": "t1", "quantidade": 3, "preco_unitario": Decimal("10")}
        assert compute_item_cmv(item, "p1", Decimal("4")).receita_total == Decimal("30.00")

    def test_unknown_revenue(self):
        cmv = compute_item_cmv({"id": "i1", "transaction_id": "t1", "quantidade": 1}, "p1", Decimal("5"))
        assert cmv.margem_bruta is None
        assert cmv.margem_percentual is None


class TestTransactionCmv:

    async def test_costed_once(self, store, product):
        sale = await add_sale(store, quantidade=2, produto_id=product["id"], status="conciliado")
        first = await process_transaction_cmv(store, sale)
        second = await process_transaction_cmv(store, sale)
        assert len(first.processados) == 1
        assert first.processados[0].custo_total == Decimal("60.00")
        assert second.processados == []
        assert second.ja_registrados == 1
        assert await store.count("cmv_registros") == 1

    async def test_unmapped_item(self, store):
        sale = await add_sale(store, sku="NOPE")
        result = await process_transaction_cmv(store, sale)
        assert [u.sku_marketplace for u in result.sem_mapeamento] == ["NOPE"]
        assert await store.count("cmv_registros") == 0

    async def test_batch_is_idempotent(self, store, product):
        await add_sale(store, produto_id=product["id"], status="conciliado", referencia="T1")
        await add_sale(store, quantidade=3, produto_id=product["id"], status="conciliado", referencia="T2")
        await add_sale(store, produto_id=product["id"], status="importado", referencia="T3")

        first = await recompute_cmv_batch(store, EMPRESA)
        total = sum(r["custo_total"] for r in await store.find("cmv_registros"))
        second = await recompute_cmv_batch(store, EMPRESA)

        assert first.transacoes_processadas == 2
        assert first.itens_cmv == 2
        assert second.itens_cmv == 0
        assert total == Decimal("120.00")
        assert sum(r["custo_total"] for r in await store.find("cmv_registros")) == total

    async def test_batch_reports_progress(self, store, product):
        await add_sale(store, produto_id=product["id"], status="conciliado")
        calls = []
        await recompute_cmv_batch(store, EMPRESA, on_progress=lambda done, total: calls.append((done, total)))
        assert calls == [(1, 1)]


class TestStock:

    async def test_shortfall(self, store, product):
        sale = await add_sale(store, quantidade=10, produto_id=product["id"])
        result = await validate_transaction_stock(store, sale["id"])
        assert result.valido is False
        assert len(result.itens) == 1
        assert result.itens[0].estoque_disponivel == Decimal("4")
        assert result.itens[0].quantidade_solicitada == 10
        assert result.itens[0].mensagem == "Estoque insuficiente. Disponível: 4, Necessário: 10"
        assert result.mensagem_geral == "1 item(s) com estoque insuficiente."

    async def test_unlinked_items_do_not_block(self, store):
        sale = await add_sale(store, quantidade=10)
        result = await validate_transaction_stock(store, sale["id"])
        assert result.valido is True
        assert result.itens_sem_vinculacao == 1

    async def test_sku_stock_wins(self, store, product):
        sku = (await store.insert("produto_skus", [{
            "produto_id": product["id"],
            "empresa_id": EMPRESA,
            "codigo_sku": "CAM-AZ-G",
            "estoque_atual": Decimal("20"),
        }]))[0]
        sale = await add_sale(store, quantidade=10)
        await store.update("marketplace_transaction_items", {"transaction_id": sale["id"]}, {"sku_id": sku["id"]})
        result = await validate_transaction_stock(store, sale["id"])
        assert result.valido is True
        assert result.itens[0].produto_nome == "Camiseta Azul - CAM-AZ-G"
