"""
Tests for the reconciliation state machine.
"""

import pytest

from ecom_finance.pipeline.errors import InsufficientStockError, InvalidTransitionError, NotFoundError
from ecom_finance.pipeline.reconciliation import check_transition, ignore, reconcile, reconcile_batch, reopen
from tests.conftest import add_sale


@pytest.mark.parametrize("current,target", [
    ("importado", "conciliado"),
    ("pendente_sync", "ignorado"),
    ("conciliado", "pendente"),
    ("ignorado", "pendente"),
])
def test_allowed_transitions(current, target):
    check_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("conciliado", "conciliado"),
    ("ignorado", "conciliado"),
    ("importado", "pendente"),
])
def test_rejected_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        check_transition(current, target)


class TestReconcile:

    async def test_writes_movement_and_cmv(self, store, product):
        sale = await add_sale(store, quantidade=2, produto_id=product["id"])
        result = await reconcile(store, sale["id"])

        assert result.status_anterior == "importado"
        assert result.transacao["status"] == "conciliado"
        movement = await store.find_one("movimentos_financeiros", {"id": result.movimento_id})
        assert movement["regime"] == "competencia"
        assert movement["referencia_id"] == sale["id"]
        assert len(result.cmv.processados) == 1

    async def test_blocked_by_stock(self, store, product):
        sale = await add_sale(store, quantidade=10, produto_id=product["id"])
        with pytest.raises(InsufficientStockError) as exc_info:
            await reconcile(store, sale["id"])
        validation = exc_info.value.validation
        assert validation.valido is False
        assert validation.itens[0].estoque_disponivel == 4
        assert validation.itens[0].quantidade_solicitada == 10

        stored = await store.find_one("marketplace_transactions", {"id": sale["id"]})
        assert stored["status"] == "importado"
        assert await store.count("movimentos_financeiros") == 0

    async def test_unknown_transaction(self, store):
        with pytest.raises(NotFoundError):
            await reconcile(store, "00000000-0000-0000-0000-000000000000")


class TestReverse:

    async def test_reopen_removes_effects(self, store, product):
        sale = await add_sale(store, produto_id=product["id"])
        await reconcile(store, sale["id"])
        result = await reopen(store, sale["id"])

        assert result.transacao["status"] == "pendente"
        assert await store.count("movimentos_financeiros") == 0
        assert await store.count("cmv_registros") == 0

        again = await reconcile(store, sale["id"])
        assert again.transacao["status"] == "conciliado"
        assert await store.count("cmv_registros") == 1

    async def test_ignore_reconciled(self, store, product):
        sale = await add_sale(store, produto_id=product["id"])
        await reconcile(store, sale["id"])
        result = await ignore(store, sale["id"])
        assert result.transacao["status"] == "ignorado"
        assert await store.count("movimentos_financeiros") == 0

        with pytest.raises(InvalidTransitionError):
            await reconcile(store, sale["id"])


async def test_batch_accumulates(store, product):
    ok_1 = await add_sale(store, produto_id=product["id"], referencia="T1")
    ok_2 = await add_sale(store, produto_id=product["id"], referencia="T2")
    short = await add_sale(store, quantidade=10, produto_id=product["id"], referencia="T3")

    result = await reconcile_batch(
        store, [ok_1["id"], short["id"], ok_2["id"], "00000000-0000-0000-0000-000000000000"]
    )
    assert result.conciliadas == 2
    assert result.bloqueadas_estoque == 1
    assert result.erros == 1
    assert len(result.mensagens) == 2
