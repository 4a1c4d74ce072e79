"""
Tests for regime classification and the unified ledger.
"""

from datetime import date
from decimal import Decimal

import pytest

from ecom_finance.pipeline.errors import LedgerError
from ecom_finance.pipeline.ledger import MovementInput, movement_for_transaction, register_movement, remove_movement
from ecom_finance.pipeline.regime import determine_regime, partition
from tests.conftest import EMPRESA


@pytest.mark.parametrize("origem,tipo,expected", [
    ("marketplace", "venda", "competencia"),
    ("marketplace", "estorno", "competencia"),
    ("marketplace", "repasse", "caixa"),
    ("marketplace", "tarifa_marketplace", "caixa"),
    ("banco", "credit", "caixa"),
    ("cartao", "pagamento_fatura", "caixa"),
    ("cartao", "compra", "competencia"),
    ("contas_pagar", None, "caixa"),
    ("manual", None, "caixa"),
])
def test_determine_regime(origem, tipo, expected):
    assert determine_regime(origem, tipo) == expected


def test_partition_has_no_overlap():
    movements = [{"regime": "caixa"}, {"regime": "competencia"}, {"regime": "caixa"}]
    caixa, competencia = partition(movements)
    assert len(caixa) == 2
    assert len(competencia) == 1


def _movement(**overrides) -> MovementInput:
    values = dict(
        data=date(2024, 3, 15),
        tipo="entrada",
        origem="manual",
        descricao="Aporte",
        valor=Decimal("100.00"),
        empresa_id=EMPRESA,
        referencia_id="ref-1",
    )
    values.update(overrides)
    return MovementInput(**values)


class TestRegisterMovement:

    async def test_upsert_by_reference_and_origin(self, store):
        await register_movement(store, _movement())
        updated = await register_movement(store, _movement(valor=Decimal("120.00")))
        assert updated["valor"] == Decimal("120.00")
        assert await store.count("movimentos_financeiros") == 1

    async def test_same_reference_other_origin(self, store):
        await register_movement(store, _movement())
        await register_movement(store, _movement(origem="banco"))
        assert await store.count("movimentos_financeiros") == 2

    async def test_regime_is_derived(self, store):
        saved = await register_movement(store, _movement(origem="marketplace", tipo_transacao="venda"))
        assert saved["regime"] == "competencia"

    @pytest.mark.parametrize("overrides", [
        {"data": None},
        {"valor": Decimal("0")},
        {"empresa_id": None},
        {"tipo": "transferencia"},
    ])
    async def test_validation(self, store, overrides):
        with pytest.raises(LedgerError):
            await register_movement(store, _movement(**overrides))

    async def test_remove(self, store):
        await register_movement(store, _movement())
        assert await remove_movement(store, "ref-1", "manual") == 1
        assert await remove_movement(store, "ref-1", "manual") == 0


def test_movement_for_transaction():
    transaction = {
        "id": "tx-1",
        "empresa_id": EMPRESA,
        "canal": "shopee",
        "pedido_id": "900001",
        "data_transacao": date(2024, 3, 15),
        "tipo_transacao": "venda",
        "tipo_lancamento": "credito",
        "descricao": "Venda",
        "valor_liquido": Decimal("105.60"),
        "valor_bruto": Decimal("120.00"),
    }
    movement = movement_for_transaction(transaction)
    assert movement.tipo == "entrada"
    assert movement.valor == Decimal("105.60")
    assert movement.referencia_id == "tx-1"
    assert movement.origem == "marketplace"

    assert movement_for_transaction({**transaction, "valor_liquido": None, "valor_bruto": None}) is None
