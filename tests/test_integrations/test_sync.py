"""
Tests for the Mercado Livre order sync.
"""

from decimal import Decimal

import pytest

from ecom_finance.integrations.sync import draft_from_order, order_to_candidate, sync_orders
from ecom_finance.integrations.tokens import save_tokens
from ecom_finance.integrations.webhook import handle_notification
from ecom_finance.pipeline.errors import IntegrationError


def paid_order(order_id=2000001, status="paid"):
    return {
        "id": order_id,
        "status": status,
        "date_created": "2024-03-15T10:20:00.000-03:00",
        "date_closed": "2024-03-15T10:25:00.000-03:00",
        "total_amount": 120.0,
        "buyer": {"nickname": "COMPRADOR1"},
        "shipping": {"id": 44001},
        "payments": [{"marketplace_fee": 14.4}, {"marketplace_fee": 1.6}],
        "order_items": [{
            "item": {"id": "MLB123", "title": "Camiseta Azul M", "seller_sku": "CAM-AZ"},
            "quantity": 2,
            "unit_price": 60.0,
        }],
    }


class FakeOrdersClient:
    def __init__(self, orders, shipments=None, failing_shipments=()):
        self.access_token = None
        self.orders = orders
        self.shipments = shipments or {}
        self.failing_shipments = set(failing_shipments)
        self.searched = []

    async def search_orders(self, user_id, since):
        self.searched.append((user_id, since))
        return self.orders

    async def get_shipment(self, shipment_id):
        if shipment_id in self.failing_shipments:
            raise IntegrationError("shipment indisponível", status_code=404)
        return self.shipments.get(shipment_id, {})

    async def close(self):
        pass


class FakeWebhookClient:
    def __init__(self, order):
        self.order = order

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def get_order(self, order_id):
        return self.order


@pytest.fixture
async def connected(store, empresa_id):
    return await save_tokens(store, empresa_id, {
        "access_token": "APP_USR-1", "refresh_token": "TG-1", "expires_in": 21600, "user_id": 777,
    })


class TestOrderToCandidate:

    def test_fee_and_shipping_math(self):
        shipment = {"sender_cost": 18.5, "receiver_cost": 0, "logistic_type": "fulfillment"}
        candidate = order_to_candidate(paid_order(), shipment)

        assert candidate.valor_bruto == Decimal("120.0")
        assert candidate.comissao == Decimal("16.0")
        assert candidate.frete_vendedor == Decimal("18.5")
        assert candidate.valor_liquido == Decimal("85.5")
        assert candidate.tipo_envio == "full"
        assert candidate.status == "importado"
        assert candidate.data_transacao.isoformat() == "2024-03-15"
        assert candidate.itens[0].preco_total == Decimal("120.0")

    def test_shipping_falls_back_to_order_cost(self):
        order = paid_order()
        order["shipping"]["cost"] = 9.9
        candidate = order_to_candidate(order, None)
        assert candidate.frete_vendedor == Decimal("9.9")
        assert candidate.tipo_envio is None

    def test_unpaid_order_is_pending(self):
        assert order_to_candidate(paid_order(status="confirmed")).status == "pendente"

    def test_draft_leaves_fees_empty(self):
        draft = draft_from_order(paid_order())
        assert draft.status == "pendente_sync"
        assert draft.comissao is None
        assert draft.valor_liquido is None
        assert "COMPRADOR1" in draft.descricao


class TestSyncOrders:

    async def test_creates_then_updates(self, store, empresa_id, connected):
        client = FakeOrdersClient([paid_order()], {"44001": {"sender_cost": 18.5, "logistic_type": "fulfillment"}})

        first = await sync_orders(store, empresa_id, days_back=7, client=client)
        second = await sync_orders(store, empresa_id, days_back=7, client=client)

        assert client.access_token == "APP_USR-1"
        assert client.searched[0][0] == "777"
        assert (first.registros_criados, first.registros_atualizados) == (1, 0)
        assert (second.registros_criados, second.registros_atualizados) == (0, 1)
        assert first.shipping_extraidos == 1
        assert await store.count("marketplace_transactions", {"empresa_id": empresa_id}) == 1
        assert await store.count("marketplace_transaction_items", {"empresa_id": empresa_id}) == 1

    async def test_links_known_sku(self, store, empresa_id, connected, product):
        client = FakeOrdersClient([paid_order()])
        summary = await sync_orders(store, empresa_id, client=client)

        assert summary.itens_vinculados == 1
        item = await store.find_one("marketplace_transaction_items", {"empresa_id": empresa_id})
        assert item["produto_id"] == product["id"]

    async def test_shipment_failure_does_not_fail_order(self, store, empresa_id, connected):
        client = FakeOrdersClient([paid_order()], failing_shipments={"44001"})
        summary = await sync_orders(store, empresa_id, client=client)

        assert summary.registros_criados == 1
        assert summary.registros_erro == 0

    async def test_bad_order_is_counted(self, store, empresa_id, connected):
        broken = paid_order(order_id=2000002)
        broken.pop("date_created")
        broken.pop("date_closed")
        client = FakeOrdersClient([paid_order(), broken])

        summary = await sync_orders(store, empresa_id, client=client)

        assert summary.registros_criados == 1
        assert summary.registros_erro == 1
        log = (await store.find("integracao_logs", {"empresa_id": empresa_id, "tipo": "sync"}))[0]
        assert log["status"] == "partial"

    async def test_without_connection(self, store, empresa_id):
        with pytest.raises(IntegrationError):
            await sync_orders(store, empresa_id, client=FakeOrdersClient([]))
        log = await store.find_one("integracao_logs", {"empresa_id": empresa_id})
        assert log["status"] == "error"

    async def test_completes_webhook_draft(self, store, empresa_id, connected):
        order = paid_order()
        await handle_notification(
            store,
            {"resource": "/orders/2000001", "topic": "orders_v2", "user_id": 777},
            client_factory=lambda token: FakeWebhookClient(order),
        )
        draft = await store.find_one("marketplace_transactions", {"empresa_id": empresa_id})
        assert draft["status"] == "pendente_sync"
        assert draft["valor_liquido"] is None

        await sync_orders(store, empresa_id, client=FakeOrdersClient([order], {"44001": {"sender_cost": 18.5}}))

        sale = await store.find_one("marketplace_transactions", {"id": draft["id"]})
        assert sale["status"] == "importado"
        assert sale["comissao"] == Decimal("16.0")
        assert sale["valor_liquido"] == Decimal("85.5")
