"""
Mercado Livre push notifications.

Every notification is acknowledged: failures are written to integracao_logs
and never raised to the caller, which would otherwise retry indefinitely.

Topics:
  orders_v2  fetch the order and upsert a draft sale
  payments   approved payment moves the order's pendente rows to pendente_sync
  others     logged only
"""

from typing import Callable, Optional

import structlog

from ecom_finance.integrations.integration_log import write_log
from ecom_finance.integrations.mercado_livre import PROVIDER, MercadoLivreClient
from ecom_finance.integrations.sync import CANAL, draft_from_order, upsert_order
from ecom_finance.integrations.tokens import TOKENS_TABLE, get_valid_token
from ecom_finance.models.enums import IntegrationLogStatus, TxStatus
from ecom_finance.observability import metrics
from ecom_finance.pipeline.dedupe import TRANSACTIONS_TABLE
from ecom_finance.pipeline.sku_mapping import SkuMappingCache
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[str], MercadoLivreClient]


def _resource_id(resource: str) -> Optional[str]:
    last = resource.rstrip("/").split("/")[-1]
    return last or None


async def process_order(store: DataStore, client: MercadoLivreClient, empresa_id: str, resource: str) -> None:
    order_id = _resource_id(resource)
    if not order_id:
        return
    order = await client.get_order(order_id)
    cache = SkuMappingCache(store, empresa_id, CANAL)
    outcome, _ = await upsert_order(store, empresa_id, draft_from_order(order), cache)
    await write_log(
        store, empresa_id, PROVIDER, "webhook", IntegrationLogStatus.SUCCESS,
        f"Pedido {order_id} salvo como rascunho via webhook",
        processados=1,
        criados=1 if outcome.created else 0,
        atualizados=0 if outcome.created else 1,
    )


async def process_payment(store: DataStore, client: MercadoLivreClient, empresa_id: str, resource: str) -> int:
    payment_id = _resource_id(resource)
    if not payment_id:
        return 0
    payment = await client.get_payment(payment_id)
    if not payment.get("order_id") or payment.get("status") != "approved":
        return 0
    updated = await store.update(
        TRANSACTIONS_TABLE,
        {
            "empresa_id": empresa_id,
            "pedido_id": str(payment["order_id"]),
            "status": TxStatus.PENDENTE.value,
        },
        {"status": TxStatus.PENDENTE_SYNC.value},
    )
    logger.info("ml_payment_approved", payment_id=payment_id, order_id=payment["order_id"], updated=len(updated))
    return len(updated)


async def _dispatch(
    store: DataStore,
    empresa_id: str,
    topic: str,
    resource: str,
    client_factory: ClientFactory,
) -> None:
    if topic not in ("orders_v2", "payments"):
        logger.info("ml_webhook_topic_ignored", topic=topic, resource=resource, empresa_id=empresa_id)
        return
    token = await get_valid_token(store, empresa_id)
    async with client_factory(token["access_token"]) as client:
        if topic == "orders_v2":
            await process_order(store, client, empresa_id, resource)
        else:
            await process_payment(store, client, empresa_id, resource)


async def handle_notification(
    store: DataStore,
    payload: dict,
    client_factory: Optional[ClientFactory] = None,
) -> dict:
    """Process one notification for every company linked to the seller."""
    client_factory = client_factory or (lambda token: MercadoLivreClient(access_token=token))
    resource = payload.get("resource")
    topic = payload.get("topic")
    user_id = payload.get("user_id")
    if not resource or not topic:
        return {"message": "Webhook recebido mas sem dados úteis"}

    try:
        tokens = await store.find(
            TOKENS_TABLE, {"provider": PROVIDER, "user_id_provider": str(user_id)}
        )
    except Exception as e:
        logger.error("ml_webhook_lookup_failed", user_id=user_id, error=str(e))
        return {"message": "Erro processado", "error": str(e)}
    if not tokens:
        logger.warning("ml_webhook_unknown_user", user_id=user_id)
        return {"message": "Usuário não encontrado"}

    for token in tokens:
        empresa_id = token["empresa_id"]
        try:
            await write_log(
                store, empresa_id, PROVIDER, "webhook", IntegrationLogStatus.PENDING,
                f"Webhook {topic}: {resource}",
                detalhes={
                    "resource": resource,
                    "topic": topic,
                    "user_id": user_id,
                    "application_id": payload.get("application_id"),
                },
            )
            await _dispatch(store, empresa_id, topic, resource, client_factory)
        except Exception as e:
            logger.error("ml_webhook_failed", empresa_id=empresa_id, topic=topic, error=str(e))
            metrics.integration_calls_total.labels(
                provider=PROVIDER, operation=f"webhook_{topic}", status="error"
            ).inc()
            try:
                await write_log(
                    store, empresa_id, PROVIDER, "webhook", IntegrationLogStatus.ERROR,
                    f"Erro ao processar webhook {topic}: {e}",
                    detalhes={"resource": resource},
                )
            except Exception as log_error:
                logger.error("ml_webhook_log_failed", empresa_id=empresa_id, error=str(log_error))
            continue
        metrics.integration_calls_total.labels(
            provider=PROVIDER, operation=f"webhook_{topic}", status="success"
        ).inc()

    return {"message": "Webhook processado", "empresas": len(tokens)}
