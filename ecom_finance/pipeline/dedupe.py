"""
Deduplication and merge-fill of marketplace transactions.

Natural key: (empresa_id, canal, referencia_externa, tipo_transacao,
tipo_lancamento). A candidate whose key already exists is never inserted
again; instead its complementary fields are merged into the stored row:

  - a MERGE_FIELDS value is written only when the incoming value is not None
    (the most recent non-null value wins)
  - a FILL_IF_EMPTY value is written only when the stored value is None

A unique violation raised by the store during insert (concurrent imports of
the same data) is converted into a merge.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from ecom_finance.pipeline.errors import UniqueViolation
from ecom_finance.schemas.canonical import CandidateItem, CandidateTransaction
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

TRANSACTIONS_TABLE = "marketplace_transactions"
ITEMS_TABLE = "marketplace_transaction_items"

MERGE_FIELDS = (
    "comissao",
    "tarifa",
    "frete_vendedor",
    "ads",
    "imposto",
    "conta_nome",
    "tipo_envio",
)
FILL_IF_EMPTY = (
    "pedido_id",
    "data_repasse",
    "frete_comprador",
    "outros_descontos",
    "valor_bruto",
    "valor_liquido",
)


class UpsertOutcome(BaseModel):
    transaction_id: str
    created: bool
    merged_fields: list[str] = []
    items_added: int = 0


def merge_fill(existing: Row, incoming: Row) -> Row:
    """Patch to apply to ``existing``. Never contains a None value."""
    patch: Row = {}
    for field in MERGE_FIELDS:
        value = incoming.get(field)
        if value is not None and value != existing.get(field):
            patch[field] = value
    for field in FILL_IF_EMPTY:
        value = incoming.get(field)
        if value is not None and existing.get(field) is None:
            patch[field] = value
    return patch


def natural_key_filter(empresa_id: str, candidate: CandidateTransaction) -> dict:
    canal, referencia, tipo, lancamento = candidate.natural_key()
    return {
        "empresa_id": empresa_id,
        "canal": canal,
        "referencia_externa": referencia,
        "tipo_transacao": tipo,
        "tipo_lancamento": lancamento,
    }


def _item_identity(item: Row) -> tuple:
    return (
        (item.get("sku_marketplace") or "").lower(),
        (item.get("anuncio_id") or "").lower(),
        (item.get("descricao_item") or "").lower(),
    )


async def persist_items(
    store: DataStore,
    transaction: Row,
    items: list[CandidateItem],
    only_new: bool = False,
) -> int:
    """Insert candidate items under a stored transaction.

    With ``only_new`` items already stored for the transaction (same SKU,
    listing and description) are skipped, so re-imports add nothing.
    """
    if not items:
        return 0
    rows = [i.to_row(transaction["id"], transaction["empresa_id"], transaction["canal"]) for i in items]
    if only_new:
        stored = await store.find(ITEMS_TABLE, {"transaction_id": transaction["id"]})
        known = {_item_identity(r) for r in stored}
        rows = [r for r in rows if _item_identity(r) not in known]
    if not rows:
        return 0
    await store.insert(ITEMS_TABLE, rows)
    return len(rows)


async def merge_into(
    store: DataStore, existing: Row, candidate: CandidateTransaction
) -> list[str]:
    patch = merge_fill(existing, candidate.model_dump(exclude={"itens"}))
    if patch:
        await store.update(TRANSACTIONS_TABLE, {"id": existing["id"]}, patch)
        logger.debug(
            "transaction_merged",
            transaction_id=existing["id"],
            referencia=existing.get("referencia_externa"),
            fields=sorted(patch),
        )
    return sorted(patch)


async def upsert_transaction(
    store: DataStore,
    empresa_id: str,
    candidate: CandidateTransaction,
    import_job_id: Optional[str] = None,
) -> UpsertOutcome:
    """Create the transaction or merge it into the stored one with the same key."""
    key = natural_key_filter(empresa_id, candidate)
    existing = await store.find_one(TRANSACTIONS_TABLE, key)

    if existing is None:
        try:
            created = (await store.insert(TRANSACTIONS_TABLE, [candidate.to_row(empresa_id, import_job_id)]))[0]
        except UniqueViolation:
            # Lost a race with a concurrent import of the same data
            existing = await store.find_one(TRANSACTIONS_TABLE, key)
            if existing is None:
                raise
            logger.info("unique_violation_merged", referencia=candidate.referencia_externa)
        else:
            added = await persist_items(store, created, candidate.itens)
            return UpsertOutcome(transaction_id=created["id"], created=True, items_added=added)

    fields = await merge_into(store, existing, candidate)
    added = await persist_items(store, existing, candidate.itens, only_new=True)
    return UpsertOutcome(
        transaction_id=existing["id"], created=False, merged_fields=fields, items_added=added
    )
