"""
SKU mapping: channel SKU / listing id → internal product.

Resolution order for a sold item:
  1. the item already carries a product or SKU id
  2. listing id (+ variation) in the mapping cache
  3. channel SKU in the mapping cache
  4. channel SKU equal to an internal SKU code (mapping sku_interno)
Anything else is "unmapped": a pending mapping row is queued for a human and
the item is kept, but excluded from CMV and stock effects.

The cache is an explicit object scoped to one (company, channel). It is
loaded lazily, written through on every new mapping and must not be reused
for another tenant.
"""

import re
from collections import Counter
from typing import Optional

import structlog
from pydantic import BaseModel

from ecom_finance.config import settings
from ecom_finance.models.enums import SkuMappingStatus
from ecom_finance.observability import metrics
from ecom_finance.schemas.canonical import CandidateItem
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

MAPPING_TABLE = "produto_marketplace_map"
ITEMS_TABLE = "marketplace_transaction_items"
MAPPING_KEY = ("empresa_id", "canal", "sku_marketplace")

_MLB_RE = re.compile(r"MLB\d+")
_LONG_DIGITS_RE = re.compile(r"^\d{10,}$")


def extract_listing_id(value: Optional[str]) -> Optional[str]:
    """'mlb123' → 'MLB123'; a bare 10+ digit id is returned as is."""
    if not value:
        return None
    text = str(value).strip().upper()
    match = _MLB_RE.search(text)
    if match:
        return match.group(0)
    if _LONG_DIGITS_RE.match(text):
        return text
    return None


def _key(*parts: Optional[str]) -> str:
    return "|".join(p or "" for p in parts).lower()


class ResolvedProduct(BaseModel):
    produto_id: Optional[str] = None
    sku_id: Optional[str] = None
    sku_interno: Optional[str] = None
    origem: str = "nenhum"          # item, anuncio, sku_marketplace, sku_interno, nenhum

    @property
    def linked(self) -> bool:
        return bool(self.produto_id or self.sku_id)


class SkuMappingCache:
    """Read-through / write-through mapping cache for one company and channel."""

    def __init__(self, store: DataStore, empresa_id: str, canal: str):
        self.store = store
        self.empresa_id = empresa_id
        self.canal = canal
        self._loaded = False
        self._by_listing: dict[str, Row] = {}
        self._by_sku: dict[str, Row] = {}
        self._by_internal: dict[str, Row] = {}

    def ensure_scope(self, empresa_id: str, canal: str) -> None:
        if (empresa_id, canal) != (self.empresa_id, self.canal):
            raise ValueError(
                f"SKU mapping cache for {self.empresa_id}:{self.canal} "
                f"cannot serve {empresa_id}:{canal}"
            )

    def invalidate(self) -> None:
        self._loaded = False
        self._by_listing.clear()
        self._by_sku.clear()
        self._by_internal.clear()

    async def load(self) -> None:
        if self._loaded:
            return
        rows = await self.store.find(
            MAPPING_TABLE, {"empresa_id": self.empresa_id, "canal": self.canal, "ativo": True}
        )
        for row in rows:
            self.remember(row)
        self._loaded = True
        logger.debug("sku_cache_loaded", empresa_id=self.empresa_id, canal=self.canal, mappings=len(rows))

    def remember(self, row: Row) -> None:
        """Index one mapping row. Pending rows (no product) are indexed too
        so the pending queue is not re-queried for every item."""
        if row.get("anuncio_id"):
            self._by_listing[_key(row["anuncio_id"], row.get("variacao_id"))] = row
            self._by_listing.setdefault(_key(row["anuncio_id"], None), row)
        if row.get("sku_marketplace"):
            self._by_sku[_key(row["sku_marketplace"])] = row
        if row.get("sku_interno") and (row.get("produto_id") or row.get("sku_id")):
            self._by_internal[_key(row["sku_interno"])] = row

    def knows(self, sku_marketplace: Optional[str]) -> bool:
        return bool(sku_marketplace) and _key(sku_marketplace) in self._by_sku

    async def resolve(
        self,
        sku_marketplace: Optional[str],
        anuncio_id: Optional[str] = None,
        variacao_id: Optional[str] = None,
    ) -> ResolvedProduct:
        await self.load()
        candidates = []
        if anuncio_id:
            candidates.append(("anuncio", self._by_listing.get(_key(anuncio_id, variacao_id))))
            candidates.append(("anuncio", self._by_listing.get(_key(anuncio_id, None))))
        if sku_marketplace:
            candidates.append(("sku_marketplace", self._by_sku.get(_key(sku_marketplace))))
            candidates.append(("sku_interno", self._by_internal.get(_key(sku_marketplace))))

        for origem, row in candidates:
            if row and (row.get("produto_id") or row.get("sku_id")):
                return ResolvedProduct(
                    produto_id=row.get("produto_id"),
                    sku_id=row.get("sku_id"),
                    sku_interno=row.get("sku_interno"),
                    origem=origem,
                )
        return ResolvedProduct(sku_interno=sku_marketplace or anuncio_id)


# ── Single item resolution ───────────────────────────────────

async def _auto_match(store: DataStore, empresa_id: str, sku_marketplace: str) -> Optional[Row]:
    """Channel SKU that is literally an internal SKU code or product SKU."""
    sku = await store.find_one("produto_skus", {"empresa_id": empresa_id, "codigo_sku": sku_marketplace})
    if sku:
        return {"produto_id": sku["produto_id"], "sku_id": sku["id"], "sku_interno": sku["codigo_sku"]}
    product = await store.find_one(
        "produtos", {"empresa_id": empresa_id, "sku": sku_marketplace, "ativo": True}
    )
    if product:
        return {"produto_id": product["id"], "sku_id": None, "sku_interno": product["sku"]}
    return None


async def ensure_pending_mapping(
    cache: SkuMappingCache, item: CandidateItem
) -> Optional[Row]:
    """Queue an unseen channel SKU. Idempotent: conflicts are ignored.

    When the channel SKU matches an internal code the mapping is created
    already linked with status "auto".
    """
    sku_marketplace = item.sku_marketplace or item.anuncio_id
    if not sku_marketplace or cache.knows(sku_marketplace):
        return None

    match = await _auto_match(cache.store, cache.empresa_id, sku_marketplace)
    row = {
        "empresa_id": cache.empresa_id,
        "canal": cache.canal,
        "sku_marketplace": sku_marketplace,
        "anuncio_id": item.anuncio_id,
        "variacao_id": item.variacao_id,
        "rotulo": item.descricao_item,
        "status": SkuMappingStatus.AUTO.value if match else SkuMappingStatus.PENDENTE.value,
        "ativo": True,
        **(match or {}),
    }
    created = await cache.store.upsert(MAPPING_TABLE, [row], MAPPING_KEY, ignore_duplicates=True)
    # Remember even when ignored so the same SKU is not retried for every row
    cache.remember(created[0] if created else row)
    if created:
        logger.info(
            "sku_mapping_queued",
            empresa_id=cache.empresa_id,
            canal=cache.canal,
            sku=sku_marketplace,
            status=row["status"],
        )
    return created[0] if created else None


async def resolve_item(cache: SkuMappingCache, item: CandidateItem) -> bool:
    """Fill produto_id / sku_id on a candidate item. True when linked."""
    if item.produto_id or item.sku_id:
        return True
    resolved = await cache.resolve(item.sku_marketplace, item.anuncio_id, item.variacao_id)
    if not resolved.linked:
        await ensure_pending_mapping(cache, item)
        resolved = await cache.resolve(item.sku_marketplace, item.anuncio_id, item.variacao_id)
    if resolved.linked:
        item.produto_id = resolved.produto_id
        item.sku_id = resolved.sku_id
        return True
    return False


# ── Human mapping action ─────────────────────────────────────

class MappingResult(BaseModel):
    mapeamento: dict
    itens_atualizados: int = 0


async def _link_historical_items(
    store: DataStore,
    empresa_id: str,
    canal: str,
    sku_marketplace: str,
    produto_id: Optional[str],
    sku_id: Optional[str],
) -> int:
    patch = {"produto_id": produto_id, "sku_id": sku_id}
    updated = await store.update(
        ITEMS_TABLE,
        {
            "empresa_id": empresa_id,
            "canal": canal,
            "sku_marketplace": sku_marketplace,
            "produto_id": None,
            "sku_id": None,
        },
        patch,
    )
    ids = {r["id"] for r in updated}
    listing = extract_listing_id(sku_marketplace)
    if listing:
        by_listing = await store.update(
            ITEMS_TABLE,
            {"empresa_id": empresa_id, "canal": canal, "anuncio_id": listing, "produto_id": None, "sku_id": None},
            patch,
        )
        ids.update(r["id"] for r in by_listing)
    return len(ids)


async def map_sku(
    store: DataStore,
    empresa_id: str,
    canal: str,
    sku_marketplace: str,
    produto_id: str,
    sku_id: Optional[str] = None,
    rotulo: Optional[str] = None,
    cache: Optional[SkuMappingCache] = None,
) -> MappingResult:
    """Confirm a mapping and link every historical unlinked item sharing it.

    Re-running with the same input only fills remaining gaps.
    """
    row = {
        "empresa_id": empresa_id,
        "canal": canal,
        "sku_marketplace": sku_marketplace,
        "produto_id": produto_id,
        "sku_id": sku_id,
        "status": SkuMappingStatus.CONFIRMADO.value,
        "ativo": True,
    }
    listing = extract_listing_id(sku_marketplace)
    if listing:
        row["anuncio_id"] = listing
    if sku_id:
        sku = await store.find_one("produto_skus", {"id": sku_id})
        if sku:
            row["sku_interno"] = sku["codigo_sku"]
    if rotulo:
        row["rotulo"] = rotulo
    saved = (await store.upsert(MAPPING_TABLE, [row], MAPPING_KEY))[0]

    updated = await _link_historical_items(store, empresa_id, canal, sku_marketplace, produto_id, sku_id)
    if cache is not None:
        cache.ensure_scope(empresa_id, canal)
        cache.remember(saved)

    logger.info(
        "sku_mapped",
        empresa_id=empresa_id,
        canal=canal,
        sku=sku_marketplace,
        produto_id=produto_id,
        items_updated=updated,
    )
    return MappingResult(mapeamento=saved, itens_atualizados=updated)


async def reprocess_mappings(store: DataStore, empresa_id: str) -> dict:
    """Apply every linked mapping of a company to its unlinked items again."""
    mappings = await store.find(
        MAPPING_TABLE, {"empresa_id": empresa_id, "ativo": True, "produto_id__isnull": False}
    )
    updated = 0
    for mapping in mappings:
        updated += await _link_historical_items(
            store,
            empresa_id,
            mapping["canal"],
            mapping["sku_marketplace"],
            mapping["produto_id"],
            mapping.get("sku_id"),
        )
    logger.info("sku_mappings_reprocessed", empresa_id=empresa_id, mappings=len(mappings), items_updated=updated)
    return {"mapeamentos": len(mappings), "itens_atualizados": updated}


async def pending_mappings(store: DataStore, empresa_id: str, canal: Optional[str] = None) -> list[Row]:
    filters = {"empresa_id": empresa_id, "produto_id": None, "sku_id": None, "ativo": True}
    if canal:
        filters["canal"] = canal
    pending = await store.find(MAPPING_TABLE, filters, order_by="-criado_em")
    by_channel = Counter(row["canal"] for row in pending)
    for channel in ([canal] if canal else by_channel):
        metrics.unmapped_skus.labels(canal=channel).set(by_channel.get(channel, 0))
    return pending


# ── Backfill ─────────────────────────────────────────────────

async def backfill_unlinked_items(
    store: DataStore,
    empresa_id: str,
    canal: str,
    batch_size: Optional[int] = None,
    limit: int = 5000,
) -> dict:
    """Resolve historical unlinked items through the current mappings."""
    batch_size = batch_size or settings.SKU_BACKFILL_BATCH_SIZE
    cache = SkuMappingCache(store, empresa_id, canal)
    items = await store.find(
        ITEMS_TABLE,
        {"empresa_id": empresa_id, "canal": canal, "produto_id": None, "sku_id": None},
        limit=limit,
    )
    result = {"atualizados": 0, "sem_mapeamento": 0, "erros": 0}

    for start in range(0, len(items), batch_size):
        for item in items[start:start + batch_size]:
            resolved = await cache.resolve(
                item.get("sku_marketplace"), item.get("anuncio_id"), item.get("variacao_id")
            )
            if not resolved.linked:
                result["sem_mapeamento"] += 1
                continue
            updated = await store.update(
                ITEMS_TABLE,
                {"id": item["id"]},
                {"produto_id": resolved.produto_id, "sku_id": resolved.sku_id},
            )
            if updated:
                result["atualizados"] += 1
            else:
                result["erros"] += 1
        logger.debug("sku_backfill_batch", empresa_id=empresa_id, canal=canal, offset=start)

    logger.info("sku_backfill_finished", empresa_id=empresa_id, canal=canal, **result)
    return result
