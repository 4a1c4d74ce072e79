"""
Item-level (per SKU) report parsing.

Item reports list one product line per row. Lines are grouped by order id
and attached to the order's sale candidate.
"""

from collections import defaultdict
from typing import Optional, Sequence

import structlog

from ecom_finance.models.enums import ReportType, TransactionType
from ecom_finance.pipeline.amount_parser import parse_optional_number
from ecom_finance.pipeline.header_mapper import ITEM_ALIASES, cell, resolve_columns
from ecom_finance.schemas.canonical import CandidateItem, CandidateTransaction

logger = structlog.get_logger(__name__)

NO_ORDER_KEY = "sem_pedido"


def _alias_table(report_type: ReportType):
    return ITEM_ALIASES.get(report_type, ITEM_ALIASES[ReportType.GENERIC])


def parse_items(rows: Sequence[Sequence[str]], report_type: ReportType) -> list[CandidateItem]:
    """Parse item rows. rows[0] is the header row."""
    if not rows:
        return []
    headers = [str(h) for h in rows[0]]
    columns = resolve_columns(headers, _alias_table(report_type))
    if columns.get("sku", -1) < 0:
        return []

    items = []
    for offset, row in enumerate(rows[1:]):
        sku = cell(row, columns["sku"])
        if not sku:
            continue
        quantidade = cell(row, columns.get("quantidade", -1)) or 1
        item = CandidateItem(
            sku_marketplace=sku,
            descricao_item=cell(row, columns.get("descricao", -1)) or sku,
            quantidade=quantidade,
            preco_unitario=parse_optional_number(cell(row, columns.get("preco_unitario", -1))),
            preco_total=parse_optional_number(cell(row, columns.get("preco_total", -1))),
            pedido_id=cell(row, columns.get("pedido_id", -1)) or None,
            loja=cell(row, columns.get("loja", -1)) or None,
            linha_origem=offset + 2,
        )
        if item.preco_total is None and item.preco_unitario is not None:
            item.preco_total = item.preco_unitario * item.quantidade
        items.append(item)
    return items


def group_items_by_order(items: Sequence[CandidateItem]) -> dict[str, list[CandidateItem]]:
    grouped: dict[str, list[CandidateItem]] = defaultdict(list)
    for item in items:
        grouped[item.pedido_id or NO_ORDER_KEY].append(item)
    return dict(grouped)


def _sale_for_order(
    transactions: Sequence[CandidateTransaction], pedido_id: str
) -> Optional[CandidateTransaction]:
    same_order = [t for t in transactions if t.pedido_id == pedido_id]
    for tx in same_order:
        if tx.tipo_transacao == TransactionType.VENDA.value:
            return tx
    return same_order[0] if same_order else None


def attach_items(transactions: Sequence[CandidateTransaction], items: Sequence[CandidateItem]) -> int:
    """Attach grouped items to their order's sale; returns items left without an order."""
    orphaned = 0
    for pedido_id, group in group_items_by_order(items).items():
        target = _sale_for_order(transactions, pedido_id) if pedido_id != NO_ORDER_KEY else None
        if target is None:
            orphaned += len(group)
            continue
        known = {(i.sku_marketplace, i.linha_origem) for i in target.itens}
        target.itens.extend(i for i in group if (i.sku_marketplace, i.linha_origem) not in known)
    if orphaned:
        logger.info("items_without_order", count=orphaned)
    return orphaned
