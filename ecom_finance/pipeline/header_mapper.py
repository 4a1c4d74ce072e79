"""
Header mapping: logical field assignment for spreadsheet columns.

Every report layout is described as an ordered table of
(logical field -> candidate header aliases). Matching is case-insensitive
substring; for a given field the first alias that matches any header wins,
so aliases are listed most specific first. Adding a marketplace format means
adding a table here, not code.
"""

import re
from typing import Any, Optional, Sequence

import structlog

from ecom_finance.models.enums import ReportType
from ecom_finance.pipeline.date_parser import is_date_like

logger = structlog.get_logger(__name__)

AliasTable = list[tuple[str, list[str]]]
ColumnMap = dict[str, int]

# Headers containing these words never hold a fee amount
FEE_EXCLUDED_TERMS = ["data", "fecha", "date", "período", "periodo", "vencimento"]


# ─── Transaction-level alias tables ──────────────────────────

MERCADO_LIVRE_ALIASES: AliasTable = [
    ("data", ["data da tarifa", "data tarifa", "data da venda", "fecha", "data"]),
    ("tipo", ["tipo de tarifa", "tipo tarifa", "detalhe", "descrição", "descricao", "type"]),
    ("pedido_id", ["número da venda", "numero da venda", "n.º de venda", "order", "pedido", "n° pedido", "pack id"]),
    ("canal_vendas", ["canal de vendas", "canal vendas", "channel", "marketplace"]),
    ("valor_bruto", ["valor da transação", "valor transação", "valor transacao", "valor bruto", "gross"]),
    ("valor_liquido", ["valor líquido", "valor liquido", "subtotal", "net", "total", "valor da tarifa"]),
    ("id_tarifa", ["id da tarifa", "id tarifa", "tarifa id"]),
    ("id_transacao", ["id da transação", "id transação", "transaction id", "id transacao"]),
    ("id_interno", ["id interno", "id único", "id operação", "operation id"]),
    ("anuncio_id", ["mlb", "id do anúncio", "id anúncio", "listing id", "item id", "id do item", "item_id", "publicação"]),
    ("nome_item", ["título do anúncio", "titulo do anuncio", "título", "titulo", "nome do item", "item name", "descrição do produto", "produto"]),
    ("quantidade", ["quantidade", "qty", "quantity", "unidades", "qtd"]),
    ("preco_unitario", ["preço unitário", "preco unitario", "unit price", "valor unitário", "valor unitario"]),
    ("preco_total", ["preço total", "preco total", "total price", "valor total item", "subtotal item"]),
    ("conta_nome", ["conta", "loja", "store", "apelido"]),
    ("tipo_envio", ["forma de entrega", "tipo de envio", "logística", "logistica"]),
]

# Fee columns are resolved with the date/text guard
MERCADO_LIVRE_FEE_ALIASES: AliasTable = [
    ("comissao", ["comissão", "comissao", "commission", "tarifa de venda"]),
    ("tarifa", ["valor da tarifa", "tarifa", "fee", "taxa"]),
    ("frete_vendedor", ["frete", "envio", "shipping", "custo de envio"]),
    ("desconto", ["desconto", "discount", "cupom"]),
    ("ads", ["publicidade", "ads", "anúncios patrocinados"]),
    ("imposto", ["imposto", "impostos", "tax"]),
]

MERCADO_LIVRE_HEADER_MARKERS = ["data da tarifa", "tipo de tarifa", "valor líquido", "número da venda"]

MERCADO_PAGO_ALIASES: AliasTable = [
    ("data", ["date_created", "data de criação", "data da operação", "data", "fecha", "date",
              "data de liberação", "date_approved", "money_release_date"]),
    ("data_repasse", ["money_release_date", "data de liberação", "release date"]),
    ("referencia", ["source_id", "operation_id", "id da operação", "reference", "external_reference",
                    "referência externa"]),
    ("tipo", ["operation_type", "tipo de operação", "transaction_type", "tipo de transação",
              "payment_type", "tipo", "type", "reason"]),
    ("descricao", ["description", "descrição", "descricao", "reason", "motivo", "detail", "detalhe",
                   "item_title", "título"]),
    ("valor_bruto", ["transaction_amount", "valor da transação", "valor bruto", "gross_amount",
                     "total_paid_amount", "valor total", "amount"]),
    ("tarifa", ["fee_amount", "marketplace_fee", "mercadopago_fee", "mp_fee", "taxa mercadopago",
                "tarifa", "comissão", "commission"]),
    ("valor_liquido", ["net_received_amount", "net_credit_amount", "valor líquido recebido",
                       "valor líquido", "net_amount", "valor_liquido", "net", "total received"]),
    ("status", ["status_detail", "status", "situação", "state"]),
    ("pedido_id", ["order_id", "id do pedido", "merchant_order_id", "pedido", "external_reference",
                   "referência externa"]),
]

SHOPEE_ALIASES: AliasTable = [
    ("data", ["data do pedido", "data pedido", "order date", "created date", "data de criação",
              "data da transação", "transaction date", "data de conclusão", "completion date", "data"]),
    ("data_repasse", ["data de liberação", "release date", "data do repasse", "settlement date",
                      "payout date"]),
    ("pedido_id", ["n° do pedido", "numero do pedido", "número do pedido", "order id", "order no",
                   "nº pedido", "id do pedido", "order number", "pedido"]),
    ("id_transacao", ["id da transação", "transaction id", "id transação", "transaction no",
                      "nº transação"]),
    ("tipo", ["tipo de transação", "transaction type", "tipo transação", "type", "tipo",
              "descrição da transação", "transaction description"]),
    ("descricao", ["descrição", "descricao", "description", "motivo", "reason", "detalhes",
                   "details", "observação"]),
    ("nome_produto", ["nome do produto", "product name", "produto", "item name", "nome produto",
                      "título", "title"]),
    ("valor_total", ["valor total do pedido", "order total", "total do pedido", "total amount",
                     "valor bruto", "gross amount", "total"]),
    ("valor_produto", ["preço do produto", "product price", "valor do produto", "unit price",
                       "preço unitário"]),
    ("comissao", ["taxa de comissão", "commission fee", "comissão", "commission", "taxa comissão",
                  "taxa marketplace", "marketplace fee"]),
    ("taxa_transacao", ["taxa de transação", "transaction fee", "taxa transação", "payment fee",
                        "taxa pagamento"]),
    ("taxa_servico", ["taxa de serviço", "service fee", "taxa serviço"]),
    ("frete_vendedor", ["taxa de envio", "shipping fee", "frete", "envio", "custo de envio",
                        "shipping cost", "taxa frete"]),
    ("descontos", ["desconto", "discount", "cupom", "voucher", "promoção", "desconto vendedor",
                   "seller discount", "desconto plataforma"]),
    ("valor_liquido", ["receita do vendedor", "seller earnings", "valor líquido", "net amount",
                       "valor a receber", "payout amount", "earnings", "receita líquida",
                       "net earnings", "ganhos", "seller income"]),
    ("status", ["status do pedido", "order status", "status", "situação", "status da transação",
                "transaction status"]),
    ("sku", ["sku do produto", "product sku", "código sku", "sku code", "sku", "variação", "variation"]),
    ("quantidade", ["quantidade", "qty", "quantity", "qtd", "unidades"]),
]

GENERIC_ALIASES: AliasTable = [
    ("data", ["data da transação", "data do pedido", "data", "date", "fecha", "dia"]),
    ("descricao", ["descrição", "descricao", "histórico", "historico", "description", "detalhe", "memo"]),
    ("valor", ["valor líquido", "valor liquido", "valor", "amount", "total", "net"]),
    ("valor_bruto", ["valor bruto", "gross"]),
    ("tipo", ["tipo de transação", "tipo", "type", "natureza"]),
    ("referencia", ["referência", "referencia", "id da transação", "transaction id", "documento"]),
    ("pedido_id", ["pedido", "order id", "order", "nº pedido"]),
    ("canal", ["canal", "loja", "marketplace", "store"]),
]

HEADER_ALIASES: dict[ReportType, AliasTable] = {
    ReportType.MERCADO_LIVRE: MERCADO_LIVRE_ALIASES,
    ReportType.MERCADO_PAGO: MERCADO_PAGO_ALIASES,
    ReportType.SHOPEE: SHOPEE_ALIASES,
    ReportType.GENERIC: GENERIC_ALIASES,
}


# ─── Item-level alias tables ─────────────────────────────────

ITEM_ALIASES: dict[ReportType, AliasTable] = {
    ReportType.MERCADO_LIVRE: [
        ("sku", ["sku", "código do produto", "mlb"]),
        ("quantidade", ["quantidade", "qty", "unidades"]),
        ("descricao", ["título", "produto", "item", "description"]),
        ("preco_unitario", ["preço unitário", "unit price", "valor unitário"]),
        ("preco_total", ["preço total", "total price", "subtotal"]),
        ("pedido_id", ["número da venda", "numero da venda", "n.º de venda", "order id", "pedido"]),
        ("loja", ["canal de vendas", "loja", "store"]),
    ],
    ReportType.SHOPEE: [
        ("sku", ["sku do produto", "sku referência", "product sku", "sku"]),
        ("quantidade", ["quantidade", "qty"]),
        ("descricao", ["nome do produto", "product name", "título"]),
        ("preco_unitario", ["preço", "price", "valor"]),
        ("pedido_id", ["n° do pedido", "número do pedido", "order id", "id do pedido"]),
        ("loja", ["loja", "shop name", "store"]),
    ],
    ReportType.GENERIC: [
        ("sku", ["sku", "código", "code", "id_produto"]),
        ("quantidade", ["qtd", "quantidade", "qty", "quantity"]),
        ("descricao", ["produto", "item", "descrição", "nome"]),
        ("preco_unitario", ["preço unitário", "valor unitário", "unit price", "preço", "price", "valor", "value"]),
        ("preco_total", ["preço total", "valor total", "total price", "subtotal"]),
        ("pedido_id", ["pedido", "order id", "order", "nº pedido"]),
        ("loja", ["loja", "canal", "marketplace", "store"]),
    ],
}

# Headers that signal an item-level (per SKU) report
ITEM_SKU_HINTS = ["sku", "código do produto", "mlb", "id_produto", "product sku"]
ITEM_QTY_HINTS = ["quantidade", "qty", "quantity", "qtd", "unidades"]


# ─── Matching ────────────────────────────────────────────────

def normalize_header(header: Any) -> str:
    if header is None:
        return ""
    return re.sub(r"\s+", " ", str(header)).strip().lower()


def find_column_index(headers: Sequence[Any], aliases: Sequence[str]) -> int:
    """Index of the first header matching the earliest possible alias, or -1."""
    normalized = [normalize_header(h) for h in headers]
    for alias in aliases:
        needle = alias.lower()
        for idx, header in enumerate(normalized):
            if header and needle in header:
                return idx
    return -1


def _rejects_fee_sample(sample: Any) -> bool:
    if sample is None:
        return False
    text = str(sample).strip()
    if not text:
        return False
    if re.search(r"\d+/\d+/\d+", text) or is_date_like(text):
        return True
    return len(text) > 20 and not re.fullmatch(r"[\d,.\-\s]+", text)


def find_fee_column_index(
    headers: Sequence[Any],
    aliases: Sequence[str],
    sample_row: Optional[Sequence[Any]] = None,
) -> int:
    """Like find_column_index, but never picks a date or free-text column."""
    normalized = [normalize_header(h) for h in headers]
    for alias in aliases:
        needle = alias.lower()
        idx = next(
            (
                i for i, header in enumerate(normalized)
                if header and needle in header
                and not any(term in header for term in FEE_EXCLUDED_TERMS)
            ),
            -1,
        )
        if idx < 0:
            continue
        if sample_row is not None and idx < len(sample_row) and _rejects_fee_sample(sample_row[idx]):
            logger.warning("fee_column_rejected", header=headers[idx], sample=str(sample_row[idx])[:40])
            continue
        return idx
    return -1


def resolve_columns(
    headers: Sequence[Any],
    table: AliasTable,
    fee_table: Optional[AliasTable] = None,
    sample_row: Optional[Sequence[Any]] = None,
) -> ColumnMap:
    """Map each logical field to a column index (-1 when absent)."""
    columns: ColumnMap = {field: find_column_index(headers, aliases) for field, aliases in table}
    for field, aliases in fee_table or []:
        columns[field] = find_fee_column_index(headers, aliases, sample_row)
    return columns


def find_header_row(
    rows: Sequence[Sequence[Any]],
    markers: Optional[Sequence[str]] = None,
    max_rows: int = 30,
) -> int:
    """Index of the header row.

    With markers, the first row containing any marker; otherwise (or when
    no row matches) the first row with at least two non-empty cells.
    """
    limit = min(len(rows), max_rows)
    if markers:
        for i in range(limit):
            cells = [normalize_header(c) for c in rows[i]]
            if any(m in c for m in markers for c in cells if c):
                return i
    for i in range(limit):
        if sum(1 for c in rows[i] if normalize_header(c)) >= 2:
            return i
    return 0


def cell(row: Sequence[Any], idx: int) -> str:
    """Stripped cell text; empty for a missing column."""
    if idx is None or idx < 0 or idx >= len(row):
        return ""
    value = row[idx]
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text.lower() in ("nan", "none", "nat") else text


def has_item_columns(headers: Sequence[Any]) -> bool:
    """True when the report is item-level: a SKU-like and a quantity column."""
    normalized = [normalize_header(h) for h in headers]
    has_sku = any(hint in h for h in normalized for hint in ITEM_SKU_HINTS)
    has_qty = any(hint in h for h in normalized for hint in ITEM_QTY_HINTS)
    return has_sku and has_qty
