"""
Channel detection - sales channel and report layout identification.
"""

import re
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from ecom_finance.models.enums import Channel, ReportType


class ReportTypeResult(BaseModel):
    report_type: ReportType = ReportType.GENERIC
    confidence: float = 0.0
    signals: list[str] = []


# Store/channel names as they appear in reports and forms.
# Order matters: "mercado pago" must win over the bare "mercado" prefix.
CHANNEL_PATTERNS: list[tuple[Channel, list[str]]] = [
    (Channel.MERCADO_PAGO, [r"mercado\s*_?pago", r"\bmp\b"]),
    (Channel.MERCADO_LIVRE, [r"mercado\s*_?livre", r"\bmeli\b", r"\bml\b", r"^mercado"]),
    (Channel.SHOPEE, [r"shopee"]),
    (Channel.SHEIN, [r"shein"]),
    (Channel.TIKTOK_SHOP, [r"tik\s*_?tok"]),
    (Channel.AMAZON, [r"amazon"]),
    (Channel.MAGALU, [r"magalu", r"magazine\s+luiza"]),
]

# File name fragments, checked before header signatures
FILENAME_PATTERNS: list[tuple[ReportType, list[str]]] = [
    (ReportType.MERCADO_PAGO, ["mercadopago", "mercado_pago", "mp_"]),
    (ReportType.MERCADO_LIVRE, ["mercadolivre", "mercado_livre", "ml_"]),
    (ReportType.SHOPEE, ["shopee"]),
]

# Header fragments characteristic of each layout
HEADER_SIGNATURES: dict[ReportType, list[str]] = {
    ReportType.MERCADO_LIVRE: [
        r"data da tarifa",
        r"tipo de tarifa",
        r"n[úu]mero da venda",
        r"\bmlb\b",
    ],
    ReportType.MERCADO_PAGO: [
        r"net_received_amount",
        r"operation_type",
        r"money_release_date",
        r"transaction_amount",
        r"source_id",
    ],
    ReportType.SHOPEE: [
        r"receita do vendedor",
        r"seller earnings",
        r"taxa de comiss[ãa]o",
        r"n[°º] do pedido",
        r"sku do produto",
    ],
}

CHANNEL_REPORT_TYPES = {
    Channel.MERCADO_LIVRE: ReportType.MERCADO_LIVRE,
    Channel.MERCADO_PAGO: ReportType.MERCADO_PAGO,
    Channel.SHOPEE: ReportType.SHOPEE,
}


def normalize_channel(name: Any) -> str:
    """Map a free-form store/channel label to an internal channel code."""
    if name is None:
        return Channel.OUTRO.value
    text = str(name).strip().lower()
    if not text:
        return Channel.OUTRO.value
    if text in {c.value for c in Channel}:
        return text
    for channel, patterns in CHANNEL_PATTERNS:
        if any(re.search(p, text) for p in patterns):
            return channel.value
    return Channel.OUTRO.value


def detect_report_type(
    filename: Optional[str] = None,
    headers: Optional[Sequence[Any]] = None,
    declared_channel: Optional[str] = None,
) -> ReportTypeResult:
    """
    Decide which parser handles a file.
    File name wins, then header signatures, then the declared channel.
    """
    name = (filename or "").lower()
    for report_type, fragments in FILENAME_PATTERNS:
        hits = [f for f in fragments if f in name]
        if hits:
            return ReportTypeResult(
                report_type=report_type,
                confidence=0.9,
                signals=[f"filename:{h}" for h in hits],
            )

    header_text = " | ".join(str(h).lower() for h in (headers or []) if h is not None)
    best: Optional[ReportType] = None
    best_score = 0.0
    best_signals: list[str] = []
    for report_type, patterns in HEADER_SIGNATURES.items():
        signals = [
            f"{report_type.value}:{p[:30]}"
            for p in patterns if re.search(p, header_text, re.IGNORECASE)
        ]
        if signals:
            score = min(len(signals) * 0.3, 0.85)
            if score > best_score:
                best_score = score
                best = report_type
                best_signals = signals
    if best is not None:
        return ReportTypeResult(report_type=best, confidence=best_score, signals=best_signals)

    channel = normalize_channel(declared_channel)
    report_type = CHANNEL_REPORT_TYPES.get(Channel(channel), ReportType.GENERIC)
    return ReportTypeResult(
        report_type=report_type,
        confidence=0.5 if report_type != ReportType.GENERIC else 0.0,
        signals=[f"declared:{channel}"] if declared_channel else [],
    )


def channel_for_report(report_type: ReportType, declared_channel: Optional[str] = None) -> str:
    """Channel code persisted on transactions parsed with a given layout."""
    if report_type == ReportType.GENERIC:
        return normalize_channel(declared_channel)
    return report_type.value
