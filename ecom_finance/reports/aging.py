"""
Aging of accounts receivable and delinquency alerts.

days_overdue is the whole number of days between the due date and today.
Due today or later is "A Vencer"; 1 to 30 days late is "1-30 dias"; and so on.
Received and cancelled items are never aged.
"""

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from ecom_finance.models.enums import ReceivableStatus

logger = structlog.get_logger(__name__)

NOT_DUE = "A Vencer"
BUCKETS = (NOT_DUE, "1-30 dias", "31-60 dias", "61-90 dias", "90+ dias")
NOT_APPLICABLE = "N/A"
CLOSED_STATUSES = {ReceivableStatus.RECEBIDO.value, ReceivableStatus.CANCELADO.value}

# Delinquency ratio thresholds (percent of the non-cancelled portfolio)
DELINQUENCY_HIGH = Decimal("20")
DELINQUENCY_CRITICAL = Decimal("30")


class AgingBucket(BaseModel):
    faixa: str
    quantidade: int = 0
    valor: Decimal = Decimal("0")
    percentual: Decimal = Decimal("0")


class AgingAlert(BaseModel):
    titulo: str
    severidade: str                  # medio, alto, critico
    quantidade: int = 0
    valor_total: Decimal = Decimal("0")
    clientes: list[str] = Field(default_factory=list)
    faixa: Optional[str] = None
    percentual_inadimplencia: Optional[Decimal] = None


class AgingReport(BaseModel):
    data_referencia: date
    faixas: list[AgingBucket]
    total_em_aberto: Decimal
    total_vencido: Decimal
    total_carteira: Decimal
    percentual_inadimplencia: Decimal
    alertas: list[AgingAlert] = Field(default_factory=list)


def as_date(value) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])


def days_overdue(due: date, today: Optional[date] = None) -> int:
    return ((today or date.today()) - as_date(due)).days


def is_open(conta: dict) -> bool:
    return conta.get("status") not in CLOSED_STATUSES


def aging_bucket(due: date, today: Optional[date] = None, status: Optional[str] = None) -> str:
    if status in CLOSED_STATUSES:
        return NOT_APPLICABLE
    days = days_overdue(due, today)
    if days <= 0:
        return NOT_DUE
    if days <= 30:
        return "1-30 dias"
    if days <= 60:
        return "31-60 dias"
    if days <= 90:
        return "61-90 dias"
    return "90+ dias"


def _money(value) -> Decimal:
    return Decimal(str(value or 0))


def delinquency_severity(percent: Decimal) -> Optional[str]:
    if percent > DELINQUENCY_CRITICAL:
        return "critico"
    if percent > DELINQUENCY_HIGH:
        return "alto"
    return None


def _band_alert(contas: list[dict], titulo: str, severidade: str, faixa: str) -> Optional[AgingAlert]:
    if not contas:
        return None
    return AgingAlert(
        titulo=titulo,
        severidade=severidade,
        quantidade=len(contas),
        valor_total=sum((_money(c.get("valor_em_aberto")) for c in contas), Decimal("0")),
        clientes=list(OrderedDict.fromkeys(c.get("cliente_nome") for c in contas)),
        faixa=faixa,
    )


def build_aging(contas: Iterable[dict], today: Optional[date] = None) -> AgingReport:
    today = today or date.today()
    contas = list(contas)
    buckets = OrderedDict((name, AgingBucket(faixa=name)) for name in BUCKETS)

    open_items = [c for c in contas if is_open(c)]
    overdue = []
    for conta in open_items:
        bucket = buckets[aging_bucket(conta["data_vencimento"], today)]
        bucket.quantidade += 1
        bucket.valor += _money(conta.get("valor_em_aberto"))
        if days_overdue(conta["data_vencimento"], today) > 0:
            overdue.append(conta)

    total_open = sum((b.valor for b in buckets.values()), Decimal("0"))
    for bucket in buckets.values():
        if total_open > 0:
            bucket.percentual = (bucket.valor / total_open * 100).quantize(Decimal("0.1"))

    total_overdue = sum((_money(c.get("valor_em_aberto")) for c in overdue), Decimal("0"))
    portfolio = sum(
        (_money(c.get("valor_total")) for c in contas if c.get("status") != ReceivableStatus.CANCELADO.value),
        Decimal("0"),
    )
    ratio = (total_overdue / portfolio * 100).quantize(Decimal("0.1")) if portfolio > 0 else Decimal("0")

    def late(low: int, high: Optional[int]) -> list[dict]:
        return [
            c for c in overdue
            if days_overdue(c["data_vencimento"], today) > low
            and (high is None or days_overdue(c["data_vencimento"], today) <= high)
        ]

    alerts = [
        _band_alert(late(90, None), "Inadimplência Crítica (+90 dias)", "critico", "90+"),
        _band_alert(late(60, 90), "Inadimplência Alta (60-90 dias)", "alto", "60-90"),
        _band_alert(late(30, 60), "Atenção: Inadimplência (30-60 dias)", "medio", "30-60"),
    ]
    severity = delinquency_severity(ratio) if overdue else None
    if severity:
        alerts.append(AgingAlert(
            titulo="Taxa de Inadimplência Elevada",
            severidade=severity,
            quantidade=len(overdue),
            valor_total=total_overdue,
            percentual_inadimplencia=ratio,
        ))

    report = AgingReport(
        data_referencia=today,
        faixas=list(buckets.values()),
        total_em_aberto=total_open,
        total_vencido=total_overdue,
        total_carteira=portfolio,
        percentual_inadimplencia=ratio,
        alertas=[a for a in alerts if a is not None],
    )
    if report.alertas:
        logger.info("aging_alerts", alerts=len(report.alertas), delinquency=str(ratio))
    return report
