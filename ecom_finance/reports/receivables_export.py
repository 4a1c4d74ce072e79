"""
Accounts receivable exports: a five-sheet XLSX workbook and a flat CSV.

Sheets, in order:
  Contas a Receber       full listing
  Aging Report           open amount per aging bucket, with a TOTAL row
  Análise por Cliente    per-client totals, largest first
  Previsão Recebimentos  six months from the current one
  Resumo                 portfolio indicators

Dates are written as dd/mm/yyyy text, money cells carry the "R$" number format.
"""

import io
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import pandas as pd
import structlog
from dateutil.relativedelta import relativedelta
from openpyxl import Workbook
from openpyxl.styles import Font

from ecom_finance.models.enums import ReceivableStatus
from ecom_finance.pipeline.date_parser import month_name_pt
from ecom_finance.reports.aging import BUCKETS, as_date, aging_bucket, days_overdue, is_open
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

CURRENCY_FORMAT = '"R$" #,##0.00'
MISSING = "-"
MAX_COLUMN_WIDTH = 50
FORECAST_MONTHS = 6

STATUS_LABELS = {
    ReceivableStatus.EM_ABERTO.value: "Em Aberto",
    ReceivableStatus.PARCIALMENTE_RECEBIDO.value: "Parcial",
    ReceivableStatus.RECEBIDO.value: "Recebido",
    ReceivableStatus.VENCIDO.value: "Vencido",
    ReceivableStatus.CANCELADO.value: "Cancelado",
}

LISTING_COLUMNS = [
    "Cliente", "Descrição", "Documento", "Origem",
    "Data Emissão", "Data Vencimento", "Data Recebimento",
    "Valor Total", "Valor Recebido", "Valor em Aberto",
    "Status", "Dias Atraso", "Faixa Aging",
    "Categoria", "Centro de Custo", "Empresa",
]
CSV_COLUMNS = [
    "Cliente", "Descrição", "Data Vencimento", "Valor Total",
    "Valor em Aberto", "Status", "Dias Atraso",
]


def format_date_br(value) -> str:
    if not value:
        return MISSING
    return as_date(value).strftime("%d/%m/%Y")


def _money(value) -> Decimal:
    return Decimal(str(value or 0))


def _percent_text(part: Decimal, whole: Decimal) -> str:
    if whole <= 0:
        return "0%"
    return f"{part / whole * 100:.1f}%"


def _is_overdue(conta: dict, today: date) -> bool:
    return is_open(conta) and days_overdue(conta["data_vencimento"], today) > 0


def listing_row(conta: dict, today: date) -> dict:
    overdue = _is_overdue(conta, today)
    status = conta.get("status")
    return {
        "Cliente": conta.get("cliente_nome"),
        "Descrição": conta.get("descricao"),
        "Documento": conta.get("documento") or MISSING,
        "Origem": conta.get("origem") or MISSING,
        "Data Emissão": format_date_br(conta.get("data_emissao")),
        "Data Vencimento": format_date_br(conta.get("data_vencimento")),
        "Data Recebimento": format_date_br(conta.get("data_recebimento")),
        "Valor Total": _money(conta.get("valor_total")),
        "Valor Recebido": _money(conta.get("valor_recebido")),
        "Valor em Aberto": _money(conta.get("valor_em_aberto")),
        "Status": "Vencido" if overdue else STATUS_LABELS.get(status, status),
        "Dias Atraso": days_overdue(conta["data_vencimento"], today) if overdue else 0,
        "Faixa Aging": aging_bucket(conta["data_vencimento"], today, status),
        "Categoria": conta.get("categoria_nome") or MISSING,
        "Centro de Custo": conta.get("centro_custo_nome") or MISSING,
        "Empresa": conta.get("empresa_nome") or MISSING,
    }


def aging_rows(contas: list[dict], today: date) -> list[dict]:
    buckets = OrderedDict((name, [0, Decimal("0")]) for name in BUCKETS)
    for conta in contas:
        if not is_open(conta):
            continue
        bucket = buckets[aging_bucket(conta["data_vencimento"], today)]
        bucket[0] += 1
        bucket[1] += _money(conta.get("valor_em_aberto"))

    total = sum((v for _, v in buckets.values()), Decimal("0"))
    rows = [
        {
            "Faixa de Vencimento": name,
            "Quantidade": count,
            "Valor": value,
            "% do Total": _percent_text(value, total),
        }
        for name, (count, value) in buckets.items()
    ]
    rows.append({
        "Faixa de Vencimento": "TOTAL",
        "Quantidade": sum(c for c, _ in buckets.values()),
        "Valor": total,
        "% do Total": "100%",
    })
    return rows


def client_rows(contas: list[dict], today: date) -> list[dict]:
    clients: dict[str, dict] = {}
    for conta in contas:
        name = conta.get("cliente_nome")
        client = clients.setdefault(name, {
            "Cliente": name,
            "Qtd Títulos": 0,
            "Total": Decimal("0"),
            "Recebido": Decimal("0"),
            "Em Aberto": Decimal("0"),
            "Vencido": Decimal("0"),
        })
        client["Qtd Títulos"] += 1
        client["Total"] += _money(conta.get("valor_total"))
        status = conta.get("status")
        if status == ReceivableStatus.RECEBIDO.value:
            client["Recebido"] += _money(conta.get("valor_total"))
        elif status != ReceivableStatus.CANCELADO.value:
            client["Em Aberto"] += _money(conta.get("valor_em_aberto"))
            if days_overdue(conta["data_vencimento"], today) > 0:
                client["Vencido"] += _money(conta.get("valor_em_aberto"))

    rows = sorted(clients.values(), key=lambda c: c["Total"], reverse=True)
    for row in rows:
        row["% Inadimplência"] = _percent_text(row["Vencido"], row["Total"])
    return rows


def forecast_rows(contas: list[dict], today: date) -> list[dict]:
    months = OrderedDict()
    for i in range(FORECAST_MONTHS):
        month = today.replace(day=1) + relativedelta(months=i)
        months[(month.year, month.month)] = {
            "Mês": f"{month_name_pt(month.month).lower()} de {month.year}",
            "Previsto": Decimal("0"),
            "Recebido": Decimal("0"),
        }

    received_statuses = {ReceivableStatus.RECEBIDO.value, ReceivableStatus.PARCIALMENTE_RECEBIDO.value}
    for conta in contas:
        if is_open(conta):
            due = as_date(conta["data_vencimento"])
            if (due.year, due.month) in months:
                months[(due.year, due.month)]["Previsto"] += _money(conta.get("valor_em_aberto"))
        if conta.get("data_recebimento") and conta.get("status") in received_statuses:
            paid = as_date(conta["data_recebimento"])
            if (paid.year, paid.month) in months:
                months[(paid.year, paid.month)]["Recebido"] += _money(conta.get("valor_recebido"))

    for row in months.values():
        row["Diferença"] = row["Recebido"] - row["Previsto"]
    return list(months.values())


def summary_rows(contas: list[dict], today: date) -> list[dict]:
    open_items = [c for c in contas if is_open(c)]
    total_open = sum((_money(c.get("valor_em_aberto")) for c in open_items), Decimal("0"))
    total_received = sum(
        (_money(c.get("valor_total")) for c in contas if c.get("status") == ReceivableStatus.RECEBIDO.value),
        Decimal("0"),
    )
    total_overdue = sum(
        (_money(c.get("valor_em_aberto")) for c in open_items if days_overdue(c["data_vencimento"], today) > 0),
        Decimal("0"),
    )
    return [
        {"Indicador": "Total de Contas", "Valor": len(contas)},
        {"Indicador": "Total da Carteira", "Valor": sum((_money(c.get("valor_total")) for c in contas), Decimal("0"))},
        {"Indicador": "Total em Aberto", "Valor": total_open},
        {"Indicador": "Total Recebido", "Valor": total_received},
        {"Indicador": "Total Vencido", "Valor": total_overdue},
        {"Indicador": "Taxa de Inadimplência", "Valor": _percent_text(total_overdue, total_open)},
        {"Indicador": "Data do Relatório", "Valor": today.strftime("%d/%m/%Y")},
    ]


def _write_sheet(ws, columns: list[str], rows: list[dict]) -> None:
    header_font = Font(bold=True)
    for col_idx, name in enumerate(columns, 1):
        ws.cell(row=1, column=col_idx, value=name).font = header_font

    for row_idx, row in enumerate(rows, 2):
        for col_idx, name in enumerate(columns, 1):
            value = row.get(name)
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            if isinstance(value, Decimal):
                cell.number_format = CURRENCY_FORMAT

    for col in ws.columns:
        width = max(len(str(cell.value)) for cell in col if cell.value is not None)
        ws.column_dimensions[col[0].column_letter].width = min(width + 2, MAX_COLUMN_WIDTH)


def build_receivables_workbook(
    contas: Iterable[dict],
    today: Optional[date] = None,
    include_aging: bool = True,
    include_clients: bool = True,
    include_forecast: bool = True,
) -> bytes:
    """Render the receivables workbook and return the XLSX bytes."""
    today = today or date.today()
    contas = list(contas)

    wb = Workbook()
    ws = wb.active
    ws.title = "Contas a Receber"
    _write_sheet(ws, LISTING_COLUMNS, [listing_row(c, today) for c in contas])

    if include_aging:
        _write_sheet(
            wb.create_sheet("Aging Report"),
            ["Faixa de Vencimento", "Quantidade", "Valor", "% do Total"],
            aging_rows(contas, today),
        )
    if include_clients:
        _write_sheet(
            wb.create_sheet("Análise por Cliente"),
            ["Cliente", "Qtd Títulos", "Total", "Recebido", "Em Aberto", "Vencido", "% Inadimplência"],
            client_rows(contas, today),
        )
    if include_forecast:
        _write_sheet(
            wb.create_sheet("Previsão Recebimentos"),
            ["Mês", "Previsto", "Recebido", "Diferença"],
            forecast_rows(contas, today),
        )
    _write_sheet(wb.create_sheet("Resumo"), ["Indicador", "Valor"], summary_rows(contas, today))

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.info("receivables_workbook_built", contas=len(contas), sheets=len(wb.sheetnames))
    return buffer.getvalue()


def build_receivables_csv(contas: Iterable[dict], today: Optional[date] = None) -> bytes:
    """Semicolon-separated listing with a UTF-8 BOM for spreadsheet apps."""
    today = today or date.today()
    rows = [listing_row(c, today) for c in contas]
    df = pd.DataFrame(rows, columns=LISTING_COLUMNS)[CSV_COLUMNS]
    return df.to_csv(sep=";", index=False).encode("utf-8-sig")


def export_filename(extension: str, today: Optional[date] = None) -> str:
    return f"contas_receber_{(today or date.today()).isoformat()}.{extension}"


async def load_receivables(
    store: DataStore,
    empresa_id: str,
    status: Optional[str] = None,
) -> list[dict]:
    filters = {"empresa_id": empresa_id}
    if status:
        filters["status"] = status
    return await store.find("contas_receber", filters, order_by="data_vencimento")
