"""
/api/v1/reports endpoints.
DRE, receivables aging and export, cash projections and the sales rollup.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ecom_finance.dependencies import get_store, verify_api_key
from ecom_finance.reports.aging import AgingReport, build_aging
from ecom_finance.reports.dre import Dre, load_dre
from ecom_finance.reports.projections import Projections, load_projections
from ecom_finance.reports.receivables_export import (
    build_receivables_csv,
    build_receivables_workbook,
    export_filename,
    load_receivables,
)
from ecom_finance.reports.sales_summary import SalesSummary, load_sales_summary
from ecom_finance.storage.repository import DataStore

router = APIRouter(prefix="/api/v1/reports", tags=["reports"], dependencies=[Depends(verify_api_key)])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/dre", response_model=Dre)
async def dre(
    empresa_id: str = Query(...),
    ano: int = Query(..., ge=2000, le=2100),
    mes: int = Query(..., ge=1, le=12),
    incluir_cmv: bool = Query(True),
    store: DataStore = Depends(get_store),
):
    """Income statement of one month on the accrual regime."""
    return await load_dre(store, empresa_id, ano, mes, include_cmv=incluir_cmv)


@router.get("/aging", response_model=AgingReport)
async def aging(empresa_id: str = Query(...), store: DataStore = Depends(get_store)):
    return build_aging(await load_receivables(store, empresa_id))


@router.get("/projections", response_model=Projections)
async def projections(
    empresa_id: str = Query(...),
    meses: int = Query(6, ge=1, le=24),
    store: DataStore = Depends(get_store),
):
    return await load_projections(store, empresa_id, meses)


@router.get("/sales-summary", response_model=SalesSummary)
async def sales_summary(
    data_inicio: date = Query(...),
    data_fim: date = Query(...),
    empresa_id: Optional[str] = Query(None),
    canal: Optional[str] = Query(None),
    store: DataStore = Depends(get_store),
):
    """Sales totals of a period; without empresa_id every company is included."""
    if data_fim < data_inicio:
        raise HTTPException(status_code=422, detail="data_fim anterior a data_inicio")
    return await load_sales_summary(store, empresa_id, data_inicio, data_fim, canal)


@router.get("/receivables.xlsx")
async def receivables_workbook(
    empresa_id: str = Query(...),
    status: Optional[str] = Query(None),
    incluir_aging: bool = Query(True),
    incluir_clientes: bool = Query(True),
    incluir_previsao: bool = Query(True),
    store: DataStore = Depends(get_store),
):
    contas = await load_receivables(store, empresa_id, status)
    content = build_receivables_workbook(
        contas,
        include_aging=incluir_aging,
        include_clients=incluir_clientes,
        include_forecast=incluir_previsao,
    )
    return _attachment(content, XLSX_MEDIA_TYPE, export_filename("xlsx"))


@router.get("/receivables.csv")
async def receivables_csv(
    empresa_id: str = Query(...),
    status: Optional[str] = Query(None),
    store: DataStore = Depends(get_store),
):
    contas = await load_receivables(store, empresa_id, status)
    return _attachment(build_receivables_csv(contas), "text/csv; charset=utf-8", export_filename("csv"))
