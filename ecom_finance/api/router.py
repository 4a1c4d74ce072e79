"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from ecom_finance.api.cmv import router as cmv_router
from ecom_finance.api.health import router as health_router
from ecom_finance.api.imports import router as imports_router
from ecom_finance.api.integrations import router as integrations_router
from ecom_finance.api.integrations import webhook_router
from ecom_finance.api.jobs import router as jobs_router
from ecom_finance.api.reports import router as reports_router
from ecom_finance.api.sku_mappings import router as sku_mappings_router
from ecom_finance.api.transactions import router as transactions_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(imports_router)
api_router.include_router(transactions_router)
api_router.include_router(sku_mappings_router)
api_router.include_router(cmv_router)
api_router.include_router(reports_router)
api_router.include_router(integrations_router)
api_router.include_router(webhook_router)
api_router.include_router(jobs_router)
