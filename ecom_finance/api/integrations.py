"""
/api/v1/integrations/mercado-livre endpoints.
OAuth connection, order sync, push notifications and the integration log.

The webhook lives on its own router: Mercado Livre cannot send the API key,
and it must always receive a 200.
"""

from typing import Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from ecom_finance.api.errors import http_error
from ecom_finance.dependencies import get_store, verify_api_key
from ecom_finance.integrations.integration_log import recent_logs
from ecom_finance.integrations.mercado_livre import PROVIDER
from ecom_finance.integrations.sync import sync_orders
from ecom_finance.integrations.tokens import authorization_url, connect, decode_state
from ecom_finance.integrations.webhook import handle_notification
from ecom_finance.pipeline.errors import OAuthError, PipelineError
from ecom_finance.schemas.integrations import (
    OAuthCallbackRequest,
    OAuthCallbackResponse,
    OAuthStartRequest,
    OAuthStartResponse,
    SyncRequest,
    WebhookNotification,
)
from ecom_finance.schemas.jobs import EnqueuedJob
from ecom_finance.storage.repository import DataStore

logger = structlog.get_logger(__name__)

PREFIX = "/api/v1/integrations/mercado-livre"

router = APIRouter(prefix=PREFIX, tags=["integrations"], dependencies=[Depends(verify_api_key)])
webhook_router = APIRouter(prefix=PREFIX, tags=["integrations"])


@router.post("/oauth/start", response_model=OAuthStartResponse)
async def oauth_start(body: OAuthStartRequest):
    """Authorization URL with a PKCE challenge for the company."""
    try:
        return OAuthStartResponse(auth_url=authorization_url(body.empresa_id, body.frontend_url))
    except PipelineError as e:
        raise http_error(e)


@router.post("/oauth/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(body: OAuthCallbackRequest, store: DataStore = Depends(get_store)):
    try:
        saved = await connect(store, body.code, body.state)
    except PipelineError as e:
        raise http_error(e)
    return OAuthCallbackResponse(
        empresa_id=saved["empresa_id"],
        provider=saved["provider"],
        user_id_provider=saved.get("user_id_provider"),
    )


@webhook_router.get("/oauth/callback")
async def oauth_redirect_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    store: DataStore = Depends(get_store),
):
    """Browser redirect target: finish the flow and send the user back to the frontend."""
    frontend_url = None
    if state:
        try:
            frontend_url = decode_state(state).get("frontend_url")
        except OAuthError:
            frontend_url = None

    outcome = {"ml_connected": "true"}
    if error or not code or not state:
        outcome = {"ml_connected": "false", "error": error or "missing_code"}
    else:
        try:
            await connect(store, code, state)
        except PipelineError as e:
            logger.warning("oauth_callback_failed", error=e.message)
            outcome = {"ml_connected": "false", "error": e.message}

    if not frontend_url:
        if outcome["ml_connected"] != "true":
            raise http_error(OAuthError(outcome["error"]))
        return outcome
    separator = "&" if "?" in frontend_url else "?"
    return RedirectResponse(f"{frontend_url}{separator}{urlencode(outcome)}")


@router.post("/sync", response_model=EnqueuedJob)
async def sync(body: SyncRequest, store: DataStore = Depends(get_store)):
    """Import orders updated in the last days_back days."""
    try:
        from ecom_finance.worker.jobs import enqueue_sync
        return EnqueuedJob(rq_job_id=enqueue_sync(body.empresa_id, body.days_back), enfileirado=True)
    except Exception as e:
        logger.warning("enqueue_failed_running_inline", empresa_id=body.empresa_id, error=str(e))
    try:
        summary = await sync_orders(store, body.empresa_id, body.days_back)
    except PipelineError as e:
        raise http_error(e)
    return EnqueuedJob(enfileirado=False, resultado=summary.model_dump(mode="json"))


@webhook_router.post("/webhook")
async def webhook(request: Request, store: DataStore = Depends(get_store)):
    """Push notification receiver. Always answers 200, even for malformed bodies."""
    try:
        body = WebhookNotification.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning("ml_webhook_malformed", error=str(e)[:200])
        body = WebhookNotification()
    logger.info("ml_webhook_received", topic=body.topic, resource=body.resource, user_id=body.user_id)
    return await handle_notification(store, body.model_dump())


@router.get("/logs")
async def logs(
    empresa_id: str = Query(...),
    limit: int = Query(50, ge=1, le=200),
    store: DataStore = Depends(get_store),
):
    return await recent_logs(store, empresa_id, PROVIDER, limit)
