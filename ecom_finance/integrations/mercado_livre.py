"""
Mercado Livre REST client (aiohttp).

Covers the calls the back office needs: OAuth code / refresh-token exchange,
order search by last update, and order / shipment / payment lookups.
Non-2xx responses raise IntegrationError (OAuthError for the token endpoint).
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Optional

import aiohttp
import structlog

from ecom_finance.config import settings
from ecom_finance.observability import metrics
from ecom_finance.pipeline.errors import IntegrationError, OAuthError

logger = structlog.get_logger(__name__)

PROVIDER = "mercado_livre"


class MercadoLivreClient:
    """Use as an async context manager so the HTTP session is closed."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        api_url: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[int] = None,
        page_delay: Optional[float] = None,
    ):
        self.access_token = access_token
        self.api_url = (api_url or settings.ML_API_URL).rstrip("/")
        self.token_url = token_url or settings.ML_TOKEN_URL
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.ML_HTTP_TIMEOUT_SECONDS)
        self.page_delay = settings.ML_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "MercadoLivreClient":
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    # ── Transport ────────────────────────────────────────────

    async def _request(self, method: str, url: str, operation: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.access_token and "Authorization" not in headers:
            headers["Authorization"] = f"Bearer {self.access_token}"

        start = time.monotonic()
        try:
            async with self.session.request(method, url, headers=headers, **kwargs) as response:
                if response.status >= 400:
                    body = await response.text()
                    metrics.integration_calls_total.labels(
                        provider=PROVIDER, operation=operation, status="error"
                    ).inc()
                    logger.warning(
                        "ml_api_error", operation=operation, status=response.status, body=body[:500]
                    )
                    raise IntegrationError(
                        f"Mercado Livre {operation} falhou: HTTP {response.status}",
                        status_code=response.status,
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            metrics.integration_calls_total.labels(
                provider=PROVIDER, operation=operation, status="error"
            ).inc()
            raise IntegrationError(f"Mercado Livre {operation} indisponível: {e}") from e
        finally:
            metrics.integration_latency_seconds.labels(
                provider=PROVIDER, operation=operation
            ).observe(time.monotonic() - start)

        metrics.integration_calls_total.labels(
            provider=PROVIDER, operation=operation, status="success"
        ).inc()
        return data

    async def _get(self, path: str, operation: str, params: Optional[dict] = None) -> Any:
        return await self._request("GET", f"{self.api_url}{path}", operation, params=params)

    async def _token(self, form: dict, operation: str) -> dict:
        if not settings.ML_CLIENT_ID or not settings.ML_CLIENT_SECRET:
            raise OAuthError("Credenciais do Mercado Livre não configuradas")
        form = {
            "client_id": settings.ML_CLIENT_ID,
            "client_secret": settings.ML_CLIENT_SECRET,
            **form,
        }
        try:
            return await self._request(
                "POST",
                self.token_url,
                operation,
                data=form,
                headers={"Accept": "application/json"},
            )
        except IntegrationError as e:
            raise OAuthError(e.message, e.status_code) from e

    # ── OAuth ────────────────────────────────────────────────

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> dict:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.ML_REDIRECT_URI or "",
        }
        if code_verifier:
            form["code_verifier"] = code_verifier
        return await self._token(form, "oauth_code")

    async def refresh_token(self, refresh_token: str) -> dict:
        return await self._token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}, "oauth_refresh"
        )

    # ── Orders ───────────────────────────────────────────────

    async def search_orders(
        self,
        seller_id: str,
        updated_since: datetime,
        page_size: Optional[int] = None,
        max_offset: Optional[int] = None,
    ) -> list[dict]:
        """Every order updated since the cutoff, newest first.

        Orders are selected by last update so status changes are picked up.
        The API refuses offsets beyond max_offset; paging stops there.
        """
        page_size = page_size or settings.ML_PAGE_SIZE
        max_offset = max_offset or settings.ML_MAX_OFFSET
        orders: list[dict] = []
        offset = 0
        total = 0
        while True:
            data = await self._get(
                "/orders/search",
                "search_orders",
                params={
                    "seller": seller_id,
                    "order.date_last_updated.from": updated_since.isoformat(),
                    "sort": "date_desc",
                    "offset": offset,
                    "limit": page_size,
                },
            )
            page = data.get("results") or []
            orders.extend(page)
            total = (data.get("paging") or {}).get("total", 0)
            offset += page_size
            if offset >= max_offset:
                logger.warning("ml_offset_limit_reached", loaded=len(orders), available=total)
                break
            if offset >= total or not page:
                break
            await asyncio.sleep(self.page_delay)

        logger.info("ml_orders_fetched", seller_id=seller_id, orders=len(orders), available=total)
        return orders

    async def get_order(self, order_id: str) -> dict:
        return await self._get(f"/orders/{order_id}", "get_order")

    async def get_shipment(self, shipment_id: str) -> dict:
        return await self._get(f"/shipments/{shipment_id}", "get_shipment")

    async def get_payment(self, payment_id: str) -> dict:
        return await self._get(f"/collections/{payment_id}", "get_payment")
