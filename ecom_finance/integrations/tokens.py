"""
OAuth connection to Mercado Livre (authorization code with PKCE) and token
storage.

The connect flow:
  1. authorization_url() builds the consent URL. The state parameter is
     base64 JSON carrying empresa_id and the PKCE code_verifier.
  2. The provider redirects back with code + state; connect() exchanges the
     code and upserts the tokens on (empresa_id, provider).
Token exchange failures raise OAuthError to the caller.
"""

import base64
import hashlib
import json
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import structlog

from ecom_finance.config import settings
from ecom_finance.integrations.integration_log import write_log
from ecom_finance.integrations.mercado_livre import PROVIDER, MercadoLivreClient
from ecom_finance.models.enums import IntegrationLogStatus
from ecom_finance.pipeline.errors import IntegrationError, OAuthError
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

TOKENS_TABLE = "integracao_tokens"
TOKEN_KEY = ("empresa_id", "provider")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_pkce() -> tuple[str, str]:
    """(code_verifier, S256 code_challenge)."""
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


def encode_state(empresa_id: str, code_verifier: str, frontend_url: Optional[str] = None) -> str:
    payload = {
        "empresa_id": empresa_id,
        "code_verifier": code_verifier,
        "frontend_url": frontend_url,
        "timestamp": int(time.time() * 1000),
    }
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_state(state: str) -> dict:
    try:
        payload = json.loads(base64.b64decode(state.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeError) as e:
        raise OAuthError("State inválido") from e
    if not isinstance(payload, dict) or not payload.get("empresa_id") or not payload.get("code_verifier"):
        raise OAuthError("State inválido")
    return payload


def authorization_url(empresa_id: str, frontend_url: Optional[str] = None) -> str:
    if not settings.ML_CLIENT_ID or not settings.ML_REDIRECT_URI:
        raise OAuthError("Credenciais do Mercado Livre não configuradas")
    verifier, challenge = generate_pkce()
    params = {
        "response_type": "code",
        "client_id": settings.ML_CLIENT_ID,
        "redirect_uri": settings.ML_REDIRECT_URI,
        "state": encode_state(empresa_id, verifier, frontend_url),
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }
    logger.info("oauth_url_built", empresa_id=empresa_id, provider=PROVIDER)
    return f"{settings.ML_AUTH_URL}?{urlencode(params)}"


def expires_at_from(token_data: dict, now: Optional[datetime] = None) -> Optional[datetime]:
    expires_in = token_data.get("expires_in")
    if expires_in is None:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=int(expires_in))


async def save_tokens(store: DataStore, empresa_id: str, token_data: dict, provider: str = PROVIDER) -> Row:
    row = {
        "empresa_id": empresa_id,
        "provider": provider,
        "access_token": token_data["access_token"],
        "refresh_token": token_data.get("refresh_token"),
        "expires_at": expires_at_from(token_data),
        "scope": token_data.get("scope"),
        "atualizado_em": datetime.now(timezone.utc),
    }
    if token_data.get("user_id") is not None:
        row["user_id_provider"] = str(token_data["user_id"])
    saved = (await store.upsert(TOKENS_TABLE, [row], TOKEN_KEY))[0]
    logger.info("tokens_saved", empresa_id=empresa_id, provider=provider, expires_at=row["expires_at"])
    return saved


async def connect(
    store: DataStore,
    code: str,
    state: str,
    client: Optional[MercadoLivreClient] = None,
) -> Row:
    """Finish the OAuth flow for the company named in ``state``."""
    payload = decode_state(state)
    empresa_id = payload["empresa_id"]
    owns_client = client is None
    client = client or MercadoLivreClient()
    try:
        token_data = await client.exchange_code(code, payload["code_verifier"])
    except OAuthError as e:
        await write_log(
            store, empresa_id, PROVIDER, "oauth", IntegrationLogStatus.ERROR,
            f"Falha ao obter tokens do Mercado Livre: {e.message}",
        )
        raise
    finally:
        if owns_client:
            await client.close()

    saved = await save_tokens(store, empresa_id, token_data)
    await write_log(
        store, empresa_id, PROVIDER, "oauth", IntegrationLogStatus.SUCCESS,
        "Conexão OAuth estabelecida com sucesso (PKCE)",
        detalhes={"user_id": token_data.get("user_id"), "scope": token_data.get("scope")},
    )
    return saved


def _is_expired(token: Row, margin_seconds: int) -> bool:
    expires_at = token.get("expires_at")
    if expires_at is None:
        return False
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= datetime.now(timezone.utc) + timedelta(seconds=margin_seconds)


async def get_valid_token(
    store: DataStore,
    empresa_id: str,
    client: Optional[MercadoLivreClient] = None,
    provider: str = PROVIDER,
) -> Row:
    """Stored token for the company, refreshed first when it is about to expire."""
    token = await store.find_one(TOKENS_TABLE, {"empresa_id": empresa_id, "provider": provider})
    if token is None:
        raise IntegrationError("Token do Mercado Livre não encontrado")
    if not _is_expired(token, settings.ML_TOKEN_REFRESH_MARGIN_SECONDS):
        return token
    if not token.get("refresh_token"):
        raise OAuthError("Token expirado e sem refresh_token; reconecte a conta")

    logger.info("token_refreshing", empresa_id=empresa_id, provider=provider)
    owns_client = client is None
    client = client or MercadoLivreClient()
    try:
        token_data = await client.refresh_token(token["refresh_token"])
    finally:
        if owns_client:
            await client.close()
    return await save_tokens(store, empresa_id, token_data, provider)
