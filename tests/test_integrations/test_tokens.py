"""
Tests for the PKCE OAuth flow and token refresh.
"""

import base64
import hashlib
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from ecom_finance.config import settings
from ecom_finance.integrations import tokens
from ecom_finance.integrations.tokens import (
    TOKENS_TABLE,
    authorization_url,
    connect,
    decode_state,
    encode_state,
    generate_pkce,
    get_valid_token,
    save_tokens,
)
from ecom_finance.pipeline.errors import IntegrationError, OAuthError


class FakeOAuthClient:
    def __init__(self):
        self.exchanged = []
        self.refreshed = []

    async def exchange_code(self, code, code_verifier=None):
        self.exchanged.append((code, code_verifier))
        return {
            "access_token": "APP_USR-new",
            "refresh_token": "TG-refresh",
            "expires_in": 21600,
            "user_id": 123456,
            "scope": "offline_access read",
        }

    async def refresh_token(self, refresh_token):
        self.refreshed.append(refresh_token)
        return {"access_token": "APP_USR-refreshed", "refresh_token": "TG-next", "expires_in": 21600}


def test_pkce_challenge_is_s256_of_verifier():
    verifier, challenge = generate_pkce()
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    assert challenge == base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    assert "=" not in verifier


def test_state_round_trip(empresa_id):
    state = encode_state(empresa_id, "verifier-abc", "https://app.example.com")
    payload = decode_state(state)
    assert payload["empresa_id"] == empresa_id
    assert payload["code_verifier"] == "verifier-abc"
    assert payload["frontend_url"] == "https://app.example.com"


@pytest.mark.parametrize("state", ["not-base64!!", base64.b64encode(b'{"empresa_id": "x"}').decode()])
def test_bad_state_rejected(state):
    with pytest.raises(OAuthError):
        decode_state(state)


def test_authorization_url(monkeypatch, empresa_id):
    monkeypatch.setattr(settings, "ML_CLIENT_ID", "client-1")
    monkeypatch.setattr(settings, "ML_REDIRECT_URI", "https://api.example.com/callback")

    url = authorization_url(empresa_id)
    query = parse_qs(urlparse(url).query)

    assert url.startswith(settings.ML_AUTH_URL)
    assert query["client_id"] == ["client-1"]
    assert query["code_challenge_method"] == ["S256"]
    assert decode_state(query["state"][0])["empresa_id"] == empresa_id


def test_authorization_url_requires_credentials(monkeypatch, empresa_id):
    monkeypatch.setattr(settings, "ML_CLIENT_ID", None)
    with pytest.raises(OAuthError):
        authorization_url(empresa_id)


async def test_save_tokens_upserts_per_company(store, empresa_id):
    await save_tokens(store, empresa_id, {"access_token": "a", "expires_in": 60, "user_id": 1})
    await save_tokens(store, empresa_id, {"access_token": "b", "expires_in": 60, "user_id": 1})

    rows = await store.find(TOKENS_TABLE, {"empresa_id": empresa_id})
    assert len(rows) == 1
    assert rows[0]["access_token"] == "b"
    assert rows[0]["user_id_provider"] == "1"


async def test_connect_exchanges_code_with_verifier(store, empresa_id):
    client = FakeOAuthClient()
    saved = await connect(store, "CODE-1", encode_state(empresa_id, "verifier-xyz"), client=client)

    assert client.exchanged == [("CODE-1", "verifier-xyz")]
    assert saved["access_token"] == "APP_USR-new"
    assert saved["user_id_provider"] == "123456"
    logs = await store.find("integracao_logs", {"empresa_id": empresa_id})
    assert [log["status"] for log in logs] == ["success"]


async def test_valid_token_is_returned_without_refresh(store, empresa_id):
    await save_tokens(store, empresa_id, {"access_token": "fresh", "refresh_token": "r", "expires_in": 21600})
    client = FakeOAuthClient()

    token = await get_valid_token(store, empresa_id, client)

    assert token["access_token"] == "fresh"
    assert client.refreshed == []


async def test_expiring_token_is_refreshed(store, empresa_id):
    # inside the refresh margin
    await save_tokens(store, empresa_id, {"access_token": "old", "refresh_token": "TG-old", "expires_in": 60})
    client = FakeOAuthClient()

    token = await get_valid_token(store, empresa_id, client)

    assert client.refreshed == ["TG-old"]
    assert token["access_token"] == "APP_USR-refreshed"
    assert token["expires_at"] > datetime.now(timezone.utc) + timedelta(hours=5)


async def test_expired_without_refresh_token(store, empresa_id):
    await save_tokens(store, empresa_id, {"access_token": "old", "expires_in": 0})
    with pytest.raises(OAuthError):
        await get_valid_token(store, empresa_id, FakeOAuthClient())


async def test_missing_token(store, empresa_id):
    with pytest.raises(IntegrationError):
        await get_valid_token(store, empresa_id, FakeOAuthClient())


def test_expires_at_from():
    now = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
    assert tokens.expires_at_from({"expires_in": 3600}, now) == now + timedelta(hours=1)
    assert tokens.expires_at_from({}, now) is None
