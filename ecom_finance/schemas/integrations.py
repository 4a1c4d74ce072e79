"""
Pydantic schemas for the marketplace integration endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field


class OAuthStartRequest(BaseModel):
    empresa_id: str
    frontend_url: Optional[str] = None


class OAuthStartResponse(BaseModel):
    auth_url: str
    message: str = "Redirecione o usuário para esta URL"


class OAuthCallbackRequest(BaseModel):
    code: str
    state: str


class OAuthCallbackResponse(BaseModel):
    empresa_id: str
    provider: str
    user_id_provider: Optional[str] = None
    success: bool = True


class SyncRequest(BaseModel):
    empresa_id: str
    days_back: Optional[int] = Field(default=None, ge=1, le=365)


class WebhookNotification(BaseModel):
    """Mercado Livre notification body. Unknown fields are kept."""
    resource: Optional[str] = None
    topic: Optional[str] = None
    user_id: Optional[int | str] = None
    application_id: Optional[int | str] = None

    model_config = {"extra": "allow"}
