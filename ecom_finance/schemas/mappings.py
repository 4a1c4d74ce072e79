"""
Pydantic schemas for SKU mapping endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MapSkuRequest(BaseModel):
    empresa_id: str
    canal: str
    sku_marketplace: str = Field(min_length=1)
    produto_id: str
    sku_id: Optional[str] = None
    rotulo: Optional[str] = None


class SkuMappingResponse(BaseModel):
    id: str
    empresa_id: str
    canal: str
    sku_marketplace: str
    anuncio_id: Optional[str] = None
    variacao_id: Optional[str] = None
    rotulo: Optional[str] = None
    produto_id: Optional[str] = None
    sku_id: Optional[str] = None
    sku_interno: Optional[str] = None
    status: str
    ativo: bool = True
    criado_em: Optional[datetime] = None


class MapSkuResponse(BaseModel):
    mapeamento: SkuMappingResponse
    itens_atualizados: int


class BackfillRequest(BaseModel):
    empresa_id: str
    canal: str
    limit: int = Field(default=5000, ge=1, le=50000)
