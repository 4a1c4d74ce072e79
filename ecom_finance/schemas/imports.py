"""
Pydantic request/response schemas for the /api/v1/imports endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, computed_field

from ecom_finance.pipeline.importer import ImportSummary


class ImportUploadResponse(BaseModel):
    """Response after uploading a report."""
    job_id: str
    arquivo_nome: str
    status: str
    enfileirado: bool
    rq_job_id: Optional[str] = None
    resumo: Optional[ImportSummary] = None
    message: str = "Arquivo recebido. Importação em processamento."


class ImportJobResponse(BaseModel):
    """Progress record of one import."""
    id: str
    empresa_id: str
    canal: Optional[str] = None
    arquivo_nome: str
    total_linhas: int = 0
    linhas_processadas: int = 0
    linhas_importadas: int = 0
    linhas_duplicadas: int = 0
    linhas_com_erro: int = 0
    status: str
    mensagem_erro: Optional[str] = None
    criado_em: Optional[datetime] = None
    atualizado_em: Optional[datetime] = None
    finalizado_em: Optional[datetime] = None

    @computed_field
    @property
    def progresso(self) -> float:
        if not self.total_linhas:
            return 0.0
        return round(self.linhas_processadas / self.total_linhas * 100, 1)


class ImportJobListResponse(BaseModel):
    jobs: list[ImportJobResponse]
    total: int
