"""
integracao_logs writer. One row per OAuth connect, sync run or webhook event.
"""

from typing import Optional

import structlog

from ecom_finance.models.enums import IntegrationLogStatus
from ecom_finance.storage.repository import DataStore, Row

logger = structlog.get_logger(__name__)

LOGS_TABLE = "integracao_logs"


async def write_log(
    store: DataStore,
    empresa_id: str,
    provider: str,
    tipo: str,
    status: IntegrationLogStatus,
    mensagem: str,
    detalhes: Optional[dict] = None,
    processados: int = 0,
    criados: int = 0,
    atualizados: int = 0,
    erros: int = 0,
    duracao_ms: Optional[int] = None,
) -> Row:
    row = {
        "empresa_id": empresa_id,
        "provider": provider,
        "tipo": tipo,
        "status": status.value,
        "mensagem": mensagem,
        "detalhes": detalhes,
        "registros_processados": processados,
        "registros_criados": criados,
        "registros_atualizados": atualizados,
        "registros_erro": erros,
        "duracao_ms": duracao_ms,
    }
    created = (await store.insert(LOGS_TABLE, [row]))[0]
    logger.info(
        "integration_logged",
        empresa_id=empresa_id,
        provider=provider,
        tipo=tipo,
        status=status.value,
    )
    return created


async def recent_logs(store: DataStore, empresa_id: str, provider: Optional[str] = None, limit: int = 50) -> list[Row]:
    filters = {"empresa_id": empresa_id}
    if provider:
        filters["provider"] = provider
    return await store.find(LOGS_TABLE, filters, order_by="-criado_em", limit=limit)
