"""
PipelineError → HTTPException translation for the routers.
"""

from fastapi import HTTPException, status

from ecom_finance.pipeline.errors import InsufficientStockError, PipelineError

STATUS_BY_CODE = {
    "ERR_FILE_VALIDATION": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "ERR_LEDGER": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "ERR_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ERR_INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "ERR_INSUFFICIENT_STOCK": status.HTTP_409_CONFLICT,
    "ERR_OAUTH": status.HTTP_400_BAD_REQUEST,
    "ERR_INTEGRATION": status.HTTP_502_BAD_GATEWAY,
}


def http_error(error: PipelineError) -> HTTPException:
    detail: dict = {"error_code": error.error_code, "message": error.message}
    if isinstance(error, InsufficientStockError):
        detail["estoque"] = error.validation.model_dump(mode="json")
    return HTTPException(
        status_code=STATUS_BY_CODE.get(error.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=detail,
    )
