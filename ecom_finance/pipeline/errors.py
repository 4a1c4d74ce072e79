"""
Error taxonomy shared by the import, reconciliation and integration flows.

Only file-level problems and explicit user actions raise; row-level problems
are accumulated by the callers and reported in aggregate.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base error carrying a machine-readable code."""
    def __init__(self, message: str, error_code: str = "ERR_PIPELINE"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class FileValidationError(PipelineError):
    """The file as a whole cannot be imported; nothing is persisted."""
    def __init__(self, message: str):
        super().__init__(message, "ERR_FILE_VALIDATION")


class RowParseError(PipelineError):
    """A single row is malformed. Counted and skipped."""
    def __init__(self, message: str, row_number: Optional[int] = None):
        self.row_number = row_number
        super().__init__(message, "ERR_ROW_PARSE")


class UniqueViolation(PipelineError):
    """Natural-key conflict reported by the data store (SQLSTATE 23505)."""
    def __init__(self, table: str, key: Optional[dict] = None):
        self.table = table
        self.key = key or {}
        super().__init__(f"duplicate key on {table}: {self.key}", "ERR_UNIQUE")


class InvalidTransitionError(PipelineError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Transição de status inválida: {current} → {target}",
            "ERR_INVALID_TRANSITION",
        )


class InsufficientStockError(PipelineError):
    def __init__(self, validation: Any):
        self.validation = validation
        super().__init__(validation.mensagem_geral, "ERR_INSUFFICIENT_STOCK")


class LedgerError(PipelineError):
    def __init__(self, message: str):
        super().__init__(message, "ERR_LEDGER")


class NotFoundError(PipelineError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} não encontrado: {entity_id}", "ERR_NOT_FOUND")


class IntegrationError(PipelineError):
    """Marketplace API failure. Logged, never surfaced to webhook callers."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, "ERR_INTEGRATION")


class OAuthError(IntegrationError):
    """Token exchange failure; propagates to the interactive connect flow."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.error_code = "ERR_OAUTH"
