"""docpipe API layer: routes, schemas and middleware."""

from docpipe.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
    install_error_handlers,
)
from docpipe.api.routes import router
from docpipe.api.schemas import (
    AnswerResponse,
    AskRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    ProcessingRunResponse,
    ProcessingStatusResponse,
    RegisterDocumentRequest,
    ReportRequest,
    StageRequest,
    StageResponse,
)

__all__ = [
    "AnswerResponse",
    "AskRequest",
    "DocumentResponse",
    "ErrorHandlingMiddleware",
    "ErrorResponse",
    "HealthResponse",
    "ProcessingRunResponse",
    "ProcessingStatusResponse",
    "RegisterDocumentRequest",
    "ReportRequest",
    "RequestLoggingMiddleware",
    "StageRequest",
    "StageResponse",
    "configure_cors",
    "install_error_handlers",
    "router",
]
