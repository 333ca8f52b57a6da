from typing import Any, Generic, TypeVar

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

T = TypeVar("T")


class DomainError(HTTPException):
    """Base for every rejection the core produces. ``code`` is stable, ``detail`` is human text."""
    code = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.code)


class Unauthorized(DomainError):
    code = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(DomainError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(DomainError):
    # Also raised for ids that exist in someone else's workspace.
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(DomainError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class SlugTaken(Conflict):
    code = "slug_taken"


class LinkInactive(DomainError):
    code = "link_inactive"
    status_code = status.HTTP_409_CONFLICT


class DepthExceeded(DomainError):
    code = "depth_exceeded"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class CyclicMove(DomainError):
    code = "cyclic_move"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ValidationFailed(DomainError):
    code = "validation_failed"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class StorageError(DomainError):
    code = "storage_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class TransactionFailed(DomainError):
    code = "transaction_failed"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ResultWarning(BaseModel):
    code: str
    message: str


def external_sync_warning(message: str) -> ResultWarning:
    return ResultWarning(code="external_sync_warning", message=message)


class ActionResult(BaseModel, Generic[T]):
    success: bool = True
    data: T | None = None
    warnings: list[ResultWarning] = []


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": {"code": exc.code, "message": exc.detail}}
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)
