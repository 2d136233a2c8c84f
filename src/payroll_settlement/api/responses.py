"""Operation envelope responses."""

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from payroll_settlement.errors import ErrorKind, OperationResult

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.PAYMENT: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def respond(result: OperationResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render an OperationResult, mapping its error kind to a status code."""
    if result.success:
        code = success_status
    else:
        code = STATUS_BY_KIND.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=result.to_dict())


def dump(schema: type[BaseModel], value: Any) -> Any:
    """Serialize an ORM object (or a list of them) through a response schema."""
    if isinstance(value, list):
        return [schema.model_validate(item).model_dump(mode="json") for item in value]
    return schema.model_validate(value).model_dump(mode="json")
