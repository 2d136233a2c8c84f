"""FastAPI dependencies for dependency injection."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from payroll_settlement.services.container import Services


def get_services(request: Request) -> Services:
    """Services built by the application lifespan."""
    return request.app.state.services


def _parse_identity(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_worker_id(x_worker_id: Annotated[str | None, Header()] = None) -> UUID:
    """Extract worker ID from header."""
    return _parse_identity(x_worker_id, "X-Worker-Id")


async def get_admin_id(x_admin_id: Annotated[str | None, Header()] = None) -> UUID:
    """Extract administrator ID from header."""
    return _parse_identity(x_admin_id, "X-Admin-Id")


async def get_organization_id(
    x_organization_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract organization ID from header."""
    return _parse_identity(x_organization_id, "X-Organization-Id")


# Type aliases for cleaner dependency injection
ServicesDep = Annotated[Services, Depends(get_services)]
WorkerId = Annotated[UUID, Depends(get_worker_id)]
AdminId = Annotated[UUID, Depends(get_admin_id)]
OrganizationId = Annotated[UUID, Depends(get_organization_id)]
