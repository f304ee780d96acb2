"""FastAPI dependencies for dependency injection."""

from typing import Optional

from fastapi import Header, HTTPException, status


async def get_admin_id(
    x_admin_id: Optional[int] = Header(None, alias="X-Admin-Id"),
) -> int:
    """
    Acting admin id, as forwarded by the authenticating gateway.
    """
    if x_admin_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin identity required",
        )
    return x_admin_id


async def get_applicant_id(
    x_applicant_id: Optional[int] = Header(None, alias="X-Applicant-Id"),
) -> int:
    """Acting applicant id, as forwarded by the authenticating gateway."""
    if x_applicant_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Applicant identity required",
        )
    return x_applicant_id
