"""
FastAPI dependencies (DB session, tenant)
"""
from fastapi import Header, HTTPException, status

from subwallet.infrastructure.db.session import get_db as _get_db


# Re-export get_db for routers
get_db = _get_db


def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """
    Tenant of the caller, set by the identity gateway in X-Tenant-Id

    Raises:
        HTTPException(401): header missing or blank

    Usage:
        @router.get("/budgets")
        def list_budgets(tenant_id: str = Depends(get_tenant_id)):
            ...
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Tenant-Id header is required"
        )
    return x_tenant_id.strip()
