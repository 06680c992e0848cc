from dataclasses import dataclass
from uuid import UUID

from fastapi import Header, HTTPException

# purpose: identity seam; the upstream gateway authenticates and forwards tenant and user ids
# inputs: X-Tenant-Id and X-User-Id request headers
# outputs: SessionContext for route handlers
# status: active


@dataclass(frozen=True)
class SessionContext:
    tenant_id: str
    user_id: str


def get_current_user(
    x_tenant_id: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> SessionContext:
    if not x_tenant_id or not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        tenant = UUID(x_tenant_id)
        user = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid session identity")
    return SessionContext(tenant_id=str(tenant), user_id=str(user))
