"""API dependencies - request context and database session"""
from dataclasses import dataclass
from typing import Annotated, Callable
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from src.agency_csv.database import SessionLocal, get_db

ADMIN_ROLES = {"owner", "admin"}
IMPORT_ROLES = {"owner", "admin", "agency"}


@dataclass(frozen=True)
class RequestContext:
    """Caller identity; authentication happens upstream and is trusted here"""
    tenant_id: str
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def get_request_context(
    x_tenant_id: str = Header(..., description="Tenant (agency) of the caller"),
    x_user_id: str = Header(..., description="Authenticated user id"),
    x_user_role: str = Header(default="agency", description="Role of the caller")
) -> RequestContext:
    if not x_tenant_id.strip() or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Tenant and user are required")
    return RequestContext(
        tenant_id=x_tenant_id.strip(),
        user_id=x_user_id.strip(),
        role=x_user_role.strip().lower(),
    )


def require_import_access(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    if context.role not in IMPORT_ROLES:
        raise HTTPException(status_code=403, detail="You do not have permission to import or export data")
    return context


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


CurrentContext = Annotated[RequestContext, Depends(get_request_context)]
ImporterContext = Annotated[RequestContext, Depends(require_import_access)]
DbSession = Annotated[Session, Depends(get_db)]
SessionFactory = Annotated[Callable[[], Session], Depends(get_session_factory)]
