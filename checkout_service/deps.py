import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from . import db


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_correlation_id(x_correlation_id: Optional[str] = Header(None)):
    return x_correlation_id or str(uuid.uuid4())


def get_db():
    s = db.SessionLocal()
    try:
        yield s
    finally:
        s.close()


# Identity is established by the gateway in front of this service.
def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    cid: str = Depends(get_correlation_id),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(401, {"code": "AUTHENTICATION_REQUIRED", "correlationId": cid})
    return CurrentUser(id=x_user_id, email=x_user_email, role=x_user_role or "customer")


def require_admin(
    user: CurrentUser = Depends(get_current_user),
    cid: str = Depends(get_correlation_id),
) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(403, {"code": "ADMIN_REQUIRED", "correlationId": cid})
    return user
