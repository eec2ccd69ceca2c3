# Pydantic schemas
from crportal.schemas.records import (
    Application,
    ChangeRequest,
    CRDocument,
    CRStatus,
    Role,
    Session,
    User,
)

__all__ = [
    "Application",
    "ChangeRequest",
    "CRDocument",
    "CRStatus",
    "Role",
    "Session",
    "User",
]
