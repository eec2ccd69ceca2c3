"""
Stored record shapes.

Field aliases are the JSON names written to the key-value store, so a record
decoded from storage and encoded again is byte-compatible with what other
clients wrote. Every optional field defaults to None; unknown fields from
older or newer clients are ignored.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    REQUESTER = "Requester"
    BA_TEAM = "BA Team"
    DEV_TEAM = "Dev Team"
    QA_TEAM = "QA Team"


# Roles that can only view change requests
READ_ONLY_ROLES = frozenset({Role.DEV_TEAM, Role.QA_TEAM})


class CRStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class Application(str, Enum):
    WAREHOUSE_MANAGER = "Warehouse Manager"
    API = "API"
    WEB_PORTAL = "Web Portal"
    SUPPORT_TOOL = "Support Tool"
    NOT_SPECIFIED = "Not Specified"


class StoredRecord(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class User(StoredRecord):
    email: str
    full_name: str = ""
    password_hash: Optional[str] = None
    # Plaintext password written by older clients; replaced by password_hash on login
    password: Optional[str] = None
    role: Role = Role.REQUESTER
    registered_at: Optional[str] = None
    status: str = "active"
    password_changed_at: Optional[str] = None


class Session(StoredRecord):
    full_name: str = ""
    email: str
    role: Role
    login_at: Optional[str] = None

    @property
    def is_read_only(self) -> bool:
        return self.role in READ_ONLY_ROLES


class ChangeRequest(StoredRecord):
    id: Optional[str] = None
    cr_code: str = "N/A"
    cr_name: str = "N/A"
    description: str = ""
    application: str = Application.NOT_SPECIFIED.value
    requester: Optional[str] = None
    requester_email: Optional[str] = None
    request_date: Optional[str] = None
    status: CRStatus = CRStatus.PENDING
    approved_date: Optional[str] = None
    approved_by: Optional[str] = None
    rejected_date: Optional[str] = None
    rejected_by: Optional[str] = None
    uat_date: Optional[str] = None
    uat_approved_date: Optional[str] = None
    production_date: Optional[str] = None
    comments: Optional[str] = None
    created_at: Optional[str] = None
    created_by: Optional[str] = None
    updated_at: Optional[str] = None
    updated_by: Optional[str] = None
    cr_document_name: Optional[str] = None
    cr_document_size: Optional[int] = None
    cr_document_type: Optional[str] = None
    cr_document_uploaded_by: Optional[str] = None
    cr_document_uploaded_at: Optional[str] = None

    @field_validator("application", mode="before")
    @classmethod
    def normalize_application(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and v.strip() in ("", "N/A")):
            return Application.NOT_SPECIFIED.value
        return v

    @field_validator("cr_code", "cr_name", mode="before")
    @classmethod
    def default_not_applicable(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "N/A"
        return v

    @property
    def has_document(self) -> bool:
        return self.cr_document_name is not None

    def clear_document(self) -> None:
        self.cr_document_name = None
        self.cr_document_size = None
        self.cr_document_type = None
        self.cr_document_uploaded_by = None
        self.cr_document_uploaded_at = None


class CRDocument(StoredRecord):
    """Attachment blob stored next to its change request"""
    name: str
    type: str
    size: int
    content: str  # base64
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[str] = None
