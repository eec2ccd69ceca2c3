"""
Change-Request Repository

Each change request is stored under cr:<id>, where the id is its CR code or,
when none was given, the creation time in epoch milliseconds. The id never
changes, even when the CR code is edited later. cr:list holds every id and
an attached Word document lives under cr:<id>:document.
"""

import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from crportal.core.config import settings
from crportal.core.exceptions import (
    ChangeRequestNotFoundError,
    DocumentNotFoundError,
    DuplicateCRCodeError,
    PermissionDeniedError,
    RecordDecodeError,
    StorageError,
    ValidationError,
)
from crportal.core.kv_store import KeyValueStore, get_store
from crportal.core.logging_config import logger, set_cr_id
from crportal.schemas.change_request import ChangeRequestInput
from crportal.schemas.records import (
    Application,
    ChangeRequest,
    CRDocument,
    CRStatus,
    Role,
    Session,
)
from crportal.services.record_codec import (
    decode_index,
    decode_record,
    encode_document_content,
    encode_index,
    encode_record,
    utc_timestamp,
    utc_today,
)


CR_KEY_PREFIX = "cr:"
CR_INDEX_KEY = "cr:list"
DOCUMENT_KEY_SUFFIX = ":document"

ALLOWED_DOCUMENT_TYPES = frozenset({
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})

MAX_CR_CODE_LENGTH = 50
MAX_CR_NAME_LENGTH = 100
MIN_DESCRIPTION_LENGTH = 10
MAX_COMMENTS_LENGTH = 300

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
DATE_FIELDS = {
    "uat_date": "uatDate",
    "uat_approved_date": "uatApprovedDate",
    "production_date": "productionDate",
}
EDITABLE_FIELDS = frozenset({
    "cr_code", "cr_name", "description", "application", "comments", *DATE_FIELDS,
})

# Status choices offered to everyone except BA Team, keyed by current status
STATUS_OPTIONS = {
    CRStatus.PENDING: (CRStatus.PENDING, CRStatus.APPROVED, CRStatus.REJECTED),
    CRStatus.APPROVED: (CRStatus.APPROVED, CRStatus.PENDING),
    CRStatus.REJECTED: (CRStatus.REJECTED, CRStatus.PENDING),
    CRStatus.IN_PROGRESS: (CRStatus.IN_PROGRESS,),
    CRStatus.COMPLETED: (CRStatus.COMPLETED,),
}


def is_reserved_id(value: str) -> bool:
    """True for ids that would address the index or a document blob instead of a record"""
    return value == "list" or ":" in value


def cr_key(cr_id: str) -> str:
    return f"{CR_KEY_PREFIX}{cr_id}"


def document_key(cr_id: str) -> str:
    return f"{CR_KEY_PREFIX}{cr_id}{DOCUMENT_KEY_SUFFIX}"


def status_options(role: Role, current: CRStatus) -> Tuple[CRStatus, ...]:
    """Statuses a user with this role may pick for a CR currently in `current`"""
    if role == Role.BA_TEAM:
        return tuple(CRStatus)
    return STATUS_OPTIONS[current]


def apply_status_transition(cr: ChangeRequest, new_status: CRStatus, actor: str, today: str) -> None:
    """Move cr to new_status, keeping the approval and rejection stamps consistent"""
    old_status = cr.status
    if new_status == old_status:
        return

    if new_status == CRStatus.APPROVED:
        cr.approved_date = today
        cr.approved_by = actor
        cr.rejected_date = None
        cr.rejected_by = None
    elif new_status == CRStatus.REJECTED:
        cr.rejected_date = today
        cr.rejected_by = actor
        cr.approved_date = None
        cr.approved_by = None
    elif new_status == CRStatus.PENDING and old_status in (CRStatus.APPROVED, CRStatus.REJECTED):
        cr.approved_date = None
        cr.approved_by = None
        cr.rejected_date = None
        cr.rejected_by = None

    cr.status = new_status


@dataclass
class DocumentUpload:
    """A document as received from the client, before encoding"""
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def validate(self) -> Optional[str]:
        """Error message for an unacceptable document, None when it can be stored"""
        if not self.name or not self.name.strip():
            return "Document name is required"
        if self.content_type not in ALLOWED_DOCUMENT_TYPES:
            return "Please upload only Word documents (.doc or .docx)"
        if self.size > settings.MAX_DOCUMENT_SIZE:
            return "File size must be less than 10MB"
        if self.size > settings.RECOMMENDED_DOCUMENT_SIZE:
            logger.warning(f"Document {self.name} is {self.size} bytes, above the recommended 2MB")
        return None


def _valid_date(value: str) -> bool:
    if not DATE_PATTERN.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def clean_fields(data: ChangeRequestInput, fields: Iterable[str]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """
    Normalize the named input fields.

    Returns the cleaned values keyed by attribute name and the error messages
    keyed by the JSON field name.
    """
    fields = set(fields)
    values: Dict[str, Any] = {}
    errors: Dict[str, str] = {}

    if "cr_code" in fields:
        code = (data.cr_code or "").strip()
        if len(code) > MAX_CR_CODE_LENGTH:
            errors["crCode"] = f"CR Code must be {MAX_CR_CODE_LENGTH} characters or less"
        elif is_reserved_id(code):
            errors["crCode"] = "CR Code cannot be 'list' or contain ':'"
        values["cr_code"] = code or "N/A"

    if "cr_name" in fields:
        name = (data.cr_name or "").strip()
        if len(name) > MAX_CR_NAME_LENGTH:
            errors["crName"] = f"CR Name must be {MAX_CR_NAME_LENGTH} characters or less"
        values["cr_name"] = name or "N/A"

    if "description" in fields:
        description = (data.description or "").strip()
        if not description:
            errors["description"] = "Description is required"
        elif len(description) < MIN_DESCRIPTION_LENGTH:
            errors["description"] = f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters"
        values["description"] = description

    if "application" in fields:
        application = (data.application or "").strip()
        if application in ("", "N/A"):
            application = Application.NOT_SPECIFIED.value
        elif application not in {a.value for a in Application}:
            errors["application"] = "Please select a valid application"
        values["application"] = application

    for attr, field_name in DATE_FIELDS.items():
        if attr not in fields:
            continue
        value = (getattr(data, attr) or "").strip()
        if value and not _valid_date(value):
            errors[field_name] = "Please enter a valid date (YYYY-MM-DD)"
        values[attr] = value or None

    if "comments" in fields:
        comments = data.comments or ""
        if len(comments) > MAX_COMMENTS_LENGTH:
            errors["comments"] = f"Comments must be {MAX_COMMENTS_LENGTH} characters or less"
        values["comments"] = comments.strip() or None

    return values, errors


class ChangeRequestService:
    """CRUD over change requests, the cr:list index and attached documents"""

    def __init__(self, store: Optional[KeyValueStore] = None):
        self.store = store or get_store()

    # ==================== READ ====================

    async def get(self, cr_id: str) -> ChangeRequest:
        self._check_id(cr_id)
        key = cr_key(cr_id)
        cr = decode_record(ChangeRequest, await self.store.get_or_none(key), key=key)
        if cr is None:
            raise ChangeRequestNotFoundError(cr_id)
        cr.id = cr_id
        return cr

    async def list_all(self) -> List[ChangeRequest]:
        """
        Every change request in the index, newest first.

        Index entries whose record no longer exists are dropped and the index
        is rewritten. Records that cannot be read or decoded are skipped but
        stay indexed.
        """
        index = await self._load_index()
        records: List[ChangeRequest] = []
        live: List[str] = []

        for cr_id in index:
            if cr_id in live:
                continue
            key = cr_key(cr_id)
            try:
                raw = await self.store.get(key)
            except StorageError as e:
                # Unreachable is not missing
                logger.log_storage_event("get", key, self.store.backend_name, success=False, reason=e.message)
                live.append(cr_id)
                continue
            if raw is None:
                continue
            live.append(cr_id)
            try:
                cr = decode_record(ChangeRequest, raw, key=key)
            except RecordDecodeError as e:
                logger.warning(f"Skipping unreadable change request {cr_id}: {e.message}")
                continue
            cr.id = cr_id
            records.append(cr)

        if live != index:
            logger.warning(f"Repairing {CR_INDEX_KEY}: {len(index) - len(live)} stale or duplicate entries dropped")
            await self.store.set(CR_INDEX_KEY, encode_index(live))

        records.sort(key=lambda cr: cr.created_at or cr.request_date or "", reverse=True)
        return records

    async def get_document(self, cr_id: str) -> CRDocument:
        self._check_id(cr_id)
        key = document_key(cr_id)
        document = decode_record(CRDocument, await self.store.get_or_none(key), key=key)
        if document is None:
            raise DocumentNotFoundError(cr_id)
        return document

    async def locate(self, created_at: Optional[str], requester: Optional[str], description: str) -> Optional[str]:
        """Find the id of a record known only by its creation stamp, requester and description"""
        for cr in await self.list_all():
            if (cr.created_at, cr.requester, cr.description) == (created_at, requester, description):
                return cr.id
        return None

    # ==================== WRITE ====================

    async def create(
        self,
        session: Session,
        data: ChangeRequestInput,
        document: Optional[DocumentUpload] = None,
    ) -> ChangeRequest:
        self._check_can_modify(session, "create")

        values, errors = clean_fields(data, EDITABLE_FIELDS)
        self._check_document(session, document, errors, keeps_existing=False)
        if errors:
            raise ValidationError.from_errors(errors)

        code = values.pop("cr_code")
        if code != "N/A":
            await self._ensure_code_available(code)
            cr_id = code
        else:
            cr_id = await self._new_timestamp_id()
        set_cr_id(cr_id)
        index = await self._load_index(strict=True)

        now = utc_timestamp()
        cr = ChangeRequest(
            id=cr_id,
            cr_code=code,
            requester=session.full_name,
            requester_email=session.email,
            request_date=utc_today(),
            status=CRStatus.PENDING,
            created_at=now,
            created_by=session.full_name,
            **values,
        )

        if document is not None:
            await self._store_document(cr, document, session.full_name, now)
        await self.store.set(cr_key(cr_id), encode_record(cr))
        if cr_id not in index:
            index.append(cr_id)
            await self.store.set(CR_INDEX_KEY, encode_index(index))

        logger.info(f"Change request {cr_id} created by {session.email}")
        return cr

    async def update(
        self,
        session: Session,
        cr_id: str,
        data: ChangeRequestInput,
        document: Optional[DocumentUpload] = None,
        remove_document: bool = False,
    ) -> ChangeRequest:
        self._check_can_modify(session, "edit")
        self._check_id(cr_id)
        set_cr_id(cr_id)
        cr = await self.get(cr_id)

        values, errors = clean_fields(data, data.model_fields_set & EDITABLE_FIELDS)

        new_status = cr.status
        requested_status = getattr(data, "status", None)
        if requested_status is not None:
            try:
                new_status = CRStatus(requested_status)
            except ValueError:
                errors["status"] = "Please select a valid status"
            else:
                if new_status not in status_options(session.role, cr.status):
                    errors["status"] = f"Status cannot change from {cr.status.value} to {new_status.value}"

        self._check_document(
            session, document, errors,
            keeps_existing=cr.has_document and not remove_document,
        )
        if errors:
            raise ValidationError.from_errors(errors)

        new_code = values.get("cr_code")
        if new_code and new_code != "N/A" and new_code != cr.cr_code:
            await self._ensure_code_available(new_code, exclude_id=cr_id)

        for name, value in values.items():
            setattr(cr, name, value)
        apply_status_transition(cr, new_status, session.full_name, utc_today())

        now = utc_timestamp()
        cr.updated_at = now
        cr.updated_by = session.full_name

        if remove_document:
            await self.store.delete(document_key(cr_id))
            cr.clear_document()
        if document is not None:
            await self._store_document(cr, document, session.full_name, now)

        await self.store.set(cr_key(cr_id), encode_record(cr))
        logger.info(f"Change request {cr_id} updated by {session.email}")
        return cr

    async def delete(self, session: Session, cr_id: str) -> None:
        """Remove the record, its document and its index entry"""
        self._check_can_modify(session, "delete")
        self._check_id(cr_id)
        set_cr_id(cr_id)

        key = cr_key(cr_id)
        existed = await self.store.get(key) is not None
        index = await self._load_index(strict=True)
        if not existed and cr_id not in index:
            raise ChangeRequestNotFoundError(cr_id)

        await self.store.delete(document_key(cr_id))
        await self.store.delete(key)
        await self.store.set(CR_INDEX_KEY, encode_index([entry for entry in index if entry != cr_id]))

        logger.info(f"Change request {cr_id} deleted by {session.email}")

    # ==================== HELPERS ====================

    @staticmethod
    def _check_id(cr_id: str) -> None:
        if not cr_id or is_reserved_id(cr_id):
            raise ChangeRequestNotFoundError(cr_id)

    @staticmethod
    def _check_can_modify(session: Session, action: str) -> None:
        if session.is_read_only:
            logger.warning(f"{session.email} ({session.role.value}) tried to {action} a change request")
            raise PermissionDeniedError(f"{session.role.value} members cannot {action} change requests")

    @staticmethod
    def _check_document(
        session: Session,
        document: Optional[DocumentUpload],
        errors: Dict[str, str],
        keeps_existing: bool,
    ) -> None:
        if document is not None:
            message = document.validate()
            if message:
                errors["crDocument"] = message
        elif session.role == Role.BA_TEAM and not keeps_existing:
            errors["crDocument"] = "CR Document is required for BA Team"

    async def _ensure_code_available(self, code: str, exclude_id: Optional[str] = None) -> None:
        if code != exclude_id and await self.store.get(cr_key(code)) is not None:
            raise DuplicateCRCodeError(code)
        for other in await self.list_all():
            if other.id != exclude_id and other.cr_code == code:
                raise DuplicateCRCodeError(code)

    async def _new_timestamp_id(self) -> str:
        stamp = int(time.time() * 1000)
        while await self.store.get(cr_key(str(stamp))) is not None:
            stamp += 1
        return str(stamp)

    async def _store_document(self, cr: ChangeRequest, upload: DocumentUpload, actor: str, now: str) -> None:
        document = CRDocument(
            name=upload.name,
            type=upload.content_type,
            size=upload.size,
            content=encode_document_content(upload.data),
            uploaded_by=actor,
            uploaded_at=now,
        )
        await self.store.set(document_key(cr.id), encode_record(document))
        cr.cr_document_name = document.name
        cr.cr_document_size = document.size
        cr.cr_document_type = document.type
        cr.cr_document_uploaded_by = actor
        cr.cr_document_uploaded_at = now

    async def _load_index(self, strict: bool = False) -> List[str]:
        """The cr:list ids. With strict=True an unreachable index raises StorageError instead of reading as empty"""
        read = self.store.get if strict else self.store.get_or_none
        return decode_index(await read(CR_INDEX_KEY), key=CR_INDEX_KEY)
