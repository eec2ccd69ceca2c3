"""
Change request endpoints

All routes require a logged-in session. Documents travel as base64 inside
the JSON body and come back as a binary download.
"""

from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response, status

from crportal.api.deps import get_change_request_service, get_current_session
from crportal.core.exceptions import RecordDecodeError, ValidationError
from crportal.schemas.change_request import (
    ChangeRequestCreate,
    ChangeRequestPage,
    ChangeRequestStats,
    ChangeRequestUpdate,
    DocumentPayload,
)
from crportal.schemas.records import ChangeRequest, CRStatus, Session
from crportal.services import query_service
from crportal.services.change_request_service import (
    ChangeRequestService,
    DocumentUpload,
    status_options,
)
from crportal.services.query_service import CRFilter
from crportal.services.record_codec import decode_document_content


router = APIRouter()


def to_upload(payload: Optional[DocumentPayload]) -> Optional[DocumentUpload]:
    if payload is None:
        return None
    try:
        data = decode_document_content(payload.content)
    except RecordDecodeError:
        raise ValidationError("Document content is not valid base64", field="crDocument")
    return DocumentUpload(name=payload.name, content_type=payload.type, data=data)


def filter_criteria(
    search: Optional[str] = Query(None, description="Matches CR code, name, description or application"),
    status_filter: Optional[str] = Query("All", alias="status"),
    date_field: str = Query("requestDate", alias="dateField"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
) -> CRFilter:
    try:
        query_service.date_attribute(date_field)
    except ValueError as e:
        raise ValidationError(str(e), field="dateField")
    return CRFilter(
        search_term=search,
        status=status_filter,
        date_field=date_field,
        date_from=date_from,
        date_to=date_to,
    )


async def filtered_records(service: ChangeRequestService, criteria: CRFilter) -> List[ChangeRequest]:
    return query_service.apply_filters(await service.list_all(), criteria)


@router.get("", response_model=ChangeRequestPage)
async def list_change_requests(
    page: int = Query(1),
    criteria: CRFilter = Depends(filter_criteria),
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    result = query_service.paginate(await filtered_records(service, criteria), page)
    return ChangeRequestPage(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
        start_index=result.start_index,
        end_index=result.end_index,
    )


@router.post("", response_model=ChangeRequest, status_code=status.HTTP_201_CREATED)
async def create_change_request(
    request: ChangeRequestCreate,
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    return await service.create(session, request, document=to_upload(request.document))


@router.get("/stats", response_model=ChangeRequestStats)
async def change_request_stats(
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    records = await service.list_all()
    return ChangeRequestStats(total=len(records), by_status=query_service.status_counts(records))


@router.get("/export")
async def export_change_requests(
    criteria: CRFilter = Depends(filter_criteria),
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    """CSV report of the filtered change requests"""
    content = query_service.to_csv(await filtered_records(service, criteria))
    filename = query_service.export_filename()
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{cr_id}", response_model=ChangeRequest)
async def get_change_request(
    cr_id: str,
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    return await service.get(cr_id)


@router.get("/{cr_id}/status-options", response_model=List[CRStatus])
async def get_status_options(
    cr_id: str,
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    """Statuses the current user may choose when editing this change request"""
    cr = await service.get(cr_id)
    return list(status_options(session.role, cr.status))


@router.put("/{cr_id}", response_model=ChangeRequest)
async def update_change_request(
    cr_id: str,
    request: ChangeRequestUpdate,
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    return await service.update(
        session,
        cr_id,
        request,
        document=to_upload(request.document),
        remove_document=request.remove_document,
    )


@router.delete("/{cr_id}")
async def delete_change_request(
    cr_id: str,
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    await service.delete(session, cr_id)
    return {"success": True, "message": f"Change request {cr_id} deleted"}


@router.get("/{cr_id}/document")
async def download_document(
    cr_id: str,
    session: Session = Depends(get_current_session),
    service: ChangeRequestService = Depends(get_change_request_service)
):
    document = await service.get_document(cr_id)
    return Response(
        content=decode_document_content(document.content, key=cr_id),
        media_type=document.type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(document.name)}"},
    )
