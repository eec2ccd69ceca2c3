from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crportal.schemas.records import ChangeRequest


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentPayload(CamelModel):
    """Word document attached to a change request, content base64-encoded"""
    name: str
    type: str
    content: str


class ChangeRequestInput(CamelModel):
    """
    Editable change request fields.

    Values arrive as plain strings and are checked by the repository so that
    every problem is reported per field in one response.
    """
    cr_code: Optional[str] = None
    cr_name: Optional[str] = None
    description: Optional[str] = None
    application: Optional[str] = None
    uat_date: Optional[str] = None
    uat_approved_date: Optional[str] = None
    production_date: Optional[str] = None
    comments: Optional[str] = None


class ChangeRequestCreate(ChangeRequestInput):
    document: Optional[DocumentPayload] = None


class ChangeRequestUpdate(ChangeRequestInput):
    """Only the fields present in the request body are changed"""
    status: Optional[str] = None
    document: Optional[DocumentPayload] = None
    remove_document: bool = False


class ChangeRequestPage(CamelModel):
    items: List[ChangeRequest]
    total: int
    page: int
    page_size: int
    total_pages: int
    start_index: int
    end_index: int


class ChangeRequestStats(CamelModel):
    total: int
    by_status: Dict[str, int] = Field(default_factory=dict)
