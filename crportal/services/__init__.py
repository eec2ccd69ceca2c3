from crportal.services.identity_service import IdentityService
from crportal.services.change_request_service import ChangeRequestService, DocumentUpload

__all__ = [
    "IdentityService",
    "ChangeRequestService",
    "DocumentUpload",
]
