from fastapi import Depends

from crportal.core.kv_store import KeyValueStore, get_store
from crportal.schemas.records import Session
from crportal.services.change_request_service import ChangeRequestService
from crportal.services.identity_service import IdentityService


def get_kv_store() -> KeyValueStore:
    return get_store()


def get_identity_service(store: KeyValueStore = Depends(get_kv_store)) -> IdentityService:
    return IdentityService(store)


def get_change_request_service(store: KeyValueStore = Depends(get_kv_store)) -> ChangeRequestService:
    return ChangeRequestService(store)


async def get_current_session(identity: IdentityService = Depends(get_identity_service)) -> Session:
    """Logged-in session; SessionNotFoundError (401) otherwise"""
    return await identity.require_session()
