from fastapi import APIRouter

from crportal.api.v1.endpoints import auth, change_requests, health

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(change_requests.router, prefix="/change-requests", tags=["Change Requests"])
