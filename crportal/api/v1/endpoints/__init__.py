# API endpoints
from . import auth, change_requests, health

__all__ = ["auth", "change_requests", "health"]
