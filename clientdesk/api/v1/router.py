# clientdesk/api/v1/router.py
from fastapi import APIRouter

from .endpoints import health, deliverables, revision_requests, purchases

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(deliverables.router, prefix="/deliverables", tags=["deliverables"])
api_router.include_router(revision_requests.router, prefix="/revision-requests", tags=["revision-requests"])
api_router.include_router(purchases.router, prefix="/purchases", tags=["purchases"])
