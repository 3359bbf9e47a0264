"""
API v1 router configuration.
"""
from fastapi import APIRouter

from authflow.api.v1.endpoints import health, oauth

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(oauth.router, tags=["oauth"])
