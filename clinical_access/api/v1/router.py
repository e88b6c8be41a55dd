"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from clinical_access.api.v1 import access_requests, audit, health, policies

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Patient policies and access evaluation
api_router.include_router(policies.router)

# Consent workflow
api_router.include_router(access_requests.router)

# Audit
api_router.include_router(
    audit.router,
    prefix="/audit",
    tags=["audit"],
)
