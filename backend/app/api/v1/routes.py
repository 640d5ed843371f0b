"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from app.api.v1.endpoints import (
    health,
    webcall,
    tools,
    calls,
)

api_router = APIRouter()

api_router.include_router(health.router)

# Call event ingestion
api_router.include_router(webcall.router)

# Assistant tools (tickets / appointments linked to calls)
api_router.include_router(tools.router)

# Dashboard reads
api_router.include_router(calls.router)
