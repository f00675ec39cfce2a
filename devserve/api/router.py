from __future__ import annotations

from fastapi import APIRouter

from devserve.api.routes import health

# No "/api" prefix here: that path belongs to the dev proxy by default.
api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
