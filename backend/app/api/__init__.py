"""API routes module."""

from fastapi import APIRouter

from app.api import discovery

router = APIRouter()

router.include_router(discovery.router, prefix="/discover", tags=["discovery"])
