"""API routers for the lesson settlement backend."""
from fastapi import APIRouter

from . import admin, apikeys, health, lessons, payouts, psp, users, verifications


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(apikeys.router)
    api_router.include_router(lessons.router)
    api_router.include_router(payouts.router)
    api_router.include_router(verifications.router)
    api_router.include_router(admin.router)
    api_router.include_router(psp.router)
    return api_router
