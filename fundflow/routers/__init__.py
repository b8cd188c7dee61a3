"""API routers for the FundFlow backend."""
from fastapi import APIRouter

from . import donations, health, impact, projects, validations, validators, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(projects.router)
    api_router.include_router(validators.router)
    api_router.include_router(validations.router)
    api_router.include_router(donations.router)
    api_router.include_router(impact.router)
    api_router.include_router(webhooks.router)
    return api_router
