from fastapi import APIRouter

from .endpoints import health, marketing, observability

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(marketing.router)
router.include_router(observability.router)
