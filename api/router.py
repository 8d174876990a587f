from fastapi import APIRouter

from api.v1.discounts import router as discounts_router
from api.v1.enrollments import router as enrollments_router
from api.v1.webhooks import router as webhooks_router

router = APIRouter()

# Include v1 routers
router.include_router(enrollments_router, prefix="/v1")
router.include_router(discounts_router, prefix="/v1")
router.include_router(webhooks_router, prefix="/v1")
