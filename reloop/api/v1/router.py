from fastapi import APIRouter

from reloop.api.v1.endpoints.health import router as health_router
from reloop.api.v1.endpoints.listings import router as listings_router
from reloop.api.v1.endpoints.agreements import router as agreements_router
from reloop.api.v1.endpoints.transactions import router as transactions_router
from reloop.api.v1.endpoints.conversations import router as conversations_router
from reloop.api.v1.endpoints.notifications import router as notifications_router
from reloop.api.v1.endpoints.realtime import router as realtime_router
from reloop.schemas.common import ErrorResponse


router = APIRouter(
    prefix="/v1",
    responses={code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 409, 503)},
)
router.include_router(health_router, tags=["health"])
router.include_router(listings_router, tags=["listings"])
router.include_router(agreements_router, tags=["agreements"])
router.include_router(transactions_router, tags=["transactions"])
router.include_router(conversations_router, tags=["conversations"])
router.include_router(notifications_router, tags=["notifications"])
router.include_router(realtime_router, tags=["realtime"])
