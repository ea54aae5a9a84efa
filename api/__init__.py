from fastapi import APIRouter
from .auth import router as auth_router
from .subscriptions import router as subscriptions_router
from .webhooks import router as webhooks_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(subscriptions_router)
router.include_router(webhooks_router)
