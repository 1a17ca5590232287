from fastapi import APIRouter

from app.api.v1.endpoints import queue, webhooks, health

router = APIRouter(prefix="/api/v1")

router.include_router(queue.router)
router.include_router(webhooks.router)
router.include_router(health.router)
