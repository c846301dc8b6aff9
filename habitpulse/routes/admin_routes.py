import logging

from fastapi import APIRouter, Depends

from habitpulse.routes.deps import get_user_id
from habitpulse.services.cache_service import analytics_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin/cache", tags=["Admin"])


@router.get("/metrics")
async def cache_metrics(user_id: int = Depends(get_user_id)):
    return analytics_cache.metrics()


@router.delete("/users/{target_user_id}")
async def invalidate_user_cache(target_user_id: int, user_id: int = Depends(get_user_id)):
    deleted = await analytics_cache.invalidate_user(target_user_id)
    logger.info(f"Cache for user {target_user_id} invalidated by user {user_id}")
    return {"status": "success", "deleted": deleted}


@router.post("/reap")
async def reap_cache(user_id: int = Depends(get_user_id)):
    return {"status": "success", "reaped": analytics_cache.reap_expired()}
