from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.database import get_db
from habitpulse.routes.deps import get_user_id
from habitpulse.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])


@router.get("/overview")
async def overview(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "overview")


@router.get("/weekly")
async def weekly(start_date: Optional[str] = None, end_date: Optional[str] = None,
                 user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    params = {"start_date": start_date, "end_date": end_date}
    return await AnalyticsService.serve(db, user_id, "weekly", params)


@router.get("/monthly")
async def monthly(start_date: Optional[str] = None, end_date: Optional[str] = None,
                  user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    params = {"start_date": start_date, "end_date": end_date}
    return await AnalyticsService.serve(db, user_id, "monthly", params)


@router.get("/calendar")
async def calendar(year: int, month: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "calendar", {"year": year, "month": month})


@router.get("/heatmap")
async def heatmap(year: Optional[int] = None, habit_id: Optional[int] = None,
                  user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "heatmap", {"year": year, "habit_id": habit_id})


@router.get("/habits/{habit_id}")
async def habit_stats(habit_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "habit-stats", {"habit_id": habit_id})


@router.get("/streaks")
async def streaks(limit: Optional[int] = None, offset: Optional[int] = None,
                  user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "streaks", {"limit": limit, "offset": offset})


@router.get("/insights")
async def insights(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "insights")


@router.get("/categories")
async def categories(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "categories")


@router.get("/comparison")
async def comparison(dead_zone: Optional[float] = None,
                     user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "comparison", {"dead_zone": dead_zone})


@router.get("/trend")
async def trend(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "trend")


# ============ ADVANCED ============

@router.get("/productivity-score")
async def productivity_score(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "productivity")


@router.get("/best-performing")
async def best_performing(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "performance")


@router.get("/correlations")
async def correlations(limit: Optional[int] = None, offset: Optional[int] = None,
                       user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "correlations", {"limit": limit, "offset": offset})


@router.get("/predictions")
async def predictions(limit: Optional[int] = None, offset: Optional[int] = None,
                      user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnalyticsService.serve(db, user_id, "predictions", {"limit": limit, "offset": offset})
