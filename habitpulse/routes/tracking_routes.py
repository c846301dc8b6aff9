from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.database import get_db
from habitpulse.routes.deps import get_user_id
from habitpulse.services.tracking_service import TrackingService

router = APIRouter(prefix="/api/v1/tracking", tags=["Tracking"])


class CheckInRequest(BaseModel):
    date: Optional[str] = None  # YYYY-MM-DD, defaults to the user's local today
    completed: Optional[bool] = True
    value: Optional[float] = None
    notes: Optional[str] = None


@router.post("/habits/{habit_id}/check-in")
async def check_in(habit_id: int, body: CheckInRequest, user_id: int = Depends(get_user_id),
                   db: AsyncSession = Depends(get_db)):
    completed = True if body.completed is None else body.completed
    result = await TrackingService.check_in(db, user_id, habit_id, body.date, completed, body.value, body.notes)
    return {"status": "success", "data": result}


@router.delete("/habits/{habit_id}/check-in")
async def undo_check_in(habit_id: int, date: Optional[str] = None, user_id: int = Depends(get_user_id),
                        db: AsyncSession = Depends(get_db)):
    result = await TrackingService.undo_check_in(db, user_id, habit_id, date)
    return {"status": "success", "data": result}


@router.get("/today")
async def today_habits(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await TrackingService.get_today_habits(db, user_id)


@router.get("/date/{day}")
async def habits_by_date(day: str, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await TrackingService.get_habits_by_date(db, user_id, day)


@router.get("/history")
async def history(
    habit_id: Optional[int] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = Query(90, ge=1, le=366),
    user_id: int = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await TrackingService.get_history(db, user_id, habit_id, start, end, limit)


@router.get("/milestones")
async def milestones(habit_id: Optional[int] = None, user_id: int = Depends(get_user_id),
                     db: AsyncSession = Depends(get_db)):
    return await TrackingService.get_milestones(db, user_id, habit_id)
