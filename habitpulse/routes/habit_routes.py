from datetime import date
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.database import get_db
from habitpulse.routes.deps import get_user_id
from habitpulse.services.habit_service import HabitService

router = APIRouter(prefix="/api/v1/habits", tags=["Habits"])


class HabitCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    frequency: Optional[str] = "DAILY"
    days_of_week: Optional[List[int]] = None
    times_per_week: Optional[int] = None
    habit_type: Optional[str] = "BOOLEAN"
    target_value: Optional[float] = None
    unit: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class HabitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    frequency: Optional[str] = None
    days_of_week: Optional[List[int]] = None
    times_per_week: Optional[int] = None
    habit_type: Optional[str] = None
    target_value: Optional[float] = None
    unit: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: Optional[int] = None


class PauseRequest(BaseModel):
    paused_until: Optional[date] = None
    reason: Optional[str] = None


class SettingsUpdate(BaseModel):
    timezone: str


@router.put("/settings")
async def update_settings(body: SettingsUpdate, user_id: int = Depends(get_user_id),
                          db: AsyncSession = Depends(get_db)):
    user = await HabitService.ensure_user(db, user_id, tz=body.timezone)
    return {"status": "success", "data": {"user_id": user.id, "timezone": user.timezone}}


@router.get("")
async def list_habits(
    archived: bool = False,
    category: Optional[str] = None,
    frequency: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    page = await HabitService.get_all(db, user_id, archived, category, frequency, limit, offset)
    return {**page, "habits": [h.to_dict() for h in page["habits"]]}


@router.post("", status_code=201)
async def create_habit(habit_data: HabitCreate, user_id: int = Depends(get_user_id),
                       db: AsyncSession = Depends(get_db)):
    await HabitService.ensure_user(db, user_id)
    habit = await HabitService.create(db, user_id, habit_data.model_dump(exclude_unset=True))
    return {"status": "success", "data": habit.to_dict()}


@router.post("/recalculate")
async def recalculate_streaks(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    results = await HabitService.recalculate_all(db, user_id)
    for r in results:
        r["last_completed_at"] = r["last_completed_at"].isoformat() if r["last_completed_at"] else None
    return {"status": "success", "data": results}


@router.get("/{habit_id}")
async def get_habit(habit_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    habit = await HabitService.get_habit(db, user_id, habit_id)
    return habit.to_dict()


@router.put("/{habit_id}")
async def update_habit(habit_id: int, habit_data: HabitUpdate, user_id: int = Depends(get_user_id),
                       db: AsyncSession = Depends(get_db)):
    habit = await HabitService.update(db, user_id, habit_id, habit_data.model_dump(exclude_unset=True))
    return {"status": "success", "data": habit.to_dict()}


@router.delete("/{habit_id}")
async def delete_habit(habit_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    await HabitService.delete(db, user_id, habit_id)
    return {"status": "success"}


@router.post("/{habit_id}/archive")
async def archive_habit(habit_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    habit = await HabitService.archive(db, user_id, habit_id)
    return {"status": "success", "data": habit.to_dict()}


@router.post("/{habit_id}/unarchive")
async def unarchive_habit(habit_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    habit = await HabitService.unarchive(db, user_id, habit_id)
    return {"status": "success", "data": habit.to_dict()}


@router.post("/{habit_id}/pause")
async def pause_habit(habit_id: int, body: PauseRequest, user_id: int = Depends(get_user_id),
                      db: AsyncSession = Depends(get_db)):
    habit = await HabitService.pause(db, user_id, habit_id, body.paused_until, body.reason)
    return {"status": "success", "data": habit.to_dict()}


@router.post("/{habit_id}/resume")
async def resume_habit(habit_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    habit = await HabitService.resume(db, user_id, habit_id)
    return {"status": "success", "data": habit.to_dict()}
