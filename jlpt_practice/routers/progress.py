"""Daily calendar progress endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, validator

from jlpt_practice.constants import DAILY_CATEGORIES, DAYS_PER_WEEK, MAX_WEEK
from jlpt_practice.context import AppContext, get_context
from jlpt_practice.domain import Category, Level
from jlpt_practice.errors import StorageUnavailable

router = APIRouter(prefix="/api/progress", tags=["progress"])


def _check_calendar_pair(level: Level, category: Category) -> None:
    if level == Level.DAILY:
        raise ValueError("daily is not a calendar level")
    if category.value not in DAILY_CATEGORIES:
        raise ValueError(f"category must be one of {list(DAILY_CATEGORIES)}")


class Selection(BaseModel):
    """Level and category last chosen on the calendar."""
    level: Level
    category: Category

    @validator("category")
    def validate_pair(cls, v, values):
        level = values.get("level")
        if level is not None:
            _check_calendar_pair(level, v)
        return v


class PracticeDone(Selection):
    """Request body marking one calendar day done."""
    week: int = Field(..., ge=1, le=MAX_WEEK)
    day: int = Field(..., ge=1, le=DAYS_PER_WEEK)


@router.get("/selection")
async def get_selection(ctx: AppContext = Depends(get_context)):
    try:
        return ctx.ledger.get_selection()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.put("/selection")
async def put_selection(selection: Selection, ctx: AppContext = Depends(get_context)):
    try:
        ctx.ledger.set_selection(selection.level, selection.category)
        return ctx.ledger.get_selection()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/done")
async def mark_done(done: PracticeDone, ctx: AppContext = Depends(get_context)):
    """
    Mark a calendar day done.

    Completing all 7 days of the unlocked week unlocks the next one.

    Returns:
    - token, newly_completed, week_complete, advanced, unlocked_week
    """
    try:
        return ctx.ledger.mark_practice_done(done.level, done.category, done.week, done.day)
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Progress could not be saved: {e}")


@router.get("/{level}/{category}")
async def get_calendar(level: Level, category: Category, ctx: AppContext = Depends(get_context)):
    """
    Calendar for one level/category.

    Returns:
    - unlocked_week
    - weeks: 10 entries with per-day status (done / available / locked)
    """
    try:
        _check_calendar_pair(level, category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        return ctx.ledger.calendar(level, category)
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
