"""Practice session endpoints."""
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, validator

from jlpt_practice.constants import (
    ANSWER_SUBMISSION_RATE_LIMIT, DAILY_CATEGORIES, DAYS_PER_WEEK, MAX_WEEK,
    PRACTICE_START_RATE_LIMIT, SESSION_MONTHS,
)
from jlpt_practice.context import AppContext, get_context
from jlpt_practice.domain import (
    Category, DailyCriteria, Level, LEVEL_ALL, LEVEL_RANDOM_PAIR, PracticeCriteria, PracticeKind, RANDOM,
)
from jlpt_practice.errors import InvalidTransition, StorageUnavailable
from jlpt_practice.limiter import limiter
from jlpt_practice.logging_config import get_logger
from jlpt_practice.services.item_store import DAILY_KEY_PATTERN
from jlpt_practice.services.pool_filter import parse_daily_key
from jlpt_practice.services.practice_session import PracticeSession, SessionState

logger = get_logger(__name__)

router = APIRouter(prefix="/api/practice", tags=["practice"])


class DailySelection(BaseModel):
    """One day of the daily calendar."""
    level: Level
    category: Category
    week: int = Field(..., ge=1, le=MAX_WEEK)
    day: int = Field(..., ge=1, le=DAYS_PER_WEEK)

    @validator("level")
    def validate_level(cls, v):
        if v == Level.DAILY:
            raise ValueError("daily is not a calendar level")
        return v

    @validator("category")
    def validate_category(cls, v):
        if v.value not in DAILY_CATEGORIES:
            raise ValueError(f"category must be one of {list(DAILY_CATEGORIES)}")
        return v


class StartPracticeRequest(BaseModel):
    """Request body for starting a practice session.

    Free practice uses level/kind/year/month/session. ``sequential`` walks
    the matching questions in order, e.g. one past-exam paper front to back.
    Giving ``daily`` or ``daily_key`` starts the fixed items of one calendar
    day instead.
    """
    level: str = LEVEL_RANDOM_PAIR
    kind: PracticeKind = PracticeKind.LANGUAGE
    year: Union[int, str] = RANDOM
    month: str = RANDOM
    session: str = RANDOM
    sequential: bool = False
    daily: Optional[DailySelection] = None
    daily_key: Optional[str] = Field(None, max_length=32)

    @validator("level")
    def validate_level(cls, v):
        allowed = {lv.value for lv in Level.exam_levels()} | {LEVEL_ALL, LEVEL_RANDOM_PAIR}
        if v not in allowed:
            raise ValueError(f"level must be one of {sorted(allowed)}")
        return v

    @validator("year")
    def validate_year(cls, v):
        if v == RANDOM:
            return v
        try:
            return int(v)
        except (TypeError, ValueError):
            raise ValueError("year must be a number or 'random'") from None

    @validator("month")
    def validate_month(cls, v):
        if v == RANDOM:
            return v
        if not v.isdigit() or not 1 <= int(v) <= 12:
            raise ValueError("month must be 1-12 or 'random'")
        return v.zfill(2)

    @validator("session")
    def validate_session(cls, v):
        if v != RANDOM and v not in SESSION_MONTHS:
            raise ValueError(f"session must be one of {sorted(SESSION_MONTHS)} or 'random'")
        return v

    @validator("daily_key")
    def validate_daily_key(cls, v):
        if v is not None and not DAILY_KEY_PATTERN.match(v):
            raise ValueError("daily_key must look like N3-GRAMMAR-0008")
        return v

    def to_criteria(self) -> Union[PracticeCriteria, DailyCriteria]:
        if self.daily is not None:
            return DailyCriteria(self.daily.level, self.daily.category, self.daily.week, self.daily.day)
        if self.daily_key is not None:
            return DailyCriteria(*parse_daily_key(self.daily_key))
        return PracticeCriteria(
            level=self.level, kind=self.kind, year=self.year, month=self.month, session=self.session,
            sequential=self.sequential,
        )


class OptionSelection(BaseModel):
    """Request body selecting an answer option."""
    option_id: str = Field(..., min_length=1, max_length=200, description="Option id from the question")

    @validator("option_id")
    def validate_option(cls, v):
        if not v or v.strip() == "":
            raise ValueError("option_id cannot be empty")
        return v.strip()


class SubmitRequest(BaseModel):
    """Request body for answer submission. ``option_id`` picks before submitting."""
    option_id: Optional[str] = Field(None, min_length=1, max_length=200)


class JumpRequest(BaseModel):
    index: int = Field(..., ge=0)


def get_session_or_404(session_id: str, ctx: AppContext) -> PracticeSession:
    session = ctx.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Practice session not found")
    return session


@router.post("/start")
@limiter.limit(PRACTICE_START_RATE_LIMIT)
async def start_practice(
    start_request: StartPracticeRequest,
    request: Request,
    ctx: AppContext = Depends(get_context)
):
    """
    Start a practice session.

    Returns:
    - session snapshot with the first question

    Errors:
    - 403 when the requested calendar day is locked
    - 404 when nothing matches the selection
    - 503 when the item store cannot be read
    """
    criteria = start_request.to_criteria()

    if isinstance(criteria, DailyCriteria):
        try:
            unlocked = ctx.ledger.can_start_day(criteria.level, criteria.category, criteria.week, criteria.day)
        except StorageUnavailable as e:
            raise HTTPException(status_code=503, detail=f"Progress unavailable: {e}")
        if not unlocked:
            raise HTTPException(status_code=403, detail="This day is locked")

    session = ctx.new_session()
    await session.init(criteria)

    if session.state == SessionState.EMPTY:
        ctx.drop_session(session.session_id)
        raise HTTPException(
            status_code=404,
            detail={"message": session.message, "store_loaded": session.store_loaded},
        )
    if session.state == SessionState.ERROR:
        ctx.drop_session(session.session_id)
        raise HTTPException(status_code=503, detail=session.message)

    return session.snapshot()


@router.get("/{session_id}")
async def get_practice_state(session_id: str, ctx: AppContext = Depends(get_context)):
    """Current state of a practice session."""
    return get_session_or_404(session_id, ctx).snapshot()


@router.post("/{session_id}/pick")
async def pick_option(
    session_id: str,
    selection: OptionSelection,
    ctx: AppContext = Depends(get_context)
):
    session = get_session_or_404(session_id, ctx)
    if not session.pick(selection.option_id):
        raise HTTPException(status_code=409, detail="Option cannot be picked now")
    return session.snapshot()


@router.post("/{session_id}/submit")
@limiter.limit(ANSWER_SUBMISSION_RATE_LIMIT)
async def submit_answer(
    session_id: str,
    submission: SubmitRequest,
    request: Request,
    ctx: AppContext = Depends(get_context)
):
    """
    Submit the selected option.

    Updates:
    - session score and total
    - mistake log (wrong answers only)

    Returns:
    - evaluation result and the session snapshot
    """
    session = get_session_or_404(session_id, ctx)
    if submission.option_id is not None and not session.pick(submission.option_id):
        raise HTTPException(status_code=409, detail="Option cannot be picked now")
    try:
        result = session.submit()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"result": result.as_dict(), "session": session.snapshot()}


@router.post("/{session_id}/next")
async def next_question(session_id: str, ctx: AppContext = Depends(get_context)):
    session = get_session_or_404(session_id, ctx)
    try:
        moved = session.next()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"moved": moved, "session": session.snapshot()}


@router.post("/{session_id}/prev")
async def previous_question(session_id: str, ctx: AppContext = Depends(get_context)):
    session = get_session_or_404(session_id, ctx)
    try:
        moved = session.prev()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"moved": moved, "session": session.snapshot()}


@router.post("/{session_id}/jump")
async def jump_to_question(
    session_id: str,
    jump: JumpRequest,
    ctx: AppContext = Depends(get_context)
):
    session = get_session_or_404(session_id, ctx)
    try:
        session.jump_to(jump.index)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IndexError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.post("/{session_id}/complete")
async def complete_daily(session_id: str, ctx: AppContext = Depends(get_context)):
    """
    Mark a finished daily session's day as done.

    Returns:
    - progress result (unlocked week, whether it advanced) and final score
    """
    session = get_session_or_404(session_id, ctx)
    try:
        progress = session.complete_daily(ctx.ledger)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Progress could not be saved: {e}")
    return {"progress": progress, "score": session.score, "total": session.total}


@router.delete("/{session_id}")
async def end_practice(session_id: str, ctx: AppContext = Depends(get_context)):
    if not ctx.drop_session(session_id):
        raise HTTPException(status_code=404, detail="Practice session not found")
    return {"ended": session_id}
