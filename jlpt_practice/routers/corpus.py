"""Corpus resync endpoints."""
import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request

from jlpt_practice.constants import SYNC_RATE_LIMIT
from jlpt_practice.context import AppContext, get_context
from jlpt_practice.errors import StorageUnavailable
from jlpt_practice.limiter import limiter
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("")
@limiter.limit(SYNC_RATE_LIMIT)
async def resync(request: Request, ctx: AppContext = Depends(get_context)):
    """
    Reload the item store (local corpus file, then remote URL).

    Running practice sessions keep the pool they started with.

    Returns:
    - applied, source, generation, counts
    """
    try:
        return await asyncio.to_thread(ctx.sync.resync)
    except ValueError as e:
        logger.error(f"Corpus rejected: {e}")
        raise HTTPException(status_code=422, detail=f"Corpus rejected: {e}")
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/status")
async def sync_status(ctx: AppContext = Depends(get_context)):
    try:
        counts = ctx.store.counts()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"loaded": any(counts.values()), "generation": ctx.sync.generation, "counts": counts}
