"""Mistake log and question detail endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Path

from jlpt_practice.context import AppContext, get_context
from jlpt_practice.errors import StorageUnavailable
from jlpt_practice.services.question_synthesizer import build_prompt

router = APIRouter(prefix="/api", tags=["mistakes"])


@router.get("/mistakes")
async def list_mistakes(ctx: AppContext = Depends(get_context)):
    """
    Every wrongly answered item, newest first.

    Returns:
    - count
    - mistakes: list of records (prompt, correct and picked text, source)
    """
    try:
        mistakes = ctx.store.list_mistakes()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"count": len(mistakes), "mistakes": [m.as_dict() for m in mistakes]}


@router.delete("/mistakes")
async def clear_mistakes(ctx: AppContext = Depends(get_context)):
    try:
        removed = ctx.store.clear_mistakes()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"removed": removed}


@router.get("/questions/{exam_key}/{question_number}")
async def get_question_detail(
    exam_key: str = Path(..., min_length=1, max_length=32),
    question_number: int = Path(..., gt=0),
    ctx: AppContext = Depends(get_context)
):
    """
    Full detail of one exam or daily question, with the answer revealed.

    Used to review a logged mistake.
    """
    try:
        question = ctx.store.get_question_detail(exam_key, question_number)
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")

    return {
        "exam_key": question.exam_key,
        "question_number": question.question_number,
        "section": question.section.value,
        "level": question.level.value if question.level else None,
        "year": question.year,
        "month": question.month,
        "prompt": build_prompt(question),
        "passage": question.passage,
        "choices": [
            {
                "position": c.position,
                "content": c.content,
                "is_correct": c.is_correct,
                "explanation": c.explanation,
            }
            for c in sorted(question.choices, key=lambda c: c.position)
        ],
    }
