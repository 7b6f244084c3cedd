from fastapi import APIRouter, Depends, Request

from app.db.database import get_db
from app.models.assessment import FeedbackSubmission
from app.routes.auth import get_current_agent
from app.services import attempt_manager

router = APIRouter(prefix="/api/attempts", tags=["attempts"])


async def _owned(request: Request, db, attempt_id: int) -> dict:
    agent = await get_current_agent(request, db)
    return await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])


@router.post("/{attempt_id}/start")
async def start(attempt_id: int, request: Request, db=Depends(get_db)):
    await _owned(request, db, attempt_id)
    return await attempt_manager.start_attempt(db, attempt_id)


@router.post("/{attempt_id}/fullscreen")
async def fullscreen(attempt_id: int, request: Request, db=Depends(get_db)):
    await _owned(request, db, attempt_id)
    return await attempt_manager.mark_fullscreen_entered(db, attempt_id)


@router.post("/{attempt_id}/pause")
async def pause(attempt_id: int, request: Request, db=Depends(get_db)):
    await _owned(request, db, attempt_id)
    return await attempt_manager.pause_attempt(db, attempt_id)


@router.post("/{attempt_id}/resume")
async def resume(attempt_id: int, request: Request, db=Depends(get_db)):
    await _owned(request, db, attempt_id)
    return await attempt_manager.resume_attempt(db, attempt_id)


@router.post("/{attempt_id}/submit")
async def submit(attempt_id: int, request: Request, db=Depends(get_db)):
    await _owned(request, db, attempt_id)
    return await attempt_manager.submit_attempt(db, attempt_id)


@router.get("/{attempt_id}/abandonment")
async def abandonment(attempt_id: int, request: Request, db=Depends(get_db)):
    """Whether the caller may resume this attempt; expires it first if its time is up."""
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    await attempt_manager.expire_if_overdue(db, attempt_id)
    attempt = await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return {"attemptId": attempt_id, **attempt_manager.check_abandonment(attempt)}


@router.post("/{attempt_id}/feedback")
async def feedback(attempt_id: int, body: FeedbackSubmission, request: Request, db=Depends(get_db)):
    await _owned(request, db, attempt_id)
    return await attempt_manager.submit_feedback(db, attempt_id, body.feedback)
