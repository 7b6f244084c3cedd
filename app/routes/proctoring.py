import logging

from fastapi import APIRouter, Depends, Request

from app.db.database import get_db
from app.models.assessment import ViolationBatch, ViolationEvent
from app.routes.auth import get_current_agent
from app.services import attempt_manager, violation_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["proctoring"])


async def _apply_auto_submit(db, attempt_id: int, result: dict) -> dict:
    """Terminate the attempt when the engine signals auto-submit, then flag the session."""
    if not result.get("shouldAutoSubmit"):
        return result
    status = await attempt_manager.terminate_for_violations(db, attempt_id)
    await violation_engine.mark_auto_submitted(db, result["sessionId"])
    logger.warning("Attempt %s auto-submitted after proctoring violations", attempt_id)
    return {**result, "isAutoSubmitted": True, "sessionStatus": status["sessionStatus"]}


@router.post("/assessments/{assessment_id}/attempt/{attempt_id}/violations")
async def log_violation(
    assessment_id: int,
    attempt_id: int,
    body: ViolationEvent,
    request: Request,
    db=Depends(get_db),
):
    agent = await get_current_agent(request, db)
    return await violation_engine.log_single_violation(
        db, assessment_id, attempt_id, body.model_dump(), agent["id"]
    )


@router.post("/assessments/{assessment_id}/attempt/{attempt_id}/violations/batch")
async def log_violation_batch(
    assessment_id: int,
    attempt_id: int,
    body: ViolationBatch,
    request: Request,
    db=Depends(get_db),
):
    agent = await get_current_agent(request, db)
    result = await violation_engine.log_violation_batch(
        db, assessment_id, attempt_id, body.violations, agent["id"]
    )
    return await _apply_auto_submit(db, attempt_id, result)


@router.get("/attempts/{attempt_id}/violations/summary")
async def violation_summary(attempt_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    return await violation_engine.get_violation_summary(db, attempt_id, agent["id"])
