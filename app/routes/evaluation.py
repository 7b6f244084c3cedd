from fastapi import APIRouter, Depends, Request

from app.db.database import get_db
from app.errors import UnauthorizedError
from app.routes.auth import get_current_agent
from app.services import answer_store, attempt_manager, evaluation_pipeline

router = APIRouter(prefix="/api", tags=["evaluation"])


@router.post("/attempts/{attempt_id}/evaluate")
async def evaluate_attempt(attempt_id: int, request: Request, db=Depends(get_db)):
    """Score the next batch of unevaluated answers. Call repeatedly until nothing is left."""
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return await evaluation_pipeline.trigger_batch_evaluation(db, attempt_id)


@router.get("/attempts/{attempt_id}/evaluation/summary")
async def evaluation_summary(attempt_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return await evaluation_pipeline.get_evaluation_summary(db, attempt_id)


@router.post("/answers/{answer_id}/evaluate")
async def evaluate_answer(answer_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    if not await answer_store.validate_answer_ownership(db, answer_id, agent["id"]):
        raise UnauthorizedError("Unauthorized access to this answer")
    result = await evaluation_pipeline.evaluate_single_answer(db, answer_id)
    if result is None:
        return {"answerId": answer_id, "evaluated": False, "message": "No answer text to evaluate"}
    return {"evaluated": True, **result}


@router.get("/evaluation/latest")
async def latest_evaluation(request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    result = await evaluation_pipeline.get_latest_evaluation(db, agent["id"])
    if result is None:
        return {"status": "NONE", "message": "No assessment attempts found"}
    return result
