from fastapi import APIRouter, BackgroundTasks, Depends, Request

from app.db.database import get_db
from app.errors import NotFoundError
from app.models.assessment import GenerateAssessmentRequest, StartAssessmentRequest
from app.routes.auth import get_current_agent
from app.services import attempt_manager, content_generator
from app.services.background import safe_background_task
from app.services.candidates import get_or_create_candidate

router = APIRouter(prefix="/api/assessments", tags=["assessments"])


@router.post("/generate")
async def generate_assessment(
    body: GenerateAssessmentRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
):
    """Create a DRAFT assessment and its first attempt; content is built in the background.

    Poll GET /api/assessments/{assessmentId}/status until it reports ACTIVE.
    """
    agent = await get_current_agent(request, db)
    candidate = await get_or_create_candidate(db, agent["id"])

    shell = await content_generator.create_assessment_shell(db, body.assessmentType)
    attempt = await attempt_manager.create_attempt(
        db, candidate["id"], shell["assessmentId"], start=False
    )

    background_tasks.add_task(
        safe_background_task,
        content_generator.run_generation,
        shell["assessmentId"],
        body.assessmentType,
    )
    return {
        "assessmentId": shell["assessmentId"],
        "attemptId": attempt["attemptId"],
        "status": shell["status"],
        "attemptNumber": attempt["attemptNumber"],
        "attemptsRemaining": attempt["attemptsRemaining"],
    }


@router.get("/{assessment_id}/status")
async def generation_status(assessment_id: int, request: Request, db=Depends(get_db)):
    await get_current_agent(request, db)
    status = await content_generator.get_generation_status(db, assessment_id)
    if status is None:
        raise NotFoundError("Assessment not found")
    return status


@router.post("/start")
async def start_assessment(body: StartAssessmentRequest, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    candidate = await get_or_create_candidate(db, agent["id"])
    return await attempt_manager.create_attempt(db, candidate["id"], body.assessmentId)


@router.get("/pool/usage")
async def pool_usage(request: Request, question_type: str | None = None, db=Depends(get_db)):
    await get_current_agent(request, db)
    return {"usage": await content_generator.get_pool_usage(db, question_type)}


@router.get("/attempt/{attempt_id}")
async def attempt_details(attempt_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    return await attempt_manager.get_attempt_details(db, attempt_id, agent["id"])


@router.get("/{assessment_id}/attempt/{attempt_id}")
async def assessment_for_attempt(assessment_id: int, attempt_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    return await attempt_manager.get_assessment_for_attempt(db, assessment_id, attempt_id, agent["id"])
