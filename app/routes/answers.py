from fastapi import APIRouter, Depends, Request

from app.db.database import get_db
from app.errors import NotFoundError
from app.models.assessment import AnswerSubmission
from app.routes.auth import get_current_agent
from app.services import answer_store, attempt_manager

router = APIRouter(prefix="/api/attempts", tags=["answers"])


@router.post("/{attempt_id}/answers")
async def save_answer(attempt_id: int, body: AnswerSubmission, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    attempt = await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return await answer_store.save_or_update_answer(
        db,
        attempt_id=attempt_id,
        question_id=body.questionId,
        section_id=body.sectionId,
        candidate_id=attempt["candidate_id"],
        answer_text=body.answerText,
        audio_file_path=body.audioFilePath,
        is_skipped=body.isSkipped,
        typing_speed=body.typingSpeed,
        time_spent_seconds=body.timeSpentSeconds,
    )


@router.get("/{attempt_id}/answers")
async def list_answers(attempt_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return {"answers": await answer_store.list_answers_for_attempt(db, attempt_id)}


@router.get("/{attempt_id}/answers/statistics")
async def answer_statistics(attempt_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return await answer_store.get_answer_statistics(db, attempt_id)


@router.get("/{attempt_id}/answers/{question_id}")
async def get_answer(attempt_id: int, question_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    answer = await answer_store.get_answer_by_question(db, attempt_id, question_id)
    if answer is None:
        raise NotFoundError("Answer not found")
    return answer


@router.delete("/{attempt_id}/answers/{answer_id}")
async def delete_answer(attempt_id: int, answer_id: int, request: Request, db=Depends(get_db)):
    agent = await get_current_agent(request, db)
    await attempt_manager.require_owned_attempt(db, attempt_id, agent["id"])
    return await answer_store.delete_answer(db, answer_id, agent["id"])
