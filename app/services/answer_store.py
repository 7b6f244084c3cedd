"""
answer_store.py - Save, fetch and summarise a candidate's answers

Saves are idempotent per (attempt, question): the row is upserted and its
revision_count bumped on every overwrite. Answers can only change while
the attempt is IN_PROGRESS.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.db import answers as repo
from app.db import assessments as attempts_repo
from app.db.database import parse_db_timestamp, to_db_timestamp, transaction, utc_now
from app.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from app.models.assessment import SessionStatus

logger = logging.getLogger(__name__)


def count_words(text: Optional[str]) -> int:
    if not text or not isinstance(text, str):
        return 0
    return len(text.split())


async def save_or_update_answer(
    db,
    attempt_id: int,
    question_id: int,
    section_id: int,
    candidate_id: int,
    answer_text: Optional[str] = None,
    audio_file_path: Optional[str] = None,
    is_skipped: bool = False,
    typing_speed: Optional[float] = None,
    time_spent_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if not attempt_id or not question_id or not section_id or not candidate_id:
        raise ValidationError("Missing required fields: attemptId, questionId, sectionId, candidateId")

    answer_text = answer_text or None
    audio_file_path = audio_file_path or None
    if not answer_text and not audio_file_path and not is_skipped:
        raise ValidationError("An answer must include text, audio, or be marked as skipped")

    attempt = await attempts_repo.get_attempt(db, attempt_id)
    if not attempt:
        raise NotFoundError("Assessment attempt not found")
    if attempt["candidate_id"] != candidate_id:
        raise UnauthorizedError("Unauthorized access to this assessment attempt")
    if attempt["session_status"] != SessionStatus.IN_PROGRESS.value:
        raise ConflictError(f"Answers cannot be saved while the attempt is {attempt['session_status']}")

    word_count = count_words(answer_text) if answer_text else None
    stamp = to_db_timestamp(now or utc_now())

    async with transaction(db):
        await repo.upsert_answer(
            db,
            attempt_id=attempt_id,
            question_id=question_id,
            section_id=section_id,
            candidate_id=candidate_id,
            answer_text=answer_text,
            audio_file_path=audio_file_path,
            is_skipped=is_skipped,
            word_count=word_count,
            typing_speed=typing_speed,
            time_spent_seconds=time_spent_seconds,
            now=stamp,
        )

    answer = await repo.get_answer_by_question(db, attempt_id, question_id)
    logger.info(
        "Answer saved: %s (question %s, revision %s)",
        answer["id"], question_id, answer["revision_count"],
    )
    return answer_view(answer)


async def get_answer_by_question(db, attempt_id: int, question_id: int) -> Optional[Dict[str, Any]]:
    answer = await repo.get_answer_by_question(db, attempt_id, question_id)
    return answer_view(answer) if answer else None


async def list_answers_for_attempt(db, attempt_id: int) -> List[Dict[str, Any]]:
    return [answer_view(a) for a in await repo.list_answers(db, attempt_id)]


async def validate_answer_ownership(db, answer_id: int, agent_id: int) -> bool:
    owner = await repo.get_answer_owner(db, answer_id)
    return bool(owner) and owner["agent_id"] == agent_id


async def delete_answer(db, answer_id: int, agent_id: int) -> Dict[str, Any]:
    owner = await repo.get_answer_owner(db, answer_id)
    if not owner or owner["agent_id"] != agent_id:
        raise UnauthorizedError("Unauthorized access to this answer")

    attempt = await attempts_repo.get_attempt(db, owner["attempt_id"])
    if attempt["session_status"] != SessionStatus.IN_PROGRESS.value:
        raise ConflictError(f"Answers cannot be deleted while the attempt is {attempt['session_status']}")

    async with transaction(db):
        await repo.delete_answer(db, answer_id)
    logger.info("Answer deleted: %s", answer_id)
    return {"answerId": answer_id, "deleted": True}


async def get_answer_statistics(db, attempt_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    attempt = await attempts_repo.get_attempt(db, attempt_id)
    if not attempt:
        raise NotFoundError("Assessment attempt not found")

    answers = await repo.list_answers(db, attempt_id)

    total_time_spent = 0
    started_at = parse_db_timestamp(attempt["started_at"])
    if started_at:
        end = parse_db_timestamp(attempt["completed_at"]) or now or utc_now()
        total_time_spent = max(0, int((end - started_at).total_seconds()))

    return {
        "totalQuestions": len(answers),
        "answeredQuestions": sum(1 for a in answers if not a["is_skipped"]),
        "skippedQuestions": sum(1 for a in answers if a["is_skipped"]),
        "writingAnswers": sum(1 for a in answers if a["answer_text"] and not a["audio_file_path"]),
        "speakingAnswers": sum(1 for a in answers if a["audio_file_path"]),
        "totalTimeSpent": total_time_spent,
        "startedAt": attempt["started_at"],
        "completedAt": attempt["completed_at"],
    }


def answer_view(answer: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": answer["id"],
        "attemptId": answer["attempt_id"],
        "questionId": answer["question_id"],
        "sectionId": answer["section_id"],
        "candidateId": answer["candidate_id"],
        "questionType": answer.get("question_type"),
        "questionText": answer.get("question_text"),
        "sectionName": answer.get("section_name"),
        "answerText": answer["answer_text"],
        "audioFilePath": answer["audio_file_path"],
        "isSkipped": bool(answer["is_skipped"]),
        "wordCount": answer["word_count"],
        "revisionCount": answer["revision_count"],
        "typingSpeed": answer["typing_speed"],
        "timeSpentSeconds": answer["time_spent_seconds"],
        "scores": {
            "correctness": answer["ai_correctness_score"],
            "grammar": answer["ai_grammar_score"],
            "fluency": answer["ai_fluency_score"],
            "completeness": answer["ai_completeness_score"],
            "thinking": answer["ai_thinking_score"],
            "overall": answer["ai_overall_score"],
            "cefrLevel": answer["ai_cefr_level"],
        },
        "evaluatedAt": answer["evaluated_at"],
    }
