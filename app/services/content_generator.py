"""
content_generator.py - Populate an assessment's sections from the question pool

An assessment shell is created DRAFT and returned to the caller immediately.
generate_assessment_content() then runs as a background task: it builds each
section from its template rules, binds randomly selected questions, and flips
the assessment to ACTIVE. Pool shortfalls are warnings; any exception leaves
the assessment DRAFT with the error recorded so pollers can see why.
"""

import logging
import random
from typing import Any, Dict, List, Optional, Sequence

from app.db import assessments as repo
from app.db.database import open_db, to_db_timestamp, transaction, utc_now
from app.errors import ValidationError
from app.models.assessment import AssessmentStatus, AssessmentTemplate
from app.services.prompts import load_templates

logger = logging.getLogger(__name__)


def select_random(items: Sequence, count: int, rng: Optional[random.Random] = None) -> list:
    """Unbiased pick of up to `count` items (Fisher-Yates on a copy)."""
    rng = rng or random.SystemRandom()
    pool = list(items)
    for i in range(len(pool) - 1, 0, -1):
        j = rng.randint(0, i)
        pool[i], pool[j] = pool[j], pool[i]
    return pool[:max(count, 0)]


def load_template(assessment_type: str) -> AssessmentTemplate:
    raw = load_templates().get(assessment_type)
    if raw is None:
        raise ValidationError(f"Unknown assessment type: {assessment_type}")
    template = AssessmentTemplate(**raw)
    if not template.title:
        template.title = f"{assessment_type} Proficiency Test"
    return template


async def create_assessment_shell(db, assessment_type: str) -> Dict[str, Any]:
    """Create the DRAFT assessment row for a template. Content comes later."""
    template = load_template(assessment_type)
    async with transaction(db):
        assessment_id = await repo.create_assessment(
            db,
            title=template.title,
            assessment_type=assessment_type,
            total_duration=template.total_duration,
            max_attempts=template.max_attempts,
        )
    logger.info("[generation] Created DRAFT assessment %s (%s)", assessment_id, assessment_type)
    return {
        "assessmentId": assessment_id,
        "title": template.title,
        "status": AssessmentStatus.DRAFT.value,
        "totalDuration": template.total_duration,
        "maxAttempts": template.max_attempts,
    }


async def generate_assessment_content(
    db,
    assessment_id: int,
    assessment_type: str,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Build sections and question bindings, then mark the assessment ACTIVE.

    Never raises: failures are logged and recorded on the assessment row,
    which stays DRAFT.
    """
    logger.info("[generation] Starting content generation for assessment %s", assessment_id)
    warnings: List[str] = []

    try:
        template = load_template(assessment_type)
    except ValidationError as e:
        logger.error("[generation] %s (assessment %s)", e.message, assessment_id)
        await _record_outcome(db, assessment_id, AssessmentStatus.DRAFT, warnings, e.message)
        return {"success": False, "assessmentId": assessment_id, "warnings": warnings, "error": e.message}

    sections_out: List[Dict[str, Any]] = []
    try:
        for order_index, section_conf in enumerate(template.sections, start=1):
            async with transaction(db):
                section_id = await repo.create_section(
                    db,
                    assessment_id=assessment_id,
                    name=section_conf.name,
                    description=f"Section for {section_conf.name}",
                    section_type=section_conf.type.value,
                    order_index=order_index,
                    duration_minutes=section_conf.duration_minutes or 15,
                    total_questions=section_conf.total_questions,
                )

            chosen_ids: set = set()
            section_questions: List[Dict[str, Any]] = []

            for rule in section_conf.rules:
                levels = [level.value for level in rule.cefr_levels]
                pool = await repo.list_active_questions(
                    db, section_conf.type.value, levels, assessment_type
                )
                pool = [q for q in pool if q["id"] not in chosen_ids]
                picked = select_random(pool, rule.count, rng)

                if len(picked) < rule.count:
                    warning = (
                        f'Not enough questions for section "{section_conf.name}" and '
                        f'CEFR [{",".join(levels)}]: found {len(picked)}, required {rule.count}'
                    )
                    warnings.append(warning)
                    logger.warning("[generation] %s", warning)

                if picked:
                    ids = [q["id"] for q in picked]
                    async with transaction(db):
                        await repo.bind_questions(db, section_id, ids)
                        await repo.increment_times_used(db, ids)
                    chosen_ids.update(ids)

                section_questions.extend(
                    {
                        "id": q["id"],
                        "questionType": q["question_type"],
                        "cefrLevel": q["cefr_level"],
                        "questionText": q["question_text"],
                    }
                    for q in picked
                )

            sections_out.append({
                "id": section_id,
                "name": section_conf.name,
                "orderIndex": order_index,
                "totalQuestions": section_conf.total_questions,
                "questions": section_questions,
            })

        await _record_outcome(db, assessment_id, AssessmentStatus.ACTIVE, warnings, None)
    except Exception as e:
        logger.exception("[generation] Failed generating content for assessment %s", assessment_id)
        await _record_outcome(db, assessment_id, AssessmentStatus.DRAFT, warnings, str(e))
        return {"success": False, "assessmentId": assessment_id, "warnings": warnings, "error": str(e)}

    logger.info(
        "[generation] Completed assessment %s: %d sections, %d warnings",
        assessment_id, len(sections_out), len(warnings),
    )
    return {
        "success": True,
        "assessmentId": assessment_id,
        "status": AssessmentStatus.ACTIVE.value,
        "sections": sections_out,
        "warnings": warnings,
    }


async def _record_outcome(db, assessment_id: int, status: AssessmentStatus, warnings: List[str], error: Optional[str]):
    try:
        async with transaction(db):
            await repo.set_assessment_status(
                db, assessment_id, status.value, to_db_timestamp(utc_now()), warnings, error
            )
    except Exception:
        logger.exception("[generation] Failed to update status of assessment %s", assessment_id)


async def run_generation(assessment_id: int, assessment_type: str) -> None:
    """Background entry point: opens its own connection since the request's is gone."""
    async with open_db() as db:
        await generate_assessment_content(db, assessment_id, assessment_type)


async def get_generation_status(db, assessment_id: int) -> Optional[Dict[str, Any]]:
    assessment = await repo.get_assessment(db, assessment_id)
    if not assessment:
        return None
    return {
        "assessmentId": assessment["id"],
        "status": assessment["status"],
        "warnings": assessment.get("generation_warnings") or [],
        "error": assessment.get("generation_error"),
    }


async def get_pool_usage(db, question_type: Optional[str] = None) -> List[Dict[str, Any]]:
    rows = await repo.get_usage_stats(db, question_type)
    return [
        {
            "questionType": r["question_type"],
            "cefrLevel": r["cefr_level"],
            "questionCount": r["question_count"],
            "totalTimesUsed": r["total_times_used"],
            "avgTimesUsed": round(float(r["avg_times_used"] or 0), 2),
        }
        for r in rows
    ]
