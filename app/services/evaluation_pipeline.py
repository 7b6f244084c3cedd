"""
evaluation_pipeline.py - Score captured answers and map them to CEFR bands

Per answer:
  1. SPEAKING answers with audio but no text are transcribed first, and the
     transcript is stored before scoring so it is never requested twice.
  2. No resolvable text -> nothing to score (None, not an error).
  3. Grammar check and AI rubric scoring run concurrently.
  4. Subscores are combined with fixed per-type weights, rounded to 2 dp.
  5. The overall score is mapped to a CEFR band and everything is persisted.

Batches take the oldest unscored answers of an attempt, run strictly one
after another with a courtesy delay between items, and record per-item
failures without aborting the rest.
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.db import answers as repo
from app.db import assessments as attempts_repo
from app.db.database import to_db_timestamp, transaction, utc_now
from app.errors import NotFoundError, ValidationError
from app.models.assessment import CefrLevel, QuestionType
from app.services import grammar_checker, rubric_scorer, transcriber
from app.services.answer_store import count_words

logger = logging.getLogger(__name__)

EVALUATION_VERSION = "1.0.0"

EVALUATION_WEIGHTS = {
    QuestionType.SPEAKING.value: {
        "correctness": 0.3,
        "grammar": 0.1,
        "fluency": 0.5,
        "thinking": 0.1,
    },
    QuestionType.WRITING.value: {
        "correctness": 0.4,
        "grammar": 0.3,
        "thinking": 0.2,
        "completeness": 0.1,
    },
}

# Lower bound of each band, highest first. Bands are half-open: [80, 90) is C1.
CEFR_BANDS = [
    (90, CefrLevel.C2),
    (80, CefrLevel.C1),
    (70, CefrLevel.B2),
    (60, CefrLevel.B1),
    (50, CefrLevel.A2),
    (0, CefrLevel.A1),
]
CEFR_ORDER = [level.value for level in CefrLevel]


def calculate_overall_score(question_type: str, scores: Dict[str, Optional[float]]) -> float:
    weights = EVALUATION_WEIGHTS.get(question_type)
    if weights is None:
        raise ValidationError(f"Unknown question type: {question_type}")
    total = sum((scores.get(name) or 0) * weight for name, weight in weights.items())
    return round(total, 2)


def map_score_to_cefr(score: float) -> str:
    for lower, level in CEFR_BANDS:
        if score >= lower:
            return level.value
    return CefrLevel.A1.value


def mode_cefr(levels: Sequence[str]) -> Optional[str]:
    """Most frequent band; ties go to the lower band."""
    counts = Counter(level for level in levels if level)
    if not counts:
        return None
    return min(counts, key=lambda level: (-counts[level], CEFR_ORDER.index(level)))


# ══════════════════════════════════════════════════════════════════════════════
# SINGLE ANSWER
# ══════════════════════════════════════════════════════════════════════════════

async def evaluate_single_answer(db, answer_id: int) -> Optional[Dict[str, Any]]:
    """Evaluate one answer. Returns None when there is no text to score."""
    answer = await repo.get_answer(db, answer_id)
    if not answer:
        raise NotFoundError(f"Answer {answer_id} not found")

    if answer["ai_overall_score"] is not None:
        logger.info("Answer %s already evaluated, skipping", answer_id)
        return _evaluation_view(answer)

    question_type = answer["question_type"]
    answer_text = (answer["answer_text"] or "").strip()
    transcribed = False

    if question_type == QuestionType.SPEAKING.value and not answer_text and answer["audio_file_path"]:
        transcription = await transcriber.transcribe(answer["audio_file_path"])
        answer_text = transcription["text"]
        async with transaction(db):
            await repo.set_transcribed_text(
                db, answer_id, answer_text, count_words(answer_text), to_db_timestamp(utc_now())
            )
        transcribed = True

    if not answer_text:
        logger.info("Answer %s has no text to evaluate, skipping", answer_id)
        return None

    grammar, rubric = await asyncio.gather(
        grammar_checker.check(answer_text),
        rubric_scorer.score(
            question_text=answer["question_text"],
            answer_text=answer_text,
            question_type=question_type,
            expected_answer=answer.get("correct_answer"),
        ),
    )

    subscores = {
        "correctness": rubric["correctness"],
        "grammar": grammar["grammarScore"],
        "fluency": rubric.get("fluency"),
        "thinking": rubric["thinking"],
        "completeness": rubric.get("completeness"),
    }
    overall = calculate_overall_score(question_type, subscores)
    cefr_level = map_score_to_cefr(overall)

    evaluated_by = [rubric.get("model") or "ai-rubric", "LanguageTool"]
    if transcribed:
        evaluated_by.append(settings.transcription_model)

    evaluation = {
        **subscores,
        "overall": overall,
        "cefrLevel": cefr_level,
        "feedback": rubric.get("feedback"),
        "strengths": rubric.get("strengths"),
        "improvements": rubric.get("improvements"),
        "reasoning": rubric.get("reasoning"),
        "grammarErrors": grammar.get("errors"),
        "evaluatedBy": " + ".join(evaluated_by),
        "evaluationVersion": EVALUATION_VERSION,
    }
    async with transaction(db):
        await repo.save_evaluation(db, answer_id, evaluation, to_db_timestamp(utc_now()))

    logger.info("Answer %s evaluated: %.2f (%s)", answer_id, overall, cefr_level)
    return {"answerId": answer_id, "questionType": question_type, **evaluation}


def _evaluation_view(answer: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "answerId": answer["id"],
        "questionType": answer.get("question_type"),
        "correctness": answer["ai_correctness_score"],
        "grammar": answer["ai_grammar_score"],
        "fluency": answer["ai_fluency_score"],
        "thinking": answer["ai_thinking_score"],
        "completeness": answer["ai_completeness_score"],
        "overall": answer["ai_overall_score"],
        "cefrLevel": answer["ai_cefr_level"],
        "feedback": answer["ai_feedback"],
        "strengths": answer.get("ai_strengths") or [],
        "improvements": answer.get("ai_improvements") or [],
        "reasoning": answer["ai_reasoning"],
        "evaluatedAt": answer["evaluated_at"],
    }


# ══════════════════════════════════════════════════════════════════════════════
# BATCHES
# ══════════════════════════════════════════════════════════════════════════════

async def batch_evaluate_answers(db, answer_ids: Sequence[int]) -> Dict[str, Any]:
    """Evaluate answers one by one. A failing answer is recorded and the batch moves on."""
    logger.info("Starting batch evaluation for %d answers", len(answer_ids))
    success: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    skipped: List[int] = []

    for index, answer_id in enumerate(answer_ids):
        try:
            result = await evaluate_single_answer(db, answer_id)
        except Exception as e:
            logger.exception("Failed to evaluate answer %s", answer_id)
            failed.append({"answerId": answer_id, "error": getattr(e, "message", None) or str(e)})
        else:
            if result is None:
                skipped.append(answer_id)
            else:
                success.append(result)

        if index < len(answer_ids) - 1 and settings.evaluation_delay_seconds > 0:
            await asyncio.sleep(settings.evaluation_delay_seconds)

    logger.info("Batch evaluation complete: %d ok, %d failed, %d skipped",
                len(success), len(failed), len(skipped))
    return {
        "success": success,
        "failed": failed,
        "skipped": skipped,
        "totalProcessed": len(answer_ids),
        "successCount": len(success),
        "errorCount": len(failed),
        "skippedCount": len(skipped),
    }


async def trigger_batch_evaluation(db, attempt_id: int) -> Dict[str, Any]:
    """Evaluate the next batch of unscored answers for an attempt, oldest first."""
    pending = await repo.list_unevaluated(db, attempt_id, settings.evaluation_batch_size)
    if not pending:
        logger.info("No unevaluated answers for attempt %s", attempt_id)
        return {
            "message": "No answers to evaluate",
            "evaluated": 0,
            "success": [],
            "failed": [],
            "skipped": [],
            "totalProcessed": 0,
            "successCount": 0,
            "errorCount": 0,
            "skippedCount": 0,
        }

    results = await batch_evaluate_answers(db, [a["id"] for a in pending])
    return {"message": f"Evaluated {results['successCount']} answers", **results}


# ══════════════════════════════════════════════════════════════════════════════
# REPORTING
# ══════════════════════════════════════════════════════════════════════════════

async def get_evaluation_summary(db, attempt_id: int) -> Dict[str, Any]:
    evaluated = await repo.list_evaluated(db, attempt_id)
    if not evaluated:
        return {
            "attemptId": attempt_id,
            "totalEvaluated": 0,
            "averageScore": 0,
            "overallCefrLevel": None,
            "cefrDistribution": {},
            "answers": [],
            "message": "No evaluated answers yet",
        }

    average = sum(a["ai_overall_score"] for a in evaluated) / len(evaluated)
    levels = [a["ai_cefr_level"] for a in evaluated]

    return {
        "attemptId": attempt_id,
        "totalEvaluated": len(evaluated),
        "averageScore": round(average, 2),
        "overallCefrLevel": mode_cefr(levels),
        "cefrDistribution": dict(Counter(level for level in levels if level)),
        "answers": [
            {**_evaluation_view(a), "questionText": a["question_text"], "answerText": a["answer_text"]}
            for a in evaluated
        ],
    }


async def get_latest_evaluation(db, agent_id: int) -> Optional[Dict[str, Any]]:
    """PENDING/COMPLETE status of the candidate's most recent attempt, or None."""
    candidate = await attempts_repo.get_candidate_by_agent(db, agent_id)
    if not candidate:
        return None
    attempt = await attempts_repo.get_latest_attempt_for_candidate(db, candidate["id"])
    if not attempt:
        return None

    scorable = [
        a for a in await repo.list_answers(db, attempt["id"])
        if a["question_type"] in EVALUATION_WEIGHTS
    ]
    evaluated = [a for a in scorable if a["ai_overall_score"] is not None]

    if not evaluated:
        return {
            "attemptId": attempt["id"],
            "status": "PENDING",
            "totalAnswers": len(scorable),
            "evaluatedAnswers": 0,
        }

    avg_score = sum(a["ai_overall_score"] for a in evaluated) / len(evaluated)
    avg_fluency = sum(
        a["ai_fluency_score"] or a["ai_completeness_score"] or 0 for a in evaluated
    ) / len(evaluated)

    return {
        "attemptId": attempt["id"],
        "status": "COMPLETE",
        "overallScore": round(avg_score),
        "cefrLevel": mode_cefr([a["ai_cefr_level"] for a in evaluated]) or CefrLevel.A1.value,
        "fluency": round(avg_fluency),
        "totalEvaluated": len(evaluated),
        "totalAnswers": len(scorable),
    }
