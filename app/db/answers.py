"""
answers.py - Database helper queries for captured answers and their scores

One row per (attempt_id, question_id), enforced by a UNIQUE constraint and
written through INSERT ... ON CONFLICT so repeated saves never duplicate.
"""

import json
from typing import Optional, List, Dict, Any
import aiosqlite

from app.db.database import row_to_dict

_JSON_FIELDS = ["ai_strengths", "ai_improvements", "grammar_errors"]


async def upsert_answer(
    db: aiosqlite.Connection,
    attempt_id: int,
    question_id: int,
    section_id: int,
    candidate_id: int,
    answer_text: Optional[str],
    audio_file_path: Optional[str],
    is_skipped: bool,
    word_count: Optional[int],
    typing_speed: Optional[float],
    time_spent_seconds: Optional[int],
    now: str,
) -> None:
    """Insert the answer, or overwrite it and bump revision_count on conflict."""
    await db.execute(
        """INSERT INTO answers
           (attempt_id, question_id, section_id, candidate_id, answer_text, audio_file_path,
            is_skipped, word_count, revision_count, typing_speed, time_spent_seconds,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
           ON CONFLICT (attempt_id, question_id) DO UPDATE SET
               section_id = excluded.section_id,
               answer_text = excluded.answer_text,
               audio_file_path = excluded.audio_file_path,
               is_skipped = excluded.is_skipped,
               word_count = excluded.word_count,
               typing_speed = excluded.typing_speed,
               time_spent_seconds = excluded.time_spent_seconds,
               revision_count = answers.revision_count + 1,
               updated_at = excluded.updated_at""",
        (
            attempt_id, question_id, section_id, candidate_id, answer_text, audio_file_path,
            1 if is_skipped else 0, word_count, typing_speed, time_spent_seconds, now, now,
        ),
    )


async def get_answer(db: aiosqlite.Connection, answer_id: int) -> Optional[Dict[str, Any]]:
    """Answer joined with its question text and type."""
    cursor = await db.execute(
        """SELECT a.*, q.question_type, q.question_text, q.correct_answer, q.cefr_level AS question_cefr_level
           FROM answers a
           JOIN questions q ON a.question_id = q.id
           WHERE a.id = ?""",
        (answer_id,),
    )
    return row_to_dict(await cursor.fetchone(), parse_json_fields=_JSON_FIELDS)


async def get_answer_by_question(
    db: aiosqlite.Connection,
    attempt_id: int,
    question_id: int,
) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT a.*, q.question_type, q.question_text
           FROM answers a
           JOIN questions q ON a.question_id = q.id
           WHERE a.attempt_id = ? AND a.question_id = ?""",
        (attempt_id, question_id),
    )
    return row_to_dict(await cursor.fetchone(), parse_json_fields=_JSON_FIELDS)


async def list_answers(db: aiosqlite.Connection, attempt_id: int) -> List[Dict[str, Any]]:
    """All answers for an attempt, ordered by section then creation."""
    cursor = await db.execute(
        """SELECT a.*, q.question_type, q.question_text, s.name AS section_name
           FROM answers a
           JOIN questions q ON a.question_id = q.id
           JOIN sections s ON a.section_id = s.id
           WHERE a.attempt_id = ?
           ORDER BY s.order_index, a.created_at, a.id""",
        (attempt_id,),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r, parse_json_fields=_JSON_FIELDS) for r in rows]


async def delete_answer(db: aiosqlite.Connection, answer_id: int) -> None:
    await db.execute("DELETE FROM answers WHERE id = ?", (answer_id,))


async def get_answer_owner(db: aiosqlite.Connection, answer_id: int) -> Optional[Dict[str, Any]]:
    """attempt_id and agent_id behind an answer, for ownership checks."""
    cursor = await db.execute(
        """SELECT a.id, a.attempt_id, c.agent_id
           FROM answers a
           JOIN candidate_assessments ca ON a.attempt_id = ca.id
           JOIN candidates c ON ca.candidate_id = c.id
           WHERE a.id = ?""",
        (answer_id,),
    )
    return row_to_dict(await cursor.fetchone())


# ══════════════════════════════════════════════════════════════════════════════
# EVALUATION
# ══════════════════════════════════════════════════════════════════════════════

async def list_unevaluated(db: aiosqlite.Connection, attempt_id: int, limit: int) -> List[Dict[str, Any]]:
    """Oldest unscored, non-skipped WRITING/SPEAKING answers for an attempt."""
    cursor = await db.execute(
        """SELECT a.*, q.question_type, q.question_text, q.correct_answer
           FROM answers a
           JOIN questions q ON a.question_id = q.id
           WHERE a.attempt_id = ?
             AND a.ai_overall_score IS NULL
             AND a.is_skipped = 0
             AND q.question_type IN ('WRITING', 'SPEAKING')
           ORDER BY a.created_at, a.id
           LIMIT ?""",
        (attempt_id, limit),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r, parse_json_fields=_JSON_FIELDS) for r in rows]


async def set_transcribed_text(
    db: aiosqlite.Connection,
    answer_id: int,
    text: str,
    word_count: int,
    now: str,
) -> None:
    await db.execute(
        "UPDATE answers SET answer_text = ?, word_count = ?, updated_at = ? WHERE id = ?",
        (text, word_count, now, answer_id),
    )


async def save_evaluation(db: aiosqlite.Connection, answer_id: int, evaluation: Dict[str, Any], now: str) -> None:
    await db.execute(
        """UPDATE answers SET
               ai_correctness_score = ?,
               ai_grammar_score = ?,
               ai_fluency_score = ?,
               ai_completeness_score = ?,
               ai_thinking_score = ?,
               ai_overall_score = ?,
               ai_cefr_level = ?,
               ai_feedback = ?,
               ai_strengths = ?,
               ai_improvements = ?,
               ai_reasoning = ?,
               grammar_errors = ?,
               evaluated_at = ?,
               evaluated_by = ?,
               evaluation_version = ?,
               updated_at = ?
           WHERE id = ?""",
        (
            evaluation["correctness"],
            evaluation["grammar"],
            evaluation.get("fluency"),
            evaluation.get("completeness"),
            evaluation["thinking"],
            evaluation["overall"],
            evaluation["cefrLevel"],
            evaluation.get("feedback"),
            json.dumps(evaluation.get("strengths") or []),
            json.dumps(evaluation.get("improvements") or []),
            evaluation.get("reasoning"),
            json.dumps(evaluation.get("grammarErrors") or []),
            now,
            evaluation.get("evaluatedBy"),
            evaluation.get("evaluationVersion"),
            now,
            answer_id,
        ),
    )


async def list_evaluated(db: aiosqlite.Connection, attempt_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT a.*, q.question_type, q.question_text
           FROM answers a
           JOIN questions q ON a.question_id = q.id
           WHERE a.attempt_id = ? AND a.ai_overall_score IS NOT NULL
           ORDER BY a.created_at, a.id""",
        (attempt_id,),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r, parse_json_fields=_JSON_FIELDS) for r in rows]
