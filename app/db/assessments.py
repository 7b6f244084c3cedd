"""
assessments.py - Database helper queries for assessment content and attempts

Provides insert/fetch functions for:
- questions (the question pool)
- assessments, sections, section_questions
- agents, candidates
- candidate_assessments (attempts)

None of these helpers commit. Services wrap multi-row writes in
app.db.database.transaction().
"""

import json
from typing import Optional, List, Dict, Any, Sequence
import aiosqlite

from app.db.database import row_to_dict


# ══════════════════════════════════════════════════════════════════════════════
# QUESTION POOL
# ══════════════════════════════════════════════════════════════════════════════

async def list_active_questions(
    db: aiosqlite.Connection,
    question_type: str,
    cefr_levels: Sequence[str],
    assessment_type: str = "LANGUAGE",
) -> List[Dict[str, Any]]:
    """All active questions of one type whose CEFR level is in cefr_levels."""
    if not cefr_levels:
        return []
    placeholders = ", ".join("?" for _ in cefr_levels)
    cursor = await db.execute(
        f"""SELECT * FROM questions
            WHERE question_type = ?
              AND cefr_level IN ({placeholders})
              AND assessment_type = ?
              AND is_active = 1
            ORDER BY id""",
        (question_type, *cefr_levels, assessment_type),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r) for r in rows]


async def increment_times_used(db: aiosqlite.Connection, question_ids: Sequence[int]) -> None:
    """Bump the usage counter once per question. Only called alongside bind_questions."""
    for question_id in question_ids:
        await db.execute(
            "UPDATE questions SET times_used = times_used + 1 WHERE id = ?",
            (question_id,),
        )


async def get_usage_stats(
    db: aiosqlite.Connection,
    question_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Per (type, CEFR) counts of active questions with total and average usage."""
    sql = """SELECT question_type, cefr_level,
                    COUNT(*) AS question_count,
                    COALESCE(SUM(times_used), 0) AS total_times_used,
                    COALESCE(AVG(times_used), 0) AS avg_times_used
             FROM questions
             WHERE is_active = 1"""
    params: tuple = ()
    if question_type:
        sql += " AND question_type = ?"
        params = (question_type,)
    sql += " GROUP BY question_type, cefr_level ORDER BY question_type, cefr_level"
    cursor = await db.execute(sql, params)
    rows = await cursor.fetchall()
    return [row_to_dict(r) for r in rows]


# ══════════════════════════════════════════════════════════════════════════════
# ASSESSMENTS
# ══════════════════════════════════════════════════════════════════════════════

async def create_assessment(
    db: aiosqlite.Connection,
    title: str,
    assessment_type: str,
    total_duration: int,
    max_attempts: int,
) -> int:
    """Insert a DRAFT assessment. Returns the new assessment ID."""
    cursor = await db.execute(
        """INSERT INTO assessments (title, assessment_type, status, total_duration, max_attempts)
           VALUES (?, ?, 'DRAFT', ?, ?)""",
        (title, assessment_type, total_duration, max_attempts),
    )
    return cursor.lastrowid


async def get_assessment(db: aiosqlite.Connection, assessment_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM assessments WHERE id = ?", (assessment_id,))
    return row_to_dict(await cursor.fetchone(), parse_json_fields=["generation_warnings"])


async def set_assessment_status(
    db: aiosqlite.Connection,
    assessment_id: int,
    status: str,
    now: str,
    warnings: Optional[List[str]] = None,
    error: Optional[str] = None,
) -> None:
    """Record the outcome of content generation on the assessment row."""
    await db.execute(
        """UPDATE assessments
           SET status = ?, generation_warnings = ?, generation_error = ?, updated_at = ?
           WHERE id = ?""",
        (status, json.dumps(warnings or []), error, now, assessment_id),
    )


# ══════════════════════════════════════════════════════════════════════════════
# SECTIONS
# ══════════════════════════════════════════════════════════════════════════════

async def create_section(
    db: aiosqlite.Connection,
    assessment_id: int,
    name: str,
    section_type: str,
    order_index: int,
    duration_minutes: int,
    total_questions: int,
    description: Optional[str] = None,
) -> int:
    cursor = await db.execute(
        """INSERT INTO sections
           (assessment_id, name, description, section_type, order_index, duration_minutes, total_questions)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (assessment_id, name, description, section_type, order_index, duration_minutes, total_questions),
    )
    return cursor.lastrowid


async def bind_questions(db: aiosqlite.Connection, section_id: int, question_ids: Sequence[int]) -> None:
    for question_id in question_ids:
        await db.execute(
            "INSERT INTO section_questions (section_id, question_id) VALUES (?, ?)",
            (section_id, question_id),
        )


async def get_sections(db: aiosqlite.Connection, assessment_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM sections WHERE assessment_id = ? ORDER BY order_index",
        (assessment_id,),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r) for r in rows]


async def get_section_questions(db: aiosqlite.Connection, assessment_id: int) -> List[Dict[str, Any]]:
    """Every bound question of an assessment, tagged with its section, in section order."""
    cursor = await db.execute(
        """SELECT sq.section_id, q.id AS question_id, q.question_type, q.cefr_level,
                  q.question_text, q.speaking_prompt, q.speaking_duration
           FROM section_questions sq
           JOIN sections s ON sq.section_id = s.id
           JOIN questions q ON sq.question_id = q.id
           WHERE s.assessment_id = ?
           ORDER BY s.order_index, sq.id""",
        (assessment_id,),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r) for r in rows]


# ══════════════════════════════════════════════════════════════════════════════
# AGENTS & CANDIDATES
# ══════════════════════════════════════════════════════════════════════════════

async def get_agent(db: aiosqlite.Connection, agent_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
    return row_to_dict(await cursor.fetchone())


async def get_agent_by_user_id(db: aiosqlite.Connection, user_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM agents WHERE user_id = ?", (user_id,))
    return row_to_dict(await cursor.fetchone())


async def find_candidate(
    db: aiosqlite.Connection,
    agent_id: int,
    email: str,
) -> Optional[Dict[str, Any]]:
    """Candidate linked to the agent, or failing that one registered under the same email."""
    cursor = await db.execute(
        """SELECT * FROM candidates
           WHERE agent_id = ? OR email = ?
           ORDER BY CASE WHEN agent_id = ? THEN 0 ELSE 1 END, id
           LIMIT 1""",
        (agent_id, email, agent_id),
    )
    return row_to_dict(await cursor.fetchone())


async def link_candidate_to_agent(db: aiosqlite.Connection, candidate_id: int, agent_id: int) -> None:
    await db.execute(
        "UPDATE candidates SET agent_id = ? WHERE id = ?",
        (agent_id, candidate_id),
    )


async def create_candidate(
    db: aiosqlite.Connection,
    agent_id: int,
    email: str,
    first_name: Optional[str],
    last_name: Optional[str],
) -> int:
    cursor = await db.execute(
        """INSERT INTO candidates (agent_id, email, first_name, last_name)
           VALUES (?, ?, ?, ?)""",
        (agent_id, email, first_name, last_name),
    )
    return cursor.lastrowid


async def get_candidate(db: aiosqlite.Connection, candidate_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM candidates WHERE id = ?", (candidate_id,))
    return row_to_dict(await cursor.fetchone())


async def get_candidate_by_agent(db: aiosqlite.Connection, agent_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM candidates WHERE agent_id = ?", (agent_id,))
    return row_to_dict(await cursor.fetchone())


# ══════════════════════════════════════════════════════════════════════════════
# ATTEMPTS (candidate_assessments)
# ══════════════════════════════════════════════════════════════════════════════

async def count_attempts(db: aiosqlite.Connection, candidate_id: int, assessment_id: int) -> int:
    cursor = await db.execute(
        "SELECT COUNT(*) FROM candidate_assessments WHERE candidate_id = ? AND assessment_id = ?",
        (candidate_id, assessment_id),
    )
    row = await cursor.fetchone()
    return row[0] if row else 0


async def create_attempt(
    db: aiosqlite.Connection,
    candidate_id: int,
    assessment_id: int,
    attempt_number: int,
    session_status: str,
    started_at: Optional[str],
) -> int:
    cursor = await db.execute(
        """INSERT INTO candidate_assessments
           (candidate_id, assessment_id, attempt_number, session_status, started_at)
           VALUES (?, ?, ?, ?, ?)""",
        (candidate_id, assessment_id, attempt_number, session_status, started_at),
    )
    return cursor.lastrowid


async def get_attempt(db: aiosqlite.Connection, attempt_id: int) -> Optional[Dict[str, Any]]:
    """Attempt row joined with the owning candidate's agent_id."""
    cursor = await db.execute(
        """SELECT ca.*, c.agent_id, c.email AS candidate_email,
                  c.first_name AS candidate_first_name, c.last_name AS candidate_last_name
           FROM candidate_assessments ca
           JOIN candidates c ON ca.candidate_id = c.id
           WHERE ca.id = ?""",
        (attempt_id,),
    )
    return row_to_dict(await cursor.fetchone())


async def list_live_attempts(
    db: aiosqlite.Connection,
    candidate_id: int,
    assessment_id: int,
    exclude_attempt_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """IN_PROGRESS or PAUSED attempts for the candidate+assessment pair."""
    cursor = await db.execute(
        """SELECT * FROM candidate_assessments
           WHERE candidate_id = ? AND assessment_id = ?
             AND session_status IN ('IN_PROGRESS', 'PAUSED')
             AND id != ?
           ORDER BY attempt_number""",
        (candidate_id, assessment_id, exclude_attempt_id or 0),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r) for r in rows]


async def get_latest_attempt_for_candidate(
    db: aiosqlite.Connection,
    candidate_id: int,
) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT * FROM candidate_assessments
           WHERE candidate_id = ?
           ORDER BY created_at DESC, id DESC
           LIMIT 1""",
        (candidate_id,),
    )
    return row_to_dict(await cursor.fetchone())


async def update_attempt_status(
    db: aiosqlite.Connection,
    attempt_id: int,
    expected_status: str,
    new_status: str,
    now: str,
    started_at: Optional[str] = None,
    completed_at: Optional[str] = None,
    termination_reason: Optional[str] = None,
) -> bool:
    """Compare-and-set on session_status. Returns False if the row moved underneath us."""
    cursor = await db.execute(
        """UPDATE candidate_assessments
           SET session_status = ?,
               started_at = COALESCE(?, started_at),
               completed_at = COALESCE(?, completed_at),
               termination_reason = COALESCE(?, termination_reason),
               updated_at = ?
           WHERE id = ? AND session_status = ?""",
        (new_status, started_at, completed_at, termination_reason, now, attempt_id, expected_status),
    )
    return cursor.rowcount == 1


async def set_fullscreen_entered(db: aiosqlite.Connection, attempt_id: int, now: str) -> None:
    await db.execute(
        "UPDATE candidate_assessments SET fullscreen_entered = 1, updated_at = ? WHERE id = ?",
        (now, attempt_id),
    )


async def set_candidate_feedback(db: aiosqlite.Connection, attempt_id: int, feedback: str, now: str) -> None:
    await db.execute(
        """UPDATE candidate_assessments
           SET candidate_feedback = ?, feedback_submitted_at = ?, updated_at = ?
           WHERE id = ?""",
        (feedback, now, now, attempt_id),
    )
