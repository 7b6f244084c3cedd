"""Database fixtures for service-level tests (in-memory aiosqlite)."""

import aiosqlite

from app.db.database import SCHEMA_PATH


async def setup_test_db():
    """Initialize an in-memory database loaded with the full schema."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await db.executescript(SCHEMA_PATH.read_text())
    await db.commit()
    return db


async def seed_agent(db, user_id=1, email="agent@test.com", first_name="Ada", last_name="Lovelace"):
    cursor = await db.execute(
        "INSERT INTO agents (user_id, email, first_name, last_name) VALUES (?, ?, ?, ?)",
        (user_id, email, first_name, last_name),
    )
    await db.commit()
    return cursor.lastrowid


async def seed_candidate(db, agent_id, email="agent@test.com"):
    cursor = await db.execute(
        "INSERT INTO candidates (agent_id, email, first_name, last_name) VALUES (?, ?, ?, ?)",
        (agent_id, email, "Ada", "Lovelace"),
    )
    await db.commit()
    return cursor.lastrowid


async def seed_question(db, question_type="WRITING", cefr_level="A1", text=None,
                        assessment_type="LANGUAGE", is_active=1, correct_answer=None):
    cursor = await db.execute(
        """INSERT INTO questions (question_type, cefr_level, assessment_type, question_text, correct_answer, is_active)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (question_type, cefr_level, assessment_type,
         text or f"{question_type} question at {cefr_level}", correct_answer, is_active),
    )
    await db.commit()
    return cursor.lastrowid


async def seed_assessment(db, status="ACTIVE", max_attempts=1, total_duration=50, assessment_type="LANGUAGE"):
    cursor = await db.execute(
        """INSERT INTO assessments (title, assessment_type, status, total_duration, max_attempts)
           VALUES (?, ?, ?, ?, ?)""",
        ("Test Assessment", assessment_type, status, total_duration, max_attempts),
    )
    await db.commit()
    return cursor.lastrowid


async def seed_section(db, assessment_id, section_type="WRITING", name=None, order_index=1):
    cursor = await db.execute(
        """INSERT INTO sections (assessment_id, name, section_type, order_index, duration_minutes, total_questions)
           VALUES (?, ?, ?, ?, 25, 3)""",
        (assessment_id, name or section_type.title(), section_type, order_index),
    )
    await db.commit()
    return cursor.lastrowid


async def seed_attempt(db, candidate_id, assessment_id, status="IN_PROGRESS", attempt_number=1,
                       started_at="2026-01-01T10:00:00", fullscreen_entered=0):
    cursor = await db.execute(
        """INSERT INTO candidate_assessments
           (candidate_id, assessment_id, attempt_number, session_status, started_at, fullscreen_entered)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (candidate_id, assessment_id, attempt_number, status, started_at, fullscreen_entered),
    )
    await db.commit()
    return cursor.lastrowid


async def seed_world(db, status="IN_PROGRESS", max_attempts=1):
    """Agent, candidate, ACTIVE assessment with one WRITING and one SPEAKING section, one attempt."""
    agent_id = await seed_agent(db)
    candidate_id = await seed_candidate(db, agent_id)
    assessment_id = await seed_assessment(db, max_attempts=max_attempts)
    writing_section = await seed_section(db, assessment_id, "WRITING", order_index=1)
    speaking_section = await seed_section(db, assessment_id, "SPEAKING", order_index=2)
    attempt_id = await seed_attempt(db, candidate_id, assessment_id, status=status)
    return {
        "agent_id": agent_id,
        "candidate_id": candidate_id,
        "assessment_id": assessment_id,
        "writing_section": writing_section,
        "speaking_section": speaking_section,
        "attempt_id": attempt_id,
    }
