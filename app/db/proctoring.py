"""
proctoring.py - Database helper queries for proctoring sessions and violation logs

Session counters and log rows are only ever written together, inside the
caller's transaction().
"""

import json
from typing import Optional, List, Dict, Any, Sequence
import aiosqlite

from app.db.database import row_to_dict


async def get_session_by_attempt(db: aiosqlite.Connection, attempt_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM proctoring_sessions WHERE attempt_id = ?",
        (attempt_id,),
    )
    return row_to_dict(await cursor.fetchone())


async def get_session(db: aiosqlite.Connection, session_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM proctoring_sessions WHERE id = ?", (session_id,))
    return row_to_dict(await cursor.fetchone())


async def create_session(
    db: aiosqlite.Connection,
    attempt_id: int,
    candidate_id: int,
    assessment_id: int,
) -> None:
    """Create the attempt's session unless one already exists."""
    await db.execute(
        """INSERT INTO proctoring_sessions (attempt_id, candidate_id, assessment_id)
           VALUES (?, ?, ?)
           ON CONFLICT (attempt_id) DO NOTHING""",
        (attempt_id, candidate_id, assessment_id),
    )


async def recent_logs(db: aiosqlite.Connection, session_id: int, since_ms: int) -> List[Dict[str, Any]]:
    """Violation rows of a session whose client timestamp is at or after since_ms."""
    cursor = await db.execute(
        """SELECT id, violation_type, severity, timestamp_ms
           FROM proctoring_logs
           WHERE session_id = ? AND timestamp_ms >= ?
           ORDER BY timestamp_ms""",
        (session_id, since_ms),
    )
    rows = await cursor.fetchall()
    return [row_to_dict(r) for r in rows]


async def insert_logs(
    db: aiosqlite.Connection,
    session_id: int,
    candidate_id: int,
    violations: Sequence[Dict[str, Any]],
) -> None:
    """Append violation rows. Each item carries type, severity, timestamp, timestampMs, metadata."""
    for v in violations:
        await db.execute(
            """INSERT INTO proctoring_logs
               (session_id, candidate_id, event_type, violation_type, severity, is_violation,
                counts_toward_limit, timestamp, timestamp_ms, metadata)
               VALUES (?, ?, 'VIOLATION', ?, ?, 1, ?, ?, ?, ?)""",
            (
                session_id,
                candidate_id,
                v["type"],
                v["severity"],
                1 if v.get("countsTowardLimit") else 0,
                v["timestamp"],
                v["timestampMs"],
                json.dumps(v.get("metadata") or {}),
            ),
        )


async def increment_counters(
    db: aiosqlite.Connection,
    session_id: int,
    now: str,
    total: int = 0,
    low: int = 0,
    medium: int = 0,
    high: int = 0,
    critical: int = 0,
) -> None:
    await db.execute(
        """UPDATE proctoring_sessions SET
               total_violations = total_violations + ?,
               low_violations = low_violations + ?,
               medium_violations = medium_violations + ?,
               high_violations = high_violations + ?,
               critical_violations = critical_violations + ?,
               updated_at = ?
           WHERE id = ?""",
        (total, low, medium, high, critical, now, session_id),
    )


async def mark_auto_submitted(db: aiosqlite.Connection, session_id: int, now: str) -> None:
    await db.execute(
        """UPDATE proctoring_sessions
           SET is_auto_submitted = 1, auto_submitted_at = ?, updated_at = ?
           WHERE id = ?""",
        (now, now, session_id),
    )
