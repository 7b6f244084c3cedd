"""
violation_engine.py - Proctoring violation ingestion and auto-submit signalling

One proctoring session per attempt, created on the first violation. Batches
are validated up front, near-simultaneous duplicates are dropped, and the
surviving log rows and the session counters are written in one transaction.

The engine only reports shouldAutoSubmit; ending the attempt is left to the
attempt manager.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.db import proctoring as repo
from app.db.database import to_db_timestamp, transaction, utc_now
from app.errors import ConflictError, ValidationError
from app.models.assessment import Severity
from app.services.attempt_manager import require_owned_attempt

logger = logging.getLogger(__name__)

BATCH_SEVERITIES = (Severity.LOW.value, Severity.MEDIUM.value, Severity.HIGH.value)
SINGLE_SEVERITIES = BATCH_SEVERITIES + (Severity.CRITICAL.value,)


def to_epoch_ms(value) -> int:
    """Accept epoch milliseconds (number or digit string) or an ISO-8601 string."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _iso_from_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds")


def should_auto_submit(session: Dict[str, Any]) -> bool:
    return (
        session["medium_violations"] >= settings.auto_submit_medium_threshold
        or session["high_violations"] >= settings.auto_submit_high_threshold
    )


def _counts(session: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not session:
        return {
            "sessionId": None,
            "totalViolations": 0,
            "lowViolations": 0,
            "mediumViolations": 0,
            "highViolations": 0,
            "criticalViolations": 0,
            "isAutoSubmitted": False,
        }
    return {
        "sessionId": session["id"],
        "totalViolations": session["total_violations"],
        "lowViolations": session["low_violations"],
        "mediumViolations": session["medium_violations"],
        "highViolations": session["high_violations"],
        "criticalViolations": session["critical_violations"],
        "isAutoSubmitted": bool(session["is_auto_submitted"]),
    }


async def get_or_create_session(db, candidate_id: int, assessment_id: int, attempt_id: int) -> Dict[str, Any]:
    """The attempt's proctoring session. Call inside a transaction."""
    session = await repo.get_session_by_attempt(db, attempt_id)
    if session:
        return session
    await repo.create_session(db, attempt_id, candidate_id, assessment_id)
    logger.info("Created proctoring session for attempt %s", attempt_id)
    return await repo.get_session_by_attempt(db, attempt_id)


async def _owned_attempt(db, assessment_id: int, attempt_id: int, agent_id: int) -> Dict[str, Any]:
    attempt = await require_owned_attempt(db, attempt_id, agent_id)
    if attempt["assessment_id"] != assessment_id:
        raise ConflictError("Assessment ID mismatch")
    return attempt


# ══════════════════════════════════════════════════════════════════════════════
# SINGLE VIOLATION
# ══════════════════════════════════════════════════════════════════════════════

async def log_single_violation(
    db,
    assessment_id: int,
    attempt_id: int,
    violation: Dict[str, Any],
    agent_id: int,
) -> Dict[str, Any]:
    if not violation.get("type"):
        raise ValidationError("Violation type is required")
    severity = (violation.get("severity") or Severity.MEDIUM.value).upper()
    if severity not in SINGLE_SEVERITIES:
        raise ValidationError(f'Invalid severity "{severity}". Must be LOW, MEDIUM, HIGH, or CRITICAL')

    raw_timestamp = violation.get("timestamp")
    try:
        timestamp_ms = to_epoch_ms(raw_timestamp) if raw_timestamp not in (None, "") else int(utc_now().timestamp() * 1000)
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {raw_timestamp}")

    attempt = await _owned_attempt(db, assessment_id, attempt_id, agent_id)

    metadata = dict(violation.get("details") or {})
    if violation.get("violationCount") is not None:
        metadata["violationNumber"] = violation["violationCount"]

    async with transaction(db):
        session = await get_or_create_session(db, attempt["candidate_id"], assessment_id, attempt_id)
        await repo.insert_logs(db, session["id"], attempt["candidate_id"], [{
            "type": violation["type"],
            "severity": severity,
            "countsTowardLimit": severity in (Severity.HIGH.value, Severity.CRITICAL.value),
            "timestamp": _iso_from_ms(timestamp_ms),
            "timestampMs": timestamp_ms,
            "metadata": metadata,
        }])
        await repo.increment_counters(
            db,
            session["id"],
            to_db_timestamp(utc_now()),
            total=1,
            critical=1 if severity == Severity.CRITICAL.value else 0,
        )
        session = await repo.get_session(db, session["id"])

    logger.info("Violation logged for attempt %s: %s (%s)", attempt_id, violation["type"], severity)
    return {
        "logged": 1,
        "violationType": violation["type"],
        "severity": severity,
        **_counts(session),
    }


# ══════════════════════════════════════════════════════════════════════════════
# BATCH
# ══════════════════════════════════════════════════════════════════════════════

def validate_batch(violations) -> List[Dict[str, Any]]:
    """Check the whole batch before any write. Returns normalized items."""
    if not isinstance(violations, list):
        raise ValidationError("Violations must be an array")
    if not violations:
        raise ValidationError("Violations array cannot be empty")
    if len(violations) > settings.violation_batch_max:
        raise ValidationError(
            f"Batch size exceeds limit. Maximum {settings.violation_batch_max} violations allowed, "
            f"received {len(violations)}"
        )

    normalized = []
    for i, v in enumerate(violations):
        if not isinstance(v, dict) or not v.get("type") or v.get("timestamp") in (None, "") or not v.get("severity"):
            raise ValidationError(
                f"Violation at index {i} is missing required fields (type, timestamp, severity)"
            )
        if v["severity"] not in BATCH_SEVERITIES:
            raise ValidationError(
                f'Invalid severity "{v["severity"]}" at index {i}. Must be LOW, MEDIUM, or HIGH'
            )
        try:
            timestamp_ms = to_epoch_ms(v["timestamp"])
        except (ValueError, TypeError):
            raise ValidationError(f"Invalid timestamp at index {i}")
        normalized.append({
            "type": v["type"],
            "severity": v["severity"],
            "countsTowardLimit": v["severity"] in (Severity.MEDIUM.value, Severity.HIGH.value),
            "timestamp": _iso_from_ms(timestamp_ms),
            "timestampMs": timestamp_ms,
            "metadata": v.get("details") or {},
        })
    return normalized


def filter_duplicates(
    incoming: Sequence[Dict[str, Any]],
    recent: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Drop items matching an already-seen type within the duplicate window.

    Seen rows are the recent logged ones plus items accepted earlier in the
    same batch.
    """
    window = settings.duplicate_window_ms
    seen = [(r["violation_type"], r["timestamp_ms"]) for r in recent]
    unique = []
    for v in incoming:
        if any(t == v["type"] and abs(v["timestampMs"] - ms) < window for t, ms in seen):
            continue
        unique.append(v)
        seen.append((v["type"], v["timestampMs"]))
    return unique


async def log_violation_batch(
    db,
    assessment_id: int,
    attempt_id: int,
    violations,
    agent_id: int,
) -> Dict[str, Any]:
    items = validate_batch(violations)
    attempt = await _owned_attempt(db, assessment_id, attempt_id, agent_id)

    now_ms = int(utc_now().timestamp() * 1000)
    since_ms = min(min(v["timestampMs"] for v in items), now_ms) - settings.duplicate_lookback_ms

    async with transaction(db):
        session = await get_or_create_session(db, attempt["candidate_id"], assessment_id, attempt_id)
        recent = await repo.recent_logs(db, session["id"], since_ms)
        unique = filter_duplicates(items, recent)
        duplicates = len(items) - len(unique)

        if unique:
            await repo.insert_logs(db, session["id"], attempt["candidate_id"], unique)
            await repo.increment_counters(
                db,
                session["id"],
                to_db_timestamp(utc_now()),
                total=len(unique),
                low=sum(1 for v in unique if v["severity"] == Severity.LOW.value),
                medium=sum(1 for v in unique if v["severity"] == Severity.MEDIUM.value),
                high=sum(1 for v in unique if v["severity"] == Severity.HIGH.value),
            )
            session = await repo.get_session(db, session["id"])

    if duplicates:
        logger.info("Filtered %d duplicate violations for attempt %s", duplicates, attempt_id)

    if not unique:
        return {"logged": 0, "duplicates": duplicates, **_counts(session), "shouldAutoSubmit": False}

    auto_submit = should_auto_submit(session)
    if auto_submit:
        logger.warning(
            "Auto-submit threshold reached for attempt %s (medium=%d, high=%d)",
            attempt_id, session["medium_violations"], session["high_violations"],
        )
    return {"logged": len(unique), "duplicates": duplicates, **_counts(session), "shouldAutoSubmit": auto_submit}


# ══════════════════════════════════════════════════════════════════════════════
# SUMMARY
# ══════════════════════════════════════════════════════════════════════════════

async def get_violation_summary(db, attempt_id: int, agent_id: int) -> Dict[str, Any]:
    await require_owned_attempt(db, attempt_id, agent_id)
    return _counts(await repo.get_session_by_attempt(db, attempt_id))


async def mark_auto_submitted(db, session_id: int) -> None:
    session = await repo.get_session(db, session_id)
    if not session or session["is_auto_submitted"]:
        return
    async with transaction(db):
        await repo.mark_auto_submitted(db, session_id, to_db_timestamp(utc_now()))
    logger.info("Proctoring session %s marked auto-submitted", session_id)
