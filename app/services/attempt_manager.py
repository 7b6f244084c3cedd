"""
attempt_manager.py - Attempt creation, ownership and the session state machine

Every change to candidate_assessments.session_status goes through
transition(); other services only request transitions. The UPDATE behind
it is a compare-and-set on the current status, so two writers racing on
the same attempt cannot both win.

    NOT_STARTED -> IN_PROGRESS | TERMINATED
    IN_PROGRESS -> PAUSED | COMPLETED | EXPIRED | TERMINATED
    PAUSED      -> IN_PROGRESS | EXPIRED | TERMINATED
    COMPLETED, EXPIRED, TERMINATED are terminal
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from app.config import settings
from app.db import assessments as repo
from app.db.database import parse_db_timestamp, to_db_timestamp, transaction, utc_now
from app.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.models.assessment import AssessmentStatus, SessionStatus

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[SessionStatus, frozenset] = {
    SessionStatus.NOT_STARTED: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.TERMINATED}),
    SessionStatus.IN_PROGRESS: frozenset({
        SessionStatus.PAUSED,
        SessionStatus.COMPLETED,
        SessionStatus.EXPIRED,
        SessionStatus.TERMINATED,
    }),
    SessionStatus.PAUSED: frozenset({
        SessionStatus.IN_PROGRESS,
        SessionStatus.EXPIRED,
        SessionStatus.TERMINATED,
    }),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
    SessionStatus.TERMINATED: frozenset(),
}

LIVE_STATUSES = frozenset({SessionStatus.IN_PROGRESS, SessionStatus.PAUSED})
TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

MAX_FEEDBACK_LENGTH = 5000


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


async def _apply_transition(
    db,
    attempt: Dict[str, Any],
    target: SessionStatus,
    now: datetime,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Write one transition inside the caller's transaction."""
    current = SessionStatus(attempt["session_status"])
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)

    stamp = to_db_timestamp(now)
    started_at = stamp if target == SessionStatus.IN_PROGRESS and not attempt.get("started_at") else None
    completed_at = stamp if target in TERMINAL_STATUSES else None

    updated = await repo.update_attempt_status(
        db,
        attempt["id"],
        expected_status=current.value,
        new_status=target.value,
        now=stamp,
        started_at=started_at,
        completed_at=completed_at,
        termination_reason=reason,
    )
    if not updated:
        raise ConflictError("Attempt status changed concurrently, please retry")

    logger.info("Attempt %s: %s -> %s%s", attempt["id"], current.value, target.value,
                f" ({reason})" if reason else "")
    attempt = dict(attempt)
    attempt["session_status"] = target.value
    if started_at:
        attempt["started_at"] = started_at
    if completed_at:
        attempt["completed_at"] = completed_at
    if reason:
        attempt["termination_reason"] = reason
    return attempt


async def transition(
    db,
    attempt_id: int,
    target: SessionStatus,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """The single authoritative way to change an attempt's session status."""
    attempt = await _require_attempt(db, attempt_id)
    async with transaction(db):
        return await _apply_transition(db, attempt, target, now or utc_now(), reason)


# ══════════════════════════════════════════════════════════════════════════════
# CREATION & OWNERSHIP
# ══════════════════════════════════════════════════════════════════════════════

async def create_attempt(
    db,
    candidate_id: int,
    assessment_id: int,
    start: bool = True,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Create the next numbered attempt for a candidate+assessment pair.

    With start=True the attempt begins IN_PROGRESS immediately; any attempt
    of the same pair that is still live is expired first so only one can be
    in progress. start=False leaves it NOT_STARTED for a later start_attempt.
    """
    now = now or utc_now()
    assessment = await repo.get_assessment(db, assessment_id)
    if not assessment:
        raise NotFoundError("Assessment not found")
    if start and assessment["status"] != AssessmentStatus.ACTIVE.value:
        raise ConflictError("Assessment content is not ready yet")

    existing = await repo.count_attempts(db, candidate_id, assessment_id)
    if existing >= assessment["max_attempts"]:
        raise ConflictError(
            f"Maximum attempts ({assessment['max_attempts']}) exceeded for this assessment"
        )

    attempt_number = existing + 1
    status = SessionStatus.IN_PROGRESS if start else SessionStatus.NOT_STARTED

    async with transaction(db):
        if start:
            for live in await repo.list_live_attempts(db, candidate_id, assessment_id):
                await _apply_transition(
                    db, live, SessionStatus.EXPIRED, now, reason="Superseded by a new attempt"
                )
        attempt_id = await repo.create_attempt(
            db,
            candidate_id=candidate_id,
            assessment_id=assessment_id,
            attempt_number=attempt_number,
            session_status=status.value,
            started_at=to_db_timestamp(now) if start else None,
        )

    logger.info("Assessment attempt created: %s (attempt #%d)", attempt_id, attempt_number)
    return {
        "candidateId": candidate_id,
        "attemptId": attempt_id,
        "assessmentId": assessment_id,
        "attemptNumber": attempt_number,
        "sessionStatus": status.value,
        "maxAttempts": assessment["max_attempts"],
        "attemptsRemaining": assessment["max_attempts"] - attempt_number,
    }


async def validate_ownership(db, attempt_id: int, agent_id: int) -> bool:
    """True when the attempt's candidate belongs to the agent. False for unknown attempts too."""
    attempt = await repo.get_attempt(db, attempt_id)
    return bool(attempt) and attempt["agent_id"] == agent_id


async def require_owned_attempt(db, attempt_id: int, agent_id: int) -> Dict[str, Any]:
    """Attempt row owned by the agent. Missing and foreign attempts are both 403."""
    attempt = await repo.get_attempt(db, attempt_id)
    if not attempt or attempt["agent_id"] != agent_id:
        raise UnauthorizedError("Unauthorized access to this assessment attempt")
    return attempt


async def _require_attempt(db, attempt_id: int) -> Dict[str, Any]:
    attempt = await repo.get_attempt(db, attempt_id)
    if not attempt:
        raise NotFoundError("Assessment attempt not found")
    return attempt


async def get_attempt_details(db, attempt_id: int, agent_id: int) -> Dict[str, Any]:
    attempt = await _require_attempt(db, attempt_id)
    if attempt["agent_id"] != agent_id:
        raise UnauthorizedError("Unauthorized access to this assessment attempt")
    return {
        "id": attempt["id"],
        "assessmentId": attempt["assessment_id"],
        "candidateId": attempt["candidate_id"],
        "attemptNumber": attempt["attempt_number"],
        "sessionStatus": attempt["session_status"],
        "fullscreenEntered": bool(attempt["fullscreen_entered"]),
        "startedAt": attempt["started_at"],
        "completedAt": attempt["completed_at"],
    }


async def get_assessment_for_attempt(db, assessment_id: int, attempt_id: int, agent_id: int) -> Dict[str, Any]:
    """Nested assessment -> sections -> questions view for the attempt's owner."""
    attempt = await _require_attempt(db, attempt_id)
    if attempt["agent_id"] != agent_id:
        raise UnauthorizedError("Unauthorized access to this assessment")
    if attempt["assessment_id"] != assessment_id:
        raise ConflictError("Assessment ID mismatch")

    assessment = await repo.get_assessment(db, assessment_id)
    if not assessment:
        raise NotFoundError("Assessment not found")

    sections = await repo.get_sections(db, assessment_id)
    by_section: Dict[int, list] = {s["id"]: [] for s in sections}
    for q in await repo.get_section_questions(db, assessment_id):
        by_section.setdefault(q["section_id"], []).append({
            "id": q["question_id"],
            "questionType": q["question_type"],
            "cefrLevel": q["cefr_level"],
            "questionText": q["question_text"],
            "speakingDuration": q["speaking_duration"],
            "speakingPrompt": q["speaking_prompt"],
        })

    return {
        "assessmentId": assessment["id"],
        "attemptId": attempt["id"],
        "title": assessment["title"],
        "status": assessment["status"],
        "totalDuration": assessment["total_duration"],
        "attemptNumber": attempt["attempt_number"],
        "sessionStatus": attempt["session_status"],
        "sections": [
            {
                "id": s["id"],
                "name": s["name"],
                "description": s["description"],
                "sectionType": s["section_type"],
                "orderIndex": s["order_index"],
                "durationMinutes": s["duration_minutes"],
                "totalQuestions": s["total_questions"],
                "questions": by_section.get(s["id"], []),
            }
            for s in sections
        ],
    }


# ══════════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ══════════════════════════════════════════════════════════════════════════════

def check_abandonment(attempt: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Classify a live attempt as resumable or abandoned.

    A live attempt that never reached fullscreen may resume within the resume
    window measured from started_at. Past the window, or once fullscreen was
    entered, it is abandoned. EXPIRED and TERMINATED count as abandoned.
    """
    if not attempt or attempt["session_status"] == SessionStatus.NOT_STARTED.value:
        return {"isAbandoned": False, "shouldResume": False, "summary": "not_started"}

    status = SessionStatus(attempt["session_status"])
    if status == SessionStatus.COMPLETED:
        return {"isAbandoned": False, "shouldResume": False, "summary": "completed"}
    if status in (SessionStatus.EXPIRED, SessionStatus.TERMINATED):
        return {"isAbandoned": True, "shouldResume": False, "summary": "abandoned"}

    if attempt.get("fullscreen_entered"):
        return {"isAbandoned": True, "shouldResume": False, "summary": "abandoned"}

    now = now or utc_now()
    started_at = parse_db_timestamp(attempt.get("started_at")) or now
    if now - started_at <= timedelta(minutes=settings.resume_window_minutes):
        return {"isAbandoned": False, "shouldResume": True, "summary": "in_progress"}
    return {"isAbandoned": True, "shouldResume": False, "summary": "abandoned"}


async def start_attempt(db, attempt_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    attempt = await _require_attempt(db, attempt_id)
    assessment = await repo.get_assessment(db, attempt["assessment_id"])
    if assessment["status"] != AssessmentStatus.ACTIVE.value:
        raise ConflictError("Assessment content is not ready yet")

    live = await repo.list_live_attempts(
        db, attempt["candidate_id"], attempt["assessment_id"], exclude_attempt_id=attempt_id
    )
    if live:
        raise ConflictError("Another attempt for this assessment is already in progress (duplicate pending session)")

    async with transaction(db):
        attempt = await _apply_transition(db, attempt, SessionStatus.IN_PROGRESS, now or utc_now())
    return _status_view(attempt)


async def mark_fullscreen_entered(db, attempt_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    attempt = await _require_attempt(db, attempt_id)
    if attempt["session_status"] != SessionStatus.IN_PROGRESS.value:
        raise ConflictError("Fullscreen can only be entered while the attempt is in progress")
    async with transaction(db):
        await repo.set_fullscreen_entered(db, attempt_id, to_db_timestamp(now or utc_now()))
    attempt["fullscreen_entered"] = 1
    return _status_view(attempt)


async def pause_attempt(db, attempt_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    return _status_view(await transition(db, attempt_id, SessionStatus.PAUSED, now=now))


async def resume_attempt(db, attempt_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """PAUSED -> IN_PROGRESS, unless the abandonment policy says the attempt is gone."""
    now = now or utc_now()
    attempt = await _require_attempt(db, attempt_id)
    verdict = check_abandonment(attempt, now)

    if attempt["session_status"] == SessionStatus.PAUSED.value and verdict["isAbandoned"]:
        async with transaction(db):
            await _apply_transition(db, attempt, SessionStatus.EXPIRED, now, reason="Abandoned")
        raise ConflictError("Attempt was abandoned and can no longer be resumed")

    async with transaction(db):
        attempt = await _apply_transition(db, attempt, SessionStatus.IN_PROGRESS, now)
    return _status_view(attempt)


async def submit_attempt(db, attempt_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    return _status_view(await transition(db, attempt_id, SessionStatus.COMPLETED, now=now))


async def expire_if_overdue(db, attempt_id: int, now: Optional[datetime] = None) -> bool:
    """Expire a live attempt whose total duration has elapsed. Returns True if it expired."""
    now = now or utc_now()
    attempt = await _require_attempt(db, attempt_id)
    if SessionStatus(attempt["session_status"]) not in LIVE_STATUSES:
        return False

    assessment = await repo.get_assessment(db, attempt["assessment_id"])
    started_at = parse_db_timestamp(attempt["started_at"])
    if not started_at or now - started_at <= timedelta(minutes=assessment["total_duration"]):
        return False

    async with transaction(db):
        await _apply_transition(db, attempt, SessionStatus.EXPIRED, now, reason="Time limit exceeded")
    return True


async def terminate_for_violations(
    db,
    attempt_id: int,
    reason: str = "Proctoring violation limit reached",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Force-end an attempt on the proctoring auto-submit signal. No-op if already terminal."""
    attempt = await _require_attempt(db, attempt_id)
    if SessionStatus(attempt["session_status"]) in TERMINAL_STATUSES:
        return _status_view(attempt)
    async with transaction(db):
        attempt = await _apply_transition(db, attempt, SessionStatus.TERMINATED, now or utc_now(), reason)
    logger.warning("Attempt %s terminated: %s", attempt_id, reason)
    return _status_view(attempt)


async def submit_feedback(db, attempt_id: int, feedback: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    text = (feedback or "").strip()
    if not text:
        raise ValidationError("Feedback cannot be empty")
    if len(text) > MAX_FEEDBACK_LENGTH:
        raise ValidationError(f"Feedback exceeds maximum length of {MAX_FEEDBACK_LENGTH} characters")

    await _require_attempt(db, attempt_id)
    stamp = to_db_timestamp(now or utc_now())
    async with transaction(db):
        await repo.set_candidate_feedback(db, attempt_id, text, stamp)
    return {"attemptId": attempt_id, "feedback": text, "submittedAt": stamp}


def _status_view(attempt: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "attemptId": attempt["id"],
        "sessionStatus": attempt["session_status"],
        "fullscreenEntered": bool(attempt.get("fullscreen_entered")),
        "startedAt": attempt.get("started_at"),
        "completedAt": attempt.get("completed_at"),
        "terminationReason": attempt.get("termination_reason"),
    }
