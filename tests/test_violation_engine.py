"""
Tests for proctoring violation ingestion: validation, de-duplication,
counters and the auto-submit signal.
"""

import asyncio

import pytest

from tests.helpers import seed_agent, seed_world, setup_test_db

BASE_MS = 1_767_261_600_000  # 2026-01-01T10:00:00Z


def _violation(offset_ms=0, vtype="TAB_SWITCH", severity="MEDIUM", **extra):
    return {"type": vtype, "timestamp": BASE_MS + offset_ms, "severity": severity, **extra}


async def _log_count(db):
    cursor = await db.execute("SELECT COUNT(*) FROM proctoring_logs")
    return (await cursor.fetchone())[0]


async def _batch(db, world, violations):
    from app.services.violation_engine import log_violation_batch

    return await log_violation_batch(
        db, world["assessment_id"], world["attempt_id"], violations, world["agent_id"]
    )


class TestTimestamps:
    def test_epoch_and_iso_inputs(self):
        from app.services.violation_engine import to_epoch_ms

        assert to_epoch_ms(BASE_MS) == BASE_MS
        assert to_epoch_ms(str(BASE_MS)) == BASE_MS
        assert to_epoch_ms("2026-01-01T10:00:00Z") == BASE_MS
        assert to_epoch_ms("2026-01-01T10:00:00.250+00:00") == BASE_MS + 250

    def test_rejects_garbage(self):
        from app.services.violation_engine import to_epoch_ms

        with pytest.raises(ValueError):
            to_epoch_ms("yesterday")
        with pytest.raises(ValueError):
            to_epoch_ms(True)


class TestBatchValidation:
    def test_empty_batch(self):
        from app.errors import ValidationError
        from app.services.violation_engine import validate_batch

        with pytest.raises(ValidationError, match="Violations array cannot be empty"):
            validate_batch([])

    def test_not_a_list(self):
        from app.errors import ValidationError
        from app.services.violation_engine import validate_batch

        with pytest.raises(ValidationError, match="must be an array"):
            validate_batch({"type": "TAB_SWITCH"})

    def test_oversized_batch(self):
        from app.errors import ValidationError
        from app.services.violation_engine import validate_batch

        with pytest.raises(ValidationError, match="Maximum 100 violations allowed, received 101"):
            validate_batch([_violation(i * 2000) for i in range(101)])

    def test_missing_fields_names_the_index(self):
        from app.errors import ValidationError
        from app.services.violation_engine import validate_batch

        with pytest.raises(ValidationError, match="Violation at index 1 is missing required fields"):
            validate_batch([_violation(), {"type": "COPY", "timestamp": BASE_MS}])

    def test_critical_not_allowed_in_batch(self):
        from app.errors import ValidationError
        from app.services.violation_engine import validate_batch

        with pytest.raises(ValidationError, match='Invalid severity "CRITICAL" at index 0'):
            validate_batch([_violation(severity="CRITICAL")])

    def test_normalizes_items(self):
        from app.services.violation_engine import validate_batch

        items = validate_batch([
            _violation(severity="LOW"),
            _violation(vtype="COPY", severity="HIGH", details={"key": "c"}),
        ])
        assert [i["countsTowardLimit"] for i in items] == [False, True]
        assert items[0]["timestamp"] == "2026-01-01T10:00:00.000+00:00"
        assert items[1]["metadata"] == {"key": "c"}

    def test_invalid_batch_writes_nothing(self):
        async def _run():
            from app.errors import ValidationError

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                with pytest.raises(ValidationError):
                    await _batch(db, world, [_violation(), _violation(severity="SEVERE")])
                assert await _log_count(db) == 0
                cursor = await db.execute("SELECT COUNT(*) FROM proctoring_sessions")
                assert (await cursor.fetchone())[0] == 0
            finally:
                await db.close()

        asyncio.run(_run())


class TestDuplicates:
    def test_same_type_within_a_second_is_dropped(self):
        """Two TAB_SWITCH events 500 ms apart store one row."""
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await _batch(db, world, [_violation(0), _violation(500)])
                assert result["logged"] == 1
                assert result["duplicates"] == 1
                assert result["totalViolations"] == 1
                assert await _log_count(db) == 1
            finally:
                await db.close()

        asyncio.run(_run())

    def test_different_types_or_far_apart_are_kept(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await _batch(db, world, [
                    _violation(0),
                    _violation(200, vtype="WINDOW_BLUR"),
                    _violation(1000),
                ])
                assert result["logged"] == 3
                assert result["duplicates"] == 0
            finally:
                await db.close()

        asyncio.run(_run())

    def test_duplicate_of_previous_batch(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                await _batch(db, world, [_violation(0)])
                result = await _batch(db, world, [_violation(300)])

                assert result["logged"] == 0
                assert result["duplicates"] == 1
                assert result["totalViolations"] == 1
                assert result["shouldAutoSubmit"] is False
                assert await _log_count(db) == 1
            finally:
                await db.close()

        asyncio.run(_run())

    def test_filter_duplicates_pure(self):
        from app.services.violation_engine import filter_duplicates

        incoming = [
            {"type": "COPY", "timestampMs": 5000},
            {"type": "COPY", "timestampMs": 5999},
            {"type": "COPY", "timestampMs": 7000},
        ]
        recent = [{"violation_type": "COPY", "timestamp_ms": 4200}]
        kept = filter_duplicates(incoming, recent)
        assert [v["timestampMs"] for v in kept] == [5999, 7000]


class TestCountersAndAutoSubmit:
    def test_severity_counters(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await _batch(db, world, [
                    _violation(0, vtype="A", severity="LOW"),
                    _violation(0, vtype="B", severity="MEDIUM"),
                    _violation(0, vtype="C", severity="HIGH"),
                ])
                assert result["lowViolations"] == 1
                assert result["mediumViolations"] == 1
                assert result["highViolations"] == 1
                assert result["totalViolations"] == 3

                cursor = await db.execute(
                    "SELECT violation_type, counts_toward_limit FROM proctoring_logs ORDER BY violation_type"
                )
                rows = await cursor.fetchall()
                assert [(r["violation_type"], r["counts_toward_limit"]) for r in rows] == [
                    ("A", 0), ("B", 1), ("C", 1),
                ]
            finally:
                await db.close()

        asyncio.run(_run())

    def test_tenth_medium_triggers_auto_submit(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                nine = await _batch(db, world, [_violation(i * 1500) for i in range(9)])
                assert nine["mediumViolations"] == 9
                assert nine["shouldAutoSubmit"] is False

                tenth = await _batch(db, world, [_violation(9 * 1500)])
                assert tenth["mediumViolations"] == 10
                assert tenth["shouldAutoSubmit"] is True
            finally:
                await db.close()

        asyncio.run(_run())

    def test_fifth_high_triggers_auto_submit(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                four = await _batch(db, world, [_violation(i * 1500, severity="HIGH") for i in range(4)])
                assert four["shouldAutoSubmit"] is False
                fifth = await _batch(db, world, [_violation(4 * 1500, severity="HIGH")])
                assert fifth["shouldAutoSubmit"] is True
            finally:
                await db.close()

        asyncio.run(_run())

    def test_low_never_triggers(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await _batch(db, world, [_violation(i * 1500, severity="LOW") for i in range(20)])
                assert result["lowViolations"] == 20
                assert result["shouldAutoSubmit"] is False
            finally:
                await db.close()

        asyncio.run(_run())

    def test_mark_auto_submitted(self):
        async def _run():
            from app.services.violation_engine import get_violation_summary, mark_auto_submitted

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await _batch(db, world, [_violation()])
                await mark_auto_submitted(db, result["sessionId"])
                await mark_auto_submitted(db, result["sessionId"])

                summary = await get_violation_summary(db, world["attempt_id"], world["agent_id"])
                assert summary["isAutoSubmitted"] is True
                assert summary["totalViolations"] == 1
            finally:
                await db.close()

        asyncio.run(_run())


class TestSingleViolation:
    def test_logs_and_counts_critical(self):
        async def _run():
            from app.services.violation_engine import log_single_violation

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await log_single_violation(
                    db, world["assessment_id"], world["attempt_id"],
                    {"type": "FACE_NOT_DETECTED", "severity": "critical", "violationCount": 3},
                    world["agent_id"],
                )
                assert result["logged"] == 1
                assert result["severity"] == "CRITICAL"
                assert result["criticalViolations"] == 1
                assert result["totalViolations"] == 1

                cursor = await db.execute("SELECT metadata FROM proctoring_logs")
                assert '"violationNumber": 3' in (await cursor.fetchone())["metadata"]
            finally:
                await db.close()

        asyncio.run(_run())

    def test_severity_defaults_to_medium(self):
        async def _run():
            from app.services.violation_engine import log_single_violation

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                result = await log_single_violation(
                    db, world["assessment_id"], world["attempt_id"], {"type": "TAB_SWITCH"}, world["agent_id"]
                )
                assert result["severity"] == "MEDIUM"
            finally:
                await db.close()

        asyncio.run(_run())


class TestOwnership:
    def test_foreign_agent_is_forbidden(self):
        async def _run():
            from app.errors import UnauthorizedError
            from app.services.violation_engine import log_violation_batch

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                intruder = await seed_agent(db, user_id=99, email="intruder@test.com")
                with pytest.raises(UnauthorizedError):
                    await log_violation_batch(
                        db, world["assessment_id"], world["attempt_id"], [_violation()], intruder
                    )
                assert await _log_count(db) == 0
            finally:
                await db.close()

        asyncio.run(_run())

    def test_assessment_mismatch(self):
        async def _run():
            from app.errors import ConflictError
            from app.services.violation_engine import log_violation_batch

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                with pytest.raises(ConflictError, match="Assessment ID mismatch"):
                    await log_violation_batch(
                        db, world["assessment_id"] + 1, world["attempt_id"], [_violation()], world["agent_id"]
                    )
            finally:
                await db.close()

        asyncio.run(_run())

    def test_summary_before_any_violation(self):
        async def _run():
            from app.services.violation_engine import get_violation_summary

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                summary = await get_violation_summary(db, world["attempt_id"], world["agent_id"])
                assert summary["sessionId"] is None
                assert summary["totalViolations"] == 0
            finally:
                await db.close()

        asyncio.run(_run())
