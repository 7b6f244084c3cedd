"""
Tests for saving, listing and deleting candidate answers.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from tests.helpers import seed_agent, seed_question, seed_world, setup_test_db


async def _answer_rows(db, attempt_id):
    cursor = await db.execute("SELECT COUNT(*) FROM answers WHERE attempt_id = ?", (attempt_id,))
    return (await cursor.fetchone())[0]


async def _save(db, world, question_id, **kwargs):
    from app.services.answer_store import save_or_update_answer

    section = kwargs.pop("section_id", world["writing_section"])
    return await save_or_update_answer(
        db,
        attempt_id=world["attempt_id"],
        question_id=question_id,
        section_id=section,
        candidate_id=world["candidate_id"],
        **kwargs,
    )


class TestCountWords:
    def test_counts_whitespace_separated_words(self):
        from app.services.answer_store import count_words

        assert count_words("I like   green tea") == 4
        assert count_words("  ") == 0
        assert count_words(None) == 0


class TestSaveAnswer:
    def test_save_twice_keeps_one_row(self):
        """Re-saving the same question overwrites the row and bumps revisionCount."""
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                qid = await seed_question(db, "WRITING", "B1")

                first = await _save(db, world, qid, answer_text="My first draft")
                assert first["revisionCount"] == 0
                assert first["wordCount"] == 3

                second = await _save(db, world, qid, answer_text="A better final answer here")
                assert second["id"] == first["id"]
                assert second["revisionCount"] == 1
                assert second["answerText"] == "A better final answer here"
                assert second["wordCount"] == 5
                assert await _answer_rows(db, world["attempt_id"]) == 1
            finally:
                await db.close()

        asyncio.run(_run())

    def test_skipped_answer_without_content(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                qid = await seed_question(db, "WRITING", "A1")
                saved = await _save(db, world, qid, is_skipped=True)
                assert saved["isSkipped"] is True
                assert saved["answerText"] is None
                assert saved["wordCount"] is None
            finally:
                await db.close()

        asyncio.run(_run())

    def test_speaking_answer_with_audio(self):
        async def _run():
            db = await setup_test_db()
            try:
                world = await seed_world(db)
                qid = await seed_question(db, "SPEAKING", "A2")
                saved = await _save(
                    db, world, qid, section_id=world["speaking_section"], audio_file_path="attempt1/q1.webm"
                )
                assert saved["audioFilePath"] == "attempt1/q1.webm"
                assert saved["questionType"] == "SPEAKING"
                assert saved["scores"]["overall"] is None
            finally:
                await db.close()

        asyncio.run(_run())

    def test_empty_answer_rejected(self):
        async def _run():
            from app.errors import ValidationError

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                qid = await seed_question(db, "WRITING", "A1")
                with pytest.raises(ValidationError, match="text, audio, or be marked as skipped"):
                    await _save(db, world, qid, answer_text="")
                assert await _answer_rows(db, world["attempt_id"]) == 0
            finally:
                await db.close()

        asyncio.run(_run())

    def test_missing_ids_rejected(self):
        async def _run():
            from app.errors import ValidationError
            from app.services.answer_store import save_or_update_answer

            db = await setup_test_db()
            try:
                with pytest.raises(ValidationError, match="Missing required fields"):
                    await save_or_update_answer(db, 1, None, 1, 1, answer_text="hi")
            finally:
                await db.close()

        asyncio.run(_run())

    def test_rejected_unless_in_progress(self):
        async def _run():
            from app.errors import ConflictError

            db = await setup_test_db()
            try:
                world = await seed_world(db, status="COMPLETED")
                qid = await seed_question(db, "WRITING", "A1")
                with pytest.raises(ConflictError, match="COMPLETED"):
                    await _save(db, world, qid, answer_text="Too late")
            finally:
                await db.close()

        asyncio.run(_run())

    def test_candidate_mismatch_is_forbidden(self):
        async def _run():
            from app.errors import UnauthorizedError
            from app.services.answer_store import save_or_update_answer

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                qid = await seed_question(db, "WRITING", "A1")
                with pytest.raises(UnauthorizedError):
                    await save_or_update_answer(
                        db, world["attempt_id"], qid, world["writing_section"], world["candidate_id"] + 100,
                        answer_text="Not mine",
                    )
            finally:
                await db.close()

        asyncio.run(_run())


class TestReadAndDelete:
    def test_list_is_ordered_by_section(self):
        async def _run():
            from app.services.answer_store import list_answers_for_attempt

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                speaking_q = await seed_question(db, "SPEAKING", "A1")
                writing_q = await seed_question(db, "WRITING", "A1")
                await _save(db, world, speaking_q, section_id=world["speaking_section"], answer_text="Spoken")
                await _save(db, world, writing_q, answer_text="Written")

                answers = await list_answers_for_attempt(db, world["attempt_id"])
                assert [a["sectionName"] for a in answers] == ["Writing", "Speaking"]
            finally:
                await db.close()

        asyncio.run(_run())

    def test_get_by_question(self):
        async def _run():
            from app.services.answer_store import get_answer_by_question

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                qid = await seed_question(db, "WRITING", "A1")
                assert await get_answer_by_question(db, world["attempt_id"], qid) is None
                await _save(db, world, qid, answer_text="Hello")
                found = await get_answer_by_question(db, world["attempt_id"], qid)
                assert found["answerText"] == "Hello"
            finally:
                await db.close()

        asyncio.run(_run())

    def test_delete_checks_ownership(self):
        async def _run():
            from app.errors import UnauthorizedError
            from app.services.answer_store import delete_answer, validate_answer_ownership

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                other_agent = await seed_agent(db, user_id=2, email="other@test.com")
                qid = await seed_question(db, "WRITING", "A1")
                saved = await _save(db, world, qid, answer_text="Hello")

                assert await validate_answer_ownership(db, saved["id"], world["agent_id"]) is True
                assert await validate_answer_ownership(db, saved["id"], other_agent) is False

                with pytest.raises(UnauthorizedError):
                    await delete_answer(db, saved["id"], other_agent)

                result = await delete_answer(db, saved["id"], world["agent_id"])
                assert result == {"answerId": saved["id"], "deleted": True}
                assert await _answer_rows(db, world["attempt_id"]) == 0
            finally:
                await db.close()

        asyncio.run(_run())


class TestStatistics:
    def test_counts_and_time_spent(self):
        async def _run():
            from app.services.answer_store import get_answer_statistics

            db = await setup_test_db()
            try:
                world = await seed_world(db)
                w1 = await seed_question(db, "WRITING", "A1")
                w2 = await seed_question(db, "WRITING", "A2")
                s1 = await seed_question(db, "SPEAKING", "B1")
                await _save(db, world, w1, answer_text="One answer")
                await _save(db, world, w2, is_skipped=True)
                await _save(db, world, s1, section_id=world["speaking_section"], audio_file_path="a.webm")

                stats = await get_answer_statistics(
                    db, world["attempt_id"], now=datetime(2026, 1, 1, 10, 20, tzinfo=timezone.utc)
                )
                assert stats["totalQuestions"] == 3
                assert stats["answeredQuestions"] == 2
                assert stats["skippedQuestions"] == 1
                assert stats["writingAnswers"] == 1
                assert stats["speakingAnswers"] == 1
                assert stats["totalTimeSpent"] == 1200
            finally:
                await db.close()

        asyncio.run(_run())

    def test_unknown_attempt(self):
        async def _run():
            from app.errors import NotFoundError
            from app.services.answer_store import get_answer_statistics

            db = await setup_test_db()
            try:
                with pytest.raises(NotFoundError):
                    await get_answer_statistics(db, 999)
            finally:
                await db.close()

        asyncio.run(_run())
