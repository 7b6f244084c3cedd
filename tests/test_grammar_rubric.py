"""
Tests for the grammar checker, the rubric response parser and transcription guards.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest


class TestGrammarScore:
    def test_no_text_scores_zero(self):
        from app.services.grammar_checker import calculate_grammar_score

        assert calculate_grammar_score(0, 0) == 0

    def test_no_errors_scores_hundred(self):
        from app.services.grammar_checker import calculate_grammar_score

        assert calculate_grammar_score(0, 500) == 100

    def test_error_rate_bands(self):
        from app.services.grammar_checker import calculate_grammar_score

        # 500 chars ~ 100 words
        assert calculate_grammar_score(1, 500) == 95
        assert calculate_grammar_score(2, 500) == 85
        assert calculate_grammar_score(4, 500) == 70
        assert calculate_grammar_score(10, 500) == 40
        assert calculate_grammar_score(50, 500) == 0


class TestHeuristicCheck:
    def test_clean_text(self):
        from app.services.grammar_checker import basic_grammar_check

        result = basic_grammar_check("This is fine. So is this.")
        assert result["errorCount"] == 0
        assert result["grammarScore"] == 100
        assert result["source"] == "heuristic"

    def test_flags_spacing_capitals_and_end_punctuation(self):
        from app.services.grammar_checker import basic_grammar_check

        result = basic_grammar_check("this has  two spaces")
        types = sorted(e["type"] for e in result["errors"])
        assert types == ["capitalization", "formatting", "punctuation"]
        assert result["grammarScore"] < 100


class TestLanguageToolCheck:
    def test_maps_languagetool_matches(self):
        async def _run():
            from app.services.grammar_checker import check

            def handler(request):
                assert b"language=en-US" in request.content
                return httpx.Response(200, json={"matches": [{
                    "message": "Possible spelling mistake found.",
                    "offset": 2,
                    "length": 4,
                    "replacements": [{"value": "like"}],
                    "context": {"text": "I lik tea."},
                    "rule": {"issueType": "misspelling", "category": {"id": "TYPOS"}},
                }]})

            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                result = await check("I lik tea.", client=client)

            assert result["source"] == "languagetool"
            assert result["errorCount"] == 1
            assert result["errors"][0] == {
                "type": "typos",
                "message": "Possible spelling mistake found.",
                "suggestion": "like",
                "severity": "major",
                "context": "I lik tea.",
                "offset": 2,
                "length": 4,
            }

        asyncio.run(_run())

    def test_falls_back_on_http_error(self):
        async def _run():
            from app.services.grammar_checker import check

            transport = httpx.MockTransport(lambda request: httpx.Response(503))
            async with httpx.AsyncClient(transport=transport) as client:
                result = await check("All good here.", client=client)

            assert result["source"] == "heuristic"
            assert result["grammarScore"] == 100

        asyncio.run(_run())

    def test_falls_back_on_malformed_body(self):
        async def _run():
            from app.services.grammar_checker import check

            transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))
            async with httpx.AsyncClient(transport=transport) as client:
                result = await check("All good here.", client=client)

            assert result["source"] == "heuristic"

        asyncio.run(_run())

    def test_empty_text_skips_network(self):
        async def _run():
            from app.services.grammar_checker import check

            result = await check("   ")
            assert result == {"grammarScore": 0, "errors": [], "errorCount": 0, "source": "empty"}

        asyncio.run(_run())


class TestRubricParsing:
    def test_fenced_json(self):
        from app.services.rubric_scorer import parse_rubric_response

        raw = "```json\n" + json.dumps({
            "correctnessScore": 82,
            "thinkingLevelScore": 70,
            "completenessScore": 90,
            "detailedFeedback": "Well argued.",
            "strengths": ["structure"],
            "improvements": ["articles"],
            "reasoning": "Upper intermediate.",
        }) + "\n```"
        parsed = parse_rubric_response(raw, "WRITING")
        assert parsed["correctness"] == 82
        assert parsed["thinking"] == 70
        assert parsed["completeness"] == 90
        assert parsed["fluency"] is None
        assert parsed["strengths"] == ["structure"]

    def test_clamps_and_defaults_scores(self):
        from app.services.rubric_scorer import parse_rubric_response

        raw = json.dumps({"correctnessScore": 140, "thinkingLevelScore": "n/a", "fluencyScore": -5})
        parsed = parse_rubric_response(raw, "SPEAKING")
        assert parsed["correctness"] == 100
        assert parsed["thinking"] == 50
        assert parsed["fluency"] == 0
        assert parsed["completeness"] is None
        assert parsed["strengths"] == []

    def test_unparsable_output_uses_neutral_scores(self):
        from app.services.rubric_scorer import parse_rubric_response

        parsed = parse_rubric_response("Sorry, I cannot do that.", "WRITING")
        assert parsed["correctness"] == 50
        assert parsed["completeness"] == 50
        assert parsed["feedback"] == "Evaluation completed but response format was invalid."

    @pytest.mark.parametrize("value,expected", [(None, 50), ("abc", 50), (float("nan"), 50), ("75", 75), (101, 100)])
    def test_validate_score(self, value, expected):
        from app.services.rubric_scorer import validate_score

        assert validate_score(value) == expected


class TestRubricScore:
    def test_prompt_includes_expected_answer_and_criteria(self):
        from app.services.rubric_scorer import build_messages

        messages = build_messages("Describe your town.", "It is small.", "WRITING", expected_answer="A short description")
        user = messages[1]["content"]
        assert "Describe your town." in user
        assert "A short description" in user
        assert "completenessScore" in user

    def test_score_calls_model_in_json_mode(self):
        async def _run():
            from app.services import rubric_scorer

            raw = json.dumps({"correctnessScore": 90, "thinkingLevelScore": 80, "fluencyScore": 70})
            with patch("app.services.rubric_scorer.ai_chat", new=AsyncMock(return_value=raw)) as chat:
                result = await rubric_scorer.score("Q", "A", "SPEAKING")

            assert chat.await_args.kwargs["json_mode"] is True
            assert chat.await_args.kwargs["use_case"] == "evaluation"
            assert result["fluency"] == 70
            assert result["model"] == "gpt-4o"

        asyncio.run(_run())

    def test_ai_failure_raises_rubric_error(self):
        async def _run():
            from app.errors import RubricScoringError
            from app.services import rubric_scorer

            with patch("app.services.rubric_scorer.ai_chat", new=AsyncMock(side_effect=RuntimeError("boom"))):
                with pytest.raises(RubricScoringError, match="boom"):
                    await rubric_scorer.score("Q", "A", "WRITING")

        asyncio.run(_run())


class TestTranscriber:
    def test_relative_paths_resolve_against_storage_dir(self, monkeypatch, tmp_path):
        from app.config import settings
        from app.services.transcriber import resolve_audio_path

        monkeypatch.setattr(settings, "audio_storage_dir", str(tmp_path))
        assert resolve_audio_path("a/b.webm") == tmp_path / "a" / "b.webm"
        assert resolve_audio_path("/abs/c.webm").as_posix() == "/abs/c.webm"

    def test_missing_file_raises(self, monkeypatch, tmp_path):
        async def _run():
            from app.errors import TranscriptionError
            from app.services.transcriber import transcribe

            with pytest.raises(TranscriptionError, match="not found"):
                await transcribe("missing.webm")

        from app.config import settings

        monkeypatch.setattr(settings, "audio_storage_dir", str(tmp_path))
        asyncio.run(_run())

    def test_returns_transcript_fields(self, monkeypatch, tmp_path):
        async def _run():
            from types import SimpleNamespace

            from app.services import transcriber

            fake = SimpleNamespace(text=" Hello there ", duration=3.2, language="english")
            with patch("app.services.transcriber._whisper_transcribe", new=AsyncMock(return_value=fake)):
                result = await transcriber.transcribe("clip.webm")
            assert result == {"text": "Hello there", "durationSeconds": 3.2, "language": "english"}

        from app.config import settings

        monkeypatch.setattr(settings, "audio_storage_dir", str(tmp_path))
        (tmp_path / "clip.webm").write_bytes(b"\x00")
        asyncio.run(_run())
