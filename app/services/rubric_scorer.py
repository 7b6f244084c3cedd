"""AI rubric scoring of a single answer.

The model is asked for JSON; whatever comes back is parsed leniently. Every
numeric field is clamped to 0-100 and a missing or non-numeric one becomes
50, so malformed output degrades to neutral scores instead of failing.
"""

import json
import logging
import math
import re
from typing import Optional

from app.errors import RubricScoringError
from app.services.ai_client import ai_chat, resolve_model
from app.services.prompts import load_prompt

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 50
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

THIRD_SCORE_KEY = {"SPEAKING": "fluencyScore", "WRITING": "completenessScore"}


def validate_score(value) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SCORE
    if math.isnan(num):
        return DEFAULT_SCORE
    return max(0.0, min(100.0, num))


def _default_result(question_type: str) -> dict:
    return {
        "correctness": DEFAULT_SCORE,
        "thinking": DEFAULT_SCORE,
        "fluency": DEFAULT_SCORE if question_type == "SPEAKING" else None,
        "completeness": DEFAULT_SCORE if question_type == "WRITING" else None,
        "feedback": "Evaluation completed but response format was invalid.",
        "strengths": [],
        "improvements": [],
        "reasoning": "Unable to parse detailed evaluation.",
    }


def parse_rubric_response(text: Optional[str], question_type: str) -> dict:
    """Turn raw model output into clamped subscores plus feedback."""
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        parsed = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Unparsable rubric response, using defaults: %.200s", text)
        return _default_result(question_type)
    if not isinstance(parsed, dict):
        logger.warning("Rubric response was not an object, using defaults")
        return _default_result(question_type)

    strengths = parsed.get("strengths")
    improvements = parsed.get("improvements")
    return {
        "correctness": validate_score(parsed.get("correctnessScore")),
        "thinking": validate_score(parsed.get("thinkingLevelScore")),
        "fluency": validate_score(parsed.get("fluencyScore")) if question_type == "SPEAKING" else None,
        "completeness": validate_score(parsed.get("completenessScore")) if question_type == "WRITING" else None,
        "feedback": str(parsed.get("detailedFeedback") or ""),
        "strengths": strengths if isinstance(strengths, list) else [],
        "improvements": improvements if isinstance(improvements, list) else [],
        "reasoning": str(parsed.get("reasoning") or ""),
    }


def build_messages(question_text: str, answer_text: str, question_type: str,
                   expected_answer: Optional[str] = None) -> list[dict]:
    prompt = load_prompt("rubric_evaluator.yaml")
    expected_block = f"EXPECTED ANSWER:\n{expected_answer}\n\n" if expected_answer else ""
    user_message = prompt["user_template"].format(
        question_text=question_text,
        expected_answer_block=expected_block,
        answer_text=answer_text,
        question_type=question_type,
        type_criteria=prompt["type_criteria"][question_type],
        third_score_key=THIRD_SCORE_KEY[question_type],
    )
    return [
        {"role": "system", "content": prompt["system_prompt"]},
        {"role": "user", "content": user_message},
    ]


async def score(question_text: str, answer_text: str, question_type: str,
                expected_answer: Optional[str] = None) -> dict:
    """Score one answer. Raises RubricScoringError only when the AI call itself fails."""
    messages = build_messages(question_text, answer_text, question_type, expected_answer)
    try:
        raw = await ai_chat(
            messages,
            use_case="evaluation",
            temperature=0.3,
            json_mode=True,
            max_tokens=800,
        )
    except Exception as e:
        raise RubricScoringError(f"AI rubric scoring failed: {e}") from e

    result = parse_rubric_response(raw, question_type)
    result["model"] = resolve_model("evaluation")
    return result
