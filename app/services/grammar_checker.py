"""Grammar scoring through LanguageTool, with a local heuristic fallback.

check() never raises: if LanguageTool is unreachable or answers with
something unusable, the text is scored by simple spacing, capitalisation
and end-punctuation rules instead.
"""

import logging
import re

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

_MULTI_SPACE_RE = re.compile(r"  +")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_END_PUNCT_RE = re.compile(r"[.!?]$")


def calculate_grammar_score(error_count: int, text_length: int) -> int:
    """0-100 score from errors per 100 (estimated) words; ~5 characters per word."""
    if text_length == 0:
        return 0
    if error_count == 0:
        return 100

    estimated_words = text_length / 5
    error_rate = (error_count / estimated_words) * 100

    if error_rate <= 1:
        score = 100 - error_rate * 5
    elif error_rate <= 2:
        score = 95 - (error_rate - 1) * 10
    elif error_rate <= 4:
        score = 85 - (error_rate - 2) * 7.5
    else:
        score = max(0, 70 - (error_rate - 4) * 5)

    return round(max(0, min(100, score)))


def _map_match(match: dict) -> dict:
    rule = match.get("rule") or {}
    category_id = (rule.get("category") or {}).get("id", "")
    replacements = match.get("replacements") or []
    major = category_id == "TYPOS" or rule.get("issueType") == "misspelling"
    return {
        "type": category_id.lower() or "grammar",
        "message": match.get("message", ""),
        "suggestion": replacements[0].get("value") if replacements else "No suggestion",
        "severity": "major" if major else "moderate",
        "context": (match.get("context") or {}).get("text"),
        "offset": match.get("offset"),
        "length": match.get("length"),
    }


def basic_grammar_check(text: str) -> dict:
    """Heuristic fallback used when LanguageTool is unavailable."""
    errors = []

    if _MULTI_SPACE_RE.search(text):
        errors.append({
            "type": "formatting",
            "message": "Multiple consecutive spaces found",
            "suggestion": "Use single spaces between words",
            "severity": "minor",
        })

    for sentence in _SENTENCE_SPLIT_RE.split(text):
        trimmed = sentence.strip()
        if trimmed and trimmed[0].islower():
            errors.append({
                "type": "capitalization",
                "message": f'Sentence starts with lowercase: "{trimmed[:20]}..."',
                "suggestion": "Start sentences with capital letters",
                "severity": "moderate",
            })

    if text.strip() and not _END_PUNCT_RE.search(text.strip()):
        errors.append({
            "type": "punctuation",
            "message": "Missing punctuation at end of text",
            "suggestion": "End sentences with proper punctuation",
            "severity": "minor",
        })

    return {
        "grammarScore": calculate_grammar_score(len(errors), len(text)),
        "errors": errors,
        "errorCount": len(errors),
        "source": "heuristic",
    }


async def check(text: str, client: httpx.AsyncClient | None = None) -> dict:
    """Return {"grammarScore", "errors", "errorCount", "source"} for a text."""
    if not text or not text.strip():
        return {"grammarScore": 0, "errors": [], "errorCount": 0, "source": "empty"}

    try:
        data = await _languagetool_check(text, client)
        errors = [_map_match(m) for m in data["matches"]]
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
        logger.warning("LanguageTool check failed, using heuristic fallback: %s", e)
        return basic_grammar_check(text)

    score = calculate_grammar_score(len(errors), len(text))
    logger.debug("LanguageTool score %s with %d errors", score, len(errors))
    return {"grammarScore": score, "errors": errors, "errorCount": len(errors), "source": "languagetool"}


async def _languagetool_check(text: str, client: httpx.AsyncClient | None) -> dict:
    form = {"text": text, "language": settings.languagetool_language, "enabledOnly": "false"}
    if client is not None:
        response = await client.post(settings.languagetool_url, data=form)
    else:
        async with httpx.AsyncClient(timeout=settings.grammar_timeout_seconds) as owned:
            response = await owned.post(settings.languagetool_url, data=form)
    response.raise_for_status()
    return response.json()
