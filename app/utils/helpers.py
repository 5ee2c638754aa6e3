"""
Common utility functions and helpers.
"""
from datetime import date, datetime, time, timezone
from typing import Any, List, Optional, Tuple
import json
import re


_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_date_param(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a ``YYYY-MM-DD`` or ISO-8601 datetime query parameter.

    Args:
        value: Raw query string value (``None`` or blank means "not given")
        end_of_day: For date-only values, return 23:59:59.999999 instead of midnight

    Returns:
        Timezone-aware datetime (UTC when no offset is given), or ``None``

    Raises:
        ValueError: If the value is not a valid date or datetime
    """
    if value is None or not value.strip():
        return None
    value = value.strip()

    if _DATE_ONLY.match(value):
        day = date.fromisoformat(value)
        moment = time.max if end_of_day else time.min
        return datetime.combine(day, moment, tzinfo=timezone.utc)

    # Python < 3.11 does not accept a trailing "Z"
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_keywords(text: str, top_n: int = 10) -> List[str]:
    """
    Extract top keywords from text using simple frequency analysis.

    Ties keep their first-seen order.

    Args:
        text: Input text
        top_n: Number of top keywords to return

    Returns:
        List of top keywords
    """
    words = text.lower().split()

    stopwords = {
        'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
        'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
        'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would',
        'could', 'should', 'may', 'might', 'can', 'this', 'that', 'these',
        'those', 'i', 'you', 'he', 'she', 'it', 'we', 'they', 'them', 'their',
        'into', 'over', 'after', 'when', 'while',
    }

    word_freq = {}
    for word in words:
        word = re.sub(r'[^\w]', '', word)
        if word and word not in stopwords and len(word) > 3:
            word_freq[word] = word_freq.get(word, 0) + 1

    sorted_words = sorted(word_freq.items(), key=lambda x: x[1], reverse=True)
    return [word for word, _ in sorted_words[:top_n]]


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def parse_llm_json(response: str) -> Tuple[bool, Any]:
    """
    Parse JSON from potentially messy LLM output.

    Handles markdown code fences, trailing commas, and prose surrounding a
    single JSON object or array.

    Returns ``(success, parsed_value)``.
    """
    if not response:
        return False, None

    text = response.strip()
    ok, val = _try_json(text)
    if ok:
        return True, val

    text = re.sub(r"^```(?:json)?\s*\n?", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\n?```\s*$", "", text).strip()
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    ok, val = _try_json(text)
    if ok:
        return True, val

    for open_b, close_b in (("{", "}"), ("[", "]")):
        fragment = _extract_json_structure(text, open_b, close_b)
        if fragment:
            ok, val = _try_json(fragment)
            if ok:
                return True, val
    return False, None


def _try_json(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
    """First balanced ``open_b … close_b`` fragment in *text*, or ``""``."""
    start = text.find(open_b)
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escape_next = False
    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return ""
