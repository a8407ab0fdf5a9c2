"""Keyword relevance search over the catalog (``instructions/search``)."""

import time
from typing import Any

from .catalog import get_catalog
from .errors import invalid_params
from .registry import register_handler

MAX_KEYWORDS = 10
MAX_KEYWORD_LENGTH = 100
DEFAULT_LIMIT = 50
MAX_LIMIT = 100

TITLE_WEIGHT = 10
BODY_WEIGHT = 2
BODY_CAP = 20
CATEGORY_WEIGHT = 3
MULTI_KEYWORD_BONUS = 5


def _fail(reason: str) -> Exception:
    return invalid_params(f"Search failed: {reason}", {"method": "instructions/search"})


def _validate(params: dict[str, Any]) -> tuple[list[str], int, bool, bool]:
    keywords = params.get("keywords")
    if not isinstance(keywords, list) or not keywords:
        raise _fail("keywords must be a non-empty array")
    if len(keywords) > MAX_KEYWORDS:
        raise _fail(f"at most {MAX_KEYWORDS} keywords allowed")
    cleaned = []
    for keyword in keywords:
        if not isinstance(keyword, str) or not keyword.strip():
            raise _fail("keywords must be non-empty strings")
        if len(keyword) > MAX_KEYWORD_LENGTH:
            raise _fail(f"keywords must be at most {MAX_KEYWORD_LENGTH} characters")
        cleaned.append(keyword.strip())

    limit = params.get("limit", DEFAULT_LIMIT)
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
        raise _fail(f"limit must be an integer between 1 and {MAX_LIMIT}")
    include_categories = params.get("includeCategories", False)
    if not isinstance(include_categories, bool):
        raise _fail("includeCategories must be a boolean")
    case_sensitive = params.get("caseSensitive", False)
    if not isinstance(case_sensitive, bool):
        raise _fail("caseSensitive must be a boolean")
    return cleaned, limit, include_categories, case_sensitive


def score_entry(
    title: str,
    body: str,
    categories: list[str],
    keywords: list[str],
    include_categories: bool,
    case_sensitive: bool,
) -> tuple[int, list[str]]:
    """Relevance score and the fields that matched."""
    fold = (lambda s: s) if case_sensitive else str.lower
    title_f, body_f = fold(title), fold(body)
    categories_f = [fold(c) for c in categories]
    score = 0
    matched_fields: set[str] = set()
    matched_keywords = 0

    for keyword in keywords:
        needle = fold(keyword)
        hit = False
        if needle in title_f:
            score += TITLE_WEIGHT
            matched_fields.add("title")
            hit = True
        occurrences = body_f.count(needle)
        if occurrences:
            score += min(occurrences * BODY_WEIGHT, BODY_CAP)
            matched_fields.add("body")
            hit = True
        if include_categories and any(needle in c for c in categories_f):
            score += CATEGORY_WEIGHT
            matched_fields.add("categories")
            hit = True
        if hit:
            matched_keywords += 1

    if matched_keywords > 1:
        score += (matched_keywords - 1) * MULTI_KEYWORD_BONUS
    order = ("title", "body", "categories")
    return score, [f for f in order if f in matched_fields]


@register_handler("instructions/search")
def search_instructions(params: dict[str, Any]) -> dict[str, Any]:
    started = time.perf_counter()
    keywords, limit, include_categories, case_sensitive = _validate(params)
    entries = get_catalog().ensure_loaded().entries

    scored = []
    for entry in entries:
        score, fields = score_entry(
            entry.title, entry.body, entry.categories, keywords, include_categories, case_sensitive
        )
        if score > 0:
            scored.append({"instructionId": entry.id, "relevanceScore": score, "matchedFields": fields})
    scored.sort(key=lambda r: r["relevanceScore"], reverse=True)

    return {
        "results": scored[:limit],
        "totalMatches": len(scored),
        "query": {
            "keywords": keywords,
            "limit": limit,
            "includeCategories": include_categories,
            "caseSensitive": case_sensitive,
        },
        "executionTimeMs": round((time.perf_counter() - started) * 1000, 3),
    }
