"""Rule-based prompt review (``prompt/review``)."""

import json
import logging
import re
from typing import Any

from .config import load_config
from .registry import register_handler

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 10000
SEVERITY_RANK = {"critical": 4, "high": 3, "medium": 2, "low": 1, "info": 0}


def load_criteria() -> dict[str, Any]:
    """Criteria document from PROMPT_CRITERIA_FILE; empty criteria when absent or unreadable."""
    path = load_config().prompt_criteria_file
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {"version": "0", "categories": []}
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable prompt criteria {path}: {e}")
        return {"version": "0", "categories": []}
    if not isinstance(data, dict) or not isinstance(data.get("categories"), list):
        return {"version": "0", "categories": []}
    return data


def review_prompt(prompt: str, criteria: dict[str, Any]) -> list[dict[str, Any]]:
    issues = []
    for category in criteria.get("categories", []):
        if not isinstance(category, dict):
            continue
        for rule in category.get("rules", []):
            if not isinstance(rule, dict):
                continue
            severity = rule.get("severity", "info")
            base = {
                "ruleId": rule.get("id"),
                "category": category.get("id"),
                "severity": severity,
                "description": rule.get("description", ""),
            }
            pattern = rule.get("pattern")
            if isinstance(pattern, str) and pattern:
                try:
                    match = re.search(pattern, prompt, re.IGNORECASE)
                except re.error as e:
                    logger.warning(f"Invalid prompt rule pattern {rule.get('id')}: {e}")
                    continue
                if match:
                    issues.append({**base, "match": match.group(0)})
            must_contain = rule.get("mustContain")
            if isinstance(must_contain, str) and must_contain:
                if must_contain.lower() not in prompt.lower():
                    issues.append({
                        **base,
                        "description": f"Missing required token(s): {rule.get('description') or must_contain}",
                    })
    return issues


def summarize(issues: list[dict[str, Any]]) -> dict[str, Any]:
    counts: dict[str, int] = {}
    highest = None
    for issue in issues:
        severity = issue["severity"]
        counts[severity] = counts.get(severity, 0) + 1
        if highest is None or SEVERITY_RANK.get(severity, 0) > SEVERITY_RANK.get(highest, 0):
            highest = severity
    return {"counts": counts, "highestSeverity": highest}


@register_handler("prompt/review")
def prompt_review(params: dict[str, Any]) -> dict[str, Any]:
    prompt = params.get("prompt")
    if not isinstance(prompt, str):
        prompt = ""
    if len(prompt) > MAX_PROMPT_LENGTH:
        return {"truncated": True, "message": "prompt too large", "max": MAX_PROMPT_LENGTH}
    prompt = prompt.replace("\x00", "")
    issues = review_prompt(prompt, load_criteria())
    return {"issues": issues, "summary": summarize(issues), "length": len(prompt)}
