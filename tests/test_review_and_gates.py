"""
Prompt review (prompt/review) and catalog gate (gates/evaluate) tests.
"""

import json

import pytest
from conftest import write_instruction

from mcp_index.prompt_review import review_prompt, summarize
from mcp_index.registry import invoke

CRITERIA = {
    "version": "1",
    "categories": [
        {
            "id": "safety",
            "rules": [
                {"id": "no-secrets", "severity": "critical", "description": "Looks like a secret", "pattern": r"api[_-]?key"},
                {"id": "broken", "severity": "low", "description": "Bad regex", "pattern": "("},
            ],
        },
        {
            "id": "structure",
            "rules": [
                {"id": "has-goal", "severity": "medium", "description": "State the goal", "mustContain": "goal"},
            ],
        },
    ],
}


@pytest.fixture
def criteria_file(workspace):
    path = workspace / "docs" / "PROMPT-CRITERIA.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(CRITERIA), encoding="utf-8")
    return path


class TestPromptReview:
    def test_issues_and_summary(self, criteria_file):
        result = invoke("prompt/review", {"prompt": "Use API_KEY=abc to call the service"})

        rule_ids = [i["ruleId"] for i in result["issues"]]
        assert rule_ids == ["no-secrets", "has-goal"]
        assert result["issues"][0]["match"] == "API_KEY"
        assert result["issues"][1]["description"] == "Missing required token(s): State the goal"
        assert result["summary"] == {"counts": {"critical": 1, "medium": 1}, "highestSeverity": "critical"}

    def test_clean_prompt(self, criteria_file):
        result = invoke("prompt/review", {"prompt": "Goal: summarize the release notes."})
        assert result["issues"] == []
        assert result["summary"]["highestSeverity"] is None

    def test_without_criteria(self):
        result = invoke("prompt/review", {"prompt": "anything"})
        assert result["issues"] == []
        assert result["length"] == 8

    def test_oversized_prompt(self, criteria_file):
        result = invoke("prompt/review", {"prompt": "x" * 10001})
        assert result == {"truncated": True, "message": "prompt too large", "max": 10000}

    def test_nul_characters_stripped(self):
        assert invoke("prompt/review", {"prompt": "a\x00b"})["length"] == 2

    def test_summarize_empty(self):
        assert summarize(review_prompt("", {"categories": []})) == {"counts": {}, "highestSeverity": None}


def write_gates(directory, gates):
    (directory / "gates.json").write_text(json.dumps({"gates": gates}), encoding="utf-8")


class TestGates:
    def test_not_configured(self, instructions_dir):
        assert invoke("gates/evaluate", {}) == {"notConfigured": True}

    def test_invalid_file(self, instructions_dir):
        (instructions_dir / "gates.json").write_text("not json", encoding="utf-8")
        assert invoke("gates/evaluate", {}) == {"error": "invalid gates file"}

    def test_evaluate(self, instructions_dir):
        write_instruction(instructions_dir, "m1", requirement="mandatory", priority=10, owner="team-a")
        write_instruction(instructions_dir, "m2", requirement="mandatory", priority=80, owner="team-a")
        write_instruction(instructions_dir, "o1", priority=90)
        write_gates(instructions_dir, [
            {"id": "min-mandatory", "op": ">=", "value": 2, "where": {"requirement": "mandatory"}},
            {"id": "few-low-priority", "op": "<", "value": 1, "where": {"priorityGt": 50}, "severity": "warn"},
            {"id": "bad-op", "op": "~=", "value": 1},
        ])

        result = invoke("gates/evaluate", {})

        results = {r["id"]: r for r in result["results"]}
        assert results["min-mandatory"]["passed"] is True
        assert results["min-mandatory"]["count"] == 2
        assert results["few-low-priority"]["passed"] is False
        assert results["few-low-priority"]["count"] == 2
        assert "bad-op" not in results
        assert result["summary"] == {"errors": 0, "warnings": 1, "total": 2}

    def test_gates_file_not_loaded_as_instruction(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        write_gates(instructions_dir, [])
        result = invoke("instructions/dispatch", {"action": "list"})
        assert [item["id"] for item in result["items"]] == ["a"]
