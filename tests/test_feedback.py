"""
Feedback channel tests (feedback/*).
"""

import pytest

from mcp_index.config import reset_config
from mcp_index.errors import SemanticError
from mcp_index.feedback import feedback_path
from mcp_index.registry import invoke


def submit(**overrides):
    params = {
        "type": "bug-report",
        "severity": "medium",
        "title": "Search misses titles",
        "description": "Searching for 'deploy' skips the deploy checklist.",
    }
    params.update(overrides)
    return invoke("feedback/submit", params)


class TestSubmit:
    def test_submit(self):
        result = submit(tags=["search"], context={"client": "cli"})

        assert result["success"] is True
        assert len(result["feedbackId"]) == 16
        assert result["message"] == "Feedback submitted successfully"

        entry = invoke("feedback/get", {"id": result["feedbackId"]})["entry"]
        assert entry["status"] == "new"
        assert entry["tags"] == ["search"]
        assert entry["context"] == {"client": "cli"}
        assert feedback_path().exists()

    def test_missing_fields(self):
        with pytest.raises(SemanticError) as exc_info:
            invoke("feedback/submit", {"type": "issue"})
        assert exc_info.value.code == -32602
        assert exc_info.value.message == "Missing required parameters: type, severity, title, description"

    def test_invalid_type(self):
        with pytest.raises(SemanticError) as exc_info:
            submit(type="rant")
        assert exc_info.value.message.startswith("Invalid type. Must be one of:")

    def test_invalid_severity(self):
        with pytest.raises(SemanticError):
            submit(severity="apocalyptic")

    def test_long_fields_truncated(self):
        feedback_id = submit(title="t" * 500, description="d" * 5000, tags=[str(i) for i in range(20)])["feedbackId"]
        entry = invoke("feedback/get", {"id": feedback_id})["entry"]
        assert len(entry["title"]) == 200
        assert len(entry["description"]) == 2000
        assert len(entry["tags"]) == 10

    def test_security_feedback_logged_as_warning(self, caplog):
        with caplog.at_level("WARNING", logger="mcp_index.feedback"):
            submit(type="security")
        assert "[SECURITY/CRITICAL]" in caplog.text

    def test_storage_capped(self, monkeypatch):
        monkeypatch.setenv("FEEDBACK_MAX_ENTRIES", "2")
        reset_config()
        for i in range(3):
            submit(title=f"entry {i}")
        assert invoke("feedback/list", {})["total"] == 2


class TestListAndGet:
    def test_filters(self):
        submit(severity="low")
        submit(severity="high", type="performance")
        submit(severity="high")

        assert invoke("feedback/list", {"severity": "high"})["total"] == 2
        assert invoke("feedback/list", {"type": "performance"})["total"] == 1
        assert invoke("feedback/list", {"status": "resolved"})["total"] == 0

    def test_tag_filter(self):
        submit(tags=["search"])
        submit(tags=["ui"])
        result = invoke("feedback/list", {"tags": ["ui", "other"]})
        assert result["total"] == 1

    def test_paging(self):
        for i in range(3):
            submit(title=f"entry {i}")
        page = invoke("feedback/list", {"limit": 2})
        assert len(page["entries"]) == 2
        assert page["hasMore"] is True
        rest = invoke("feedback/list", {"limit": 2, "offset": 2})
        assert len(rest["entries"]) == 1
        assert rest["hasMore"] is False

    def test_get_unknown(self):
        with pytest.raises(SemanticError) as exc_info:
            invoke("feedback/get", {"id": "nope"})
        assert exc_info.value.message == "Feedback entry not found: nope"


class TestUpdate:
    def test_update_status(self):
        feedback_id = submit()["feedbackId"]

        result = invoke("feedback/update", {"id": feedback_id, "status": "resolved", "metadata": {"fixedIn": "1.4.1"}})

        assert result["success"] is True
        entry = result["entry"]
        assert entry["status"] == "resolved"
        assert entry["metadata"]["fixedIn"] == "1.4.1"
        assert entry["metadata"]["updatedBy"] == "system"
        assert invoke("feedback/list", {"status": "resolved"})["total"] == 1

    def test_invalid_status(self):
        feedback_id = submit()["feedbackId"]
        with pytest.raises(SemanticError):
            invoke("feedback/update", {"id": feedback_id, "status": "done-ish"})


class TestStatsAndHealth:
    def test_stats(self):
        submit(severity="low")
        submit(severity="critical", type="security")

        stats = invoke("feedback/stats", {})["stats"]

        assert stats["total"] == 2
        assert stats["bySeverity"] == {"low": 1, "critical": 1}
        assert stats["byType"] == {"bug-report": 1, "security": 1}
        assert stats["byStatus"] == {"new": 2}
        assert stats["recentActivity"] == {"last24h": 2, "last7d": 2, "last30d": 2}

    def test_storage_info(self):
        info = invoke("feedback/stats", {})["storageInfo"]
        assert info["maxEntries"] == 1000
        assert info["version"] == "1.0.0"

    def test_health_creates_directory(self, workspace):
        result = invoke("feedback/health", {})
        assert result["status"] == "ok"
        assert result["storage"]["writable"] is True
        assert (workspace / "feedback").is_dir()
