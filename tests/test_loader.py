"""
Loader tests: validation, legacy salvage, schema migration and normalization.
"""

import json

import pytest
from conftest import make_record, read_json, write_instruction

from mcp_index.config import reset_config
from mcp_index.loader import CatalogLoader, compute_catalog_hash
from mcp_index.migrations import SCHEMA_VERSION, migrate_directory, migrate_record


class TestLoadDirectory:
    """Scanning a directory of instruction files."""

    def test_loads_valid_files(self, instructions_dir):
        write_instruction(instructions_dir, "alpha")
        write_instruction(instructions_dir, "beta")

        result = CatalogLoader(instructions_dir).load()

        assert [e.id for e in result.entries] == ["alpha", "beta"]
        assert result.errors == []
        assert result.summary.scanned == 2
        assert result.summary.accepted == 2
        assert len(result.hash) == 64

    def test_missing_directory(self, workspace):
        result = CatalogLoader(workspace / "nope").load()
        assert result.entries == []
        assert result.errors[0].error == "missing directory"

    def test_rejections_are_bucketed(self, instructions_dir):
        write_instruction(instructions_dir, "good")
        (instructions_dir / "broken.json").write_text("{not json", encoding="utf-8")
        (instructions_dir / "gates.json").write_text(json.dumps({"gates": []}), encoding="utf-8")
        # Same id as good.json, sorts after it
        (instructions_dir / "zz-copy.json").write_text(json.dumps(make_record("good")), encoding="utf-8")

        result = CatalogLoader(instructions_dir).load()

        assert [e.id for e in result.entries] == ["good"]
        assert result.summary.reasons == {"parse": 1, "ignored": 1, "duplicate": 1}
        # Non-instruction config files are not reported as errors
        assert sorted(err.file for err in result.errors) == ["broken.json", "zz-copy.json"]
        duplicate = next(err for err in result.errors if err.file == "zz-copy.json")
        assert "duplicate id" in duplicate.error

    def test_schema_errors(self, instructions_dir):
        write_instruction(instructions_dir, "bad-teams", teamIds="not-a-list")
        result = CatalogLoader(instructions_dir).load()
        assert result.entries == []
        assert result.summary.reasons == {"schema": 1}
        assert result.errors[0].error.startswith("schema:")

    def test_blank_body_is_a_classification_issue(self, instructions_dir):
        write_instruction(instructions_dir, "blank", body="   ")
        result = CatalogLoader(instructions_dir).load()
        assert result.entries == []
        assert result.errors[0].error == "missing body"

    def test_deprecated_requires_replacement(self, instructions_dir):
        write_instruction(instructions_dir, "old", requirement="deprecated")
        result = CatalogLoader(instructions_dir).load()
        assert result.errors[0].error == "deprecated requires deprecatedBy"

    def test_file_trace(self, instructions_dir, monkeypatch):
        monkeypatch.setenv("MCP_CATALOG_FILE_TRACE", "1")
        reset_config()
        write_instruction(instructions_dir, "traced")
        (instructions_dir / "junk.json").write_text("[]", encoding="utf-8")

        result = CatalogLoader(instructions_dir).load()

        assert {"file": "traced.json", "accepted": True} in result.trace
        assert any(t["file"] == "junk.json" and not t["accepted"] for t in result.trace)


class TestSalvage:
    """Legacy values are coerced instead of rejected."""

    def _load_one(self, instructions_dir, **overrides):
        write_instruction(instructions_dir, "legacy", **overrides)
        result = CatalogLoader(instructions_dir).load()
        assert result.errors == []
        return result.entries[0], result.summary.salvage

    def test_audience_alias(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, audience="Team")
        assert entry.audience == "group"
        assert counters["audienceInvalid"] == 1

    def test_unknown_audience_defaults_to_all(self, instructions_dir):
        entry, _ = self._load_one(instructions_dir, audience="martians")
        assert entry.audience == "all"

    def test_requirement_alias(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, requirement="SHOULD")
        assert entry.requirement == "recommended"
        assert counters["requirementInvalid"] == 1

    def test_free_form_requirement_reads_as_recommended(self, instructions_dir):
        entry, _ = self._load_one(instructions_dir, requirement="You should always do this")
        assert entry.requirement == "recommended"

    def test_numeric_string_priority(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, priority="15")
        assert entry.priority == 15
        assert counters["priorityInvalid"] == 1

    def test_priority_clamped(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, priority=250)
        assert entry.priority == 100
        assert counters["priorityClamped"] == 1

    @pytest.mark.parametrize("raw", ["1e400", "-1e400", "NaN", "Infinity"])
    def test_non_finite_priority_uses_default(self, instructions_dir, raw):
        text = json.dumps(make_record("legacy")).replace('"priority": 50', f'"priority": {raw}')
        (instructions_dir / "legacy.json").write_text(text, encoding="utf-8")
        write_instruction(instructions_dir, "other")

        result = CatalogLoader(instructions_dir).load()

        assert result.errors == []
        assert [e.priority for e in result.entries] == [50, 50]
        assert result.summary.salvage["priorityInvalid"] == 1

    def test_comma_separated_categories(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, categories="Python, Style ,")
        assert entry.categories == ["python", "style"]
        assert counters["categoriesInvalid"] == 1

    def test_status_alias(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, status="active")
        assert entry.status == "approved"
        assert counters["statusInvalid"] == 1

    def test_oversized_body_truncated(self, instructions_dir):
        entry, counters = self._load_one(instructions_dir, body="x" * 25000)
        assert len(entry.body) == 20000
        assert counters["bodyTruncated"] == 1

    def test_empty_string_placeholders_dropped(self, instructions_dir):
        entry, _ = self._load_one(instructions_dir, priorityTier="", lastReviewedAt="")
        assert entry.priority_tier == "P3"
        assert entry.last_reviewed_at


class TestNormalization:
    def test_derived_fields(self, instructions_dir):
        write_instruction(
            instructions_dir,
            "norm",
            title="  Padded title  ",
            body="First sentence. Then more.\n",
            categories=["Zeta", "alpha", "ALPHA"],
            priority=15,
        )
        entry = CatalogLoader(instructions_dir).load().entries[0]

        assert entry.title == "Padded title"
        assert entry.categories == ["alpha", "zeta"]
        assert entry.primary_category == "alpha"
        assert entry.priority_tier == "P1"
        assert entry.review_interval_days == 30
        assert entry.version == "1.0.0"
        assert entry.status == "approved"
        assert entry.owner == "unowned"
        assert entry.classification == "internal"
        assert entry.semantic_summary == "First sentence."
        assert entry.risk_score == 85 + 5
        assert entry.change_log[0].summary == "initial import"
        assert entry.next_review_due

    def test_primary_category_kept_when_listed(self, instructions_dir):
        write_instruction(instructions_dir, "prim", categories=["a", "b"], primaryCategory="B")
        entry = CatalogLoader(instructions_dir).load().entries[0]
        assert entry.primary_category == "b"

    def test_stale_source_hash_recomputed(self, instructions_dir):
        write_instruction(instructions_dir, "stale", sourceHash="deadbeef")
        entry = CatalogLoader(instructions_dir).load().entries[0]
        assert entry.source_hash != "deadbeef"
        assert len(entry.source_hash) == 64

    def test_deprecated_entry_status(self, instructions_dir):
        write_instruction(instructions_dir, "new")
        write_instruction(instructions_dir, "old", requirement="deprecated", deprecatedBy="new")
        entries = {e.id: e for e in CatalogLoader(instructions_dir).load().entries}
        assert entries["old"].status == "deprecated"

    def test_unknown_fields_preserved(self, instructions_dir):
        write_instruction(instructions_dir, "extra", customField={"keep": True})
        entry = CatalogLoader(instructions_dir).load().entries[0]
        assert entry.to_record()["customField"] == {"keep": True}


class TestCatalogHash:
    def test_order_independent(self, instructions_dir):
        write_instruction(instructions_dir, "a")
        write_instruction(instructions_dir, "b")
        entries = CatalogLoader(instructions_dir).load().entries
        assert compute_catalog_hash(entries) == compute_catalog_hash(list(reversed(entries)))

    def test_changes_with_body(self, instructions_dir):
        path = write_instruction(instructions_dir, "a")
        before = CatalogLoader(instructions_dir).load().hash
        record = read_json(path)
        record["body"] = "Completely different body"
        record.pop("sourceHash", None)
        path.write_text(json.dumps(record), encoding="utf-8")
        assert CatalogLoader(instructions_dir).load().hash != before


class TestMigrations:
    def test_v1_record_gains_review_interval(self):
        record = make_record("m", priority=10)
        result = migrate_record(record)
        assert result.changed
        assert record["schemaVersion"] == SCHEMA_VERSION
        assert record["reviewIntervalDays"] == 30

    def test_current_record_untouched(self):
        record = make_record("m", schemaVersion=SCHEMA_VERSION)
        assert not migrate_record(record).changed
        assert "reviewIntervalDays" not in record

    def test_unknown_version_coerced(self):
        record = make_record("m", schemaVersion="7")
        result = migrate_record(record)
        assert result.changed
        assert record["schemaVersion"] == SCHEMA_VERSION
        assert "unknown schemaVersion" in result.notes[0]

    def test_loader_persists_migration(self, instructions_dir):
        path = write_instruction(instructions_dir, "legacy", priority=90)
        CatalogLoader(instructions_dir).load()
        on_disk = read_json(path)
        assert on_disk["schemaVersion"] == SCHEMA_VERSION
        assert on_disk["reviewIntervalDays"] == 120

    def test_loader_can_skip_persisting(self, instructions_dir):
        path = write_instruction(instructions_dir, "legacy")
        before = path.read_text(encoding="utf-8")
        CatalogLoader(instructions_dir, persist_migrations=False).load()
        assert path.read_text(encoding="utf-8") == before

    def test_migrate_directory(self, instructions_dir):
        write_instruction(instructions_dir, "one")
        write_instruction(instructions_dir, "two", schemaVersion=SCHEMA_VERSION)
        (instructions_dir / "broken.json").write_text("{", encoding="utf-8")

        results = migrate_directory(instructions_dir)

        assert results == {"scanned": 3, "migrated": 1, "failed": 1}
