"""
Tests for atomic JSON writes and their retry behaviour.

Transient errors are simulated by patching os.replace.
"""

import errno
import json
import os

import pytest

from mcp_index import atomic_fs
from mcp_index.atomic_fs import atomic_write_json, atomic_write_text


def _temp_files(directory):
    return [p for p in directory.iterdir() if p.name.endswith(".tmp")]


class FlakyReplace:
    """os.replace stand-in that fails with the given errnos before succeeding."""

    def __init__(self, errnos):
        self.errnos = list(errnos)
        self.calls = 0
        self.real = os.replace

    def __call__(self, src, dst):
        self.calls += 1
        if self.errnos:
            code = self.errnos.pop(0)
            raise OSError(code, os.strerror(code))
        return self.real(src, dst)


class TestAtomicWrite:
    def test_writes_json_with_trailing_newline(self, tmp_path):
        target = tmp_path / "out" / "doc.json"
        atomic_write_json(target, {"b": 1, "a": "é"})
        text = target.read_text(encoding="utf-8")
        assert text.endswith("\n")
        assert json.loads(text) == {"b": 1, "a": "é"}
        assert "é" in text
        assert _temp_files(target.parent) == []

    def test_overwrites_existing(self, tmp_path):
        target = tmp_path / "doc.txt"
        target.write_text("old", encoding="utf-8")
        atomic_write_text(target, "new")
        assert target.read_text(encoding="utf-8") == "new"

    def test_transient_rename_error_is_retried(self, tmp_path, monkeypatch):
        flaky = FlakyReplace([errno.EBUSY, errno.EPERM])
        monkeypatch.setattr(atomic_fs.os, "replace", flaky)
        target = tmp_path / "doc.json"

        atomic_write_json(target, {"ok": True}, retries=5, backoff_ms=0)

        assert flaky.calls == 3
        assert json.loads(target.read_text(encoding="utf-8")) == {"ok": True}
        assert _temp_files(tmp_path) == []

    def test_missing_temp_file_during_rename_is_retried(self, tmp_path, monkeypatch):
        flaky = FlakyReplace([errno.ENOENT])
        monkeypatch.setattr(atomic_fs.os, "replace", flaky)
        atomic_write_text(tmp_path / "doc.txt", "x", retries=3, backoff_ms=0)
        assert flaky.calls == 2

    def test_non_transient_error_raises_immediately(self, tmp_path, monkeypatch):
        flaky = FlakyReplace([errno.ENOSPC])
        monkeypatch.setattr(atomic_fs.os, "replace", flaky)

        with pytest.raises(OSError) as exc_info:
            atomic_write_text(tmp_path / "doc.txt", "x", retries=5, backoff_ms=0)

        assert exc_info.value.errno == errno.ENOSPC
        assert flaky.calls == 1
        assert _temp_files(tmp_path) == []

    def test_gives_up_after_retries(self, tmp_path, monkeypatch):
        flaky = FlakyReplace([errno.EBUSY] * 10)
        monkeypatch.setattr(atomic_fs.os, "replace", flaky)

        with pytest.raises(OSError):
            atomic_write_text(tmp_path / "doc.txt", "x", retries=3, backoff_ms=0)

        assert flaky.calls == 3
        assert not (tmp_path / "doc.txt").exists()
        assert _temp_files(tmp_path) == []

    def test_retry_count_comes_from_config(self, tmp_path, monkeypatch):
        from mcp_index.config import reset_config

        monkeypatch.setenv("MCP_ATOMIC_WRITE_RETRIES", "2")
        reset_config()
        flaky = FlakyReplace([errno.EACCES] * 10)
        monkeypatch.setattr(atomic_fs.os, "replace", flaky)

        with pytest.raises(OSError):
            atomic_write_text(tmp_path / "doc.txt", "x")
        assert flaky.calls == 2
