"""Canonical body text and content hashing.

Two bodies that differ only in line endings, trailing whitespace or
surrounding blank lines hash to the same value.
"""

import hashlib
import re

from .config import load_config

_LINE_BREAKS = re.compile(r"\r\n|\r|\u2028|\u2029")
_TRAILING_WS = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


def canonicalize_body(body: str, collapse_multiple_blank_lines: bool = False) -> str:
    """Return the canonical form of an instruction body."""
    text = _LINE_BREAKS.sub("\n", body or "")
    text = _TRAILING_WS.sub("", text)
    lines = text.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    text = "\n".join(lines)
    if collapse_multiple_blank_lines:
        text = _BLANK_RUNS.sub("\n\n", text)
    return text


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_body(body: str) -> str:
    """SHA-256 of the canonical body."""
    return sha256_hex(canonicalize_body(body))


def source_hash(body: str) -> str:
    """Hash used for ``sourceHash``; plain trimmed text when canonical hashing is disabled."""
    if load_config().canonical_disable:
        return sha256_hex((body or "").strip())
    return hash_body(body)
