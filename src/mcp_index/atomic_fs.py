"""Atomic JSON writes with retry/backoff for transient filesystem errors.

Data is written to a unique temp file in the destination directory and then
renamed over the target, so readers never observe a partial file. Antivirus
scanners and indexers on some platforms briefly hold files open; EPERM, EBUSY
and EACCES are retried with exponential backoff.
"""

import errno
import json
import logging
import os
import random
import secrets
import time
from pathlib import Path
from typing import Any

from .config import load_config

logger = logging.getLogger(__name__)

TRANSIENT_ERRNOS = frozenset({errno.EPERM, errno.EBUSY, errno.EACCES})
# A concurrent cleanup can remove the temp file between write and rename
TRANSIENT_RENAME_ERRNOS = TRANSIENT_ERRNOS | {errno.ENOENT}


def _temp_path(path: Path) -> Path:
    return path.parent / f".{path.name}.{secrets.token_hex(6)}.tmp"


def _backoff_seconds(attempt: int, base_ms: int) -> float:
    delay_ms = base_ms * (2 ** (attempt - 1)) + random.uniform(0, base_ms)
    return delay_ms / 1000.0


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not remove temp file {path}: {e}")


def atomic_write_text(
    path: Path,
    text: str,
    retries: int | None = None,
    backoff_ms: int | None = None,
) -> None:
    """Write ``text`` to ``path`` atomically, retrying transient failures.

    Raises the last ``OSError`` once attempts are exhausted or the error is
    not transient.
    """
    config = load_config()
    attempts = retries if retries is not None else config.atomic_write_retries
    base_ms = backoff_ms if backoff_ms is not None else config.atomic_write_backoff_ms
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    for attempt in range(1, attempts + 1):
        tmp = _temp_path(path)
        stage = "write"
        try:
            with open(tmp, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            stage = "rename"
            os.replace(tmp, path)
            return
        except OSError as e:
            _remove_quietly(tmp)
            transient = TRANSIENT_RENAME_ERRNOS if stage == "rename" else TRANSIENT_ERRNOS
            if e.errno not in transient or attempt >= attempts:
                logger.error(f"Atomic write failed for {path} ({stage}, attempt {attempt}): {e}")
                raise
            delay = _backoff_seconds(attempt, base_ms)
            logger.warning(
                f"Transient {errno.errorcode.get(e.errno, e.errno)} during {stage} of {path.name}; "
                f"retry {attempt}/{attempts - 1} in {delay * 1000:.0f}ms"
            )
            time.sleep(delay)


def atomic_write_json(path: Path, obj: Any, **kwargs: Any) -> None:
    """Serialize ``obj`` as 2-space indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(obj, indent=2, ensure_ascii=False) + "\n", **kwargs)
