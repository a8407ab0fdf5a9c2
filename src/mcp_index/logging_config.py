"""Logging configuration for the instruction index, with log rotation.

Every component logs under the ``mcp_index`` namespace. The MCP server speaks
JSON-RPC over stdout, so the server entry point configures logging with
``console_output=False`` and all records go to a rotating file.

Log Rotation Policy:
- Max file size: 10 MB per log file
- Backup count: 5 (keeps mcp-index.log, mcp-index.log.1, ..., mcp-index.log.5)
- Total max disk usage: ~60 MB for logs
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_DIR = "~/.mcp-index/logs"
DEFAULT_LOG_FILE = "mcp-index.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB per file
DEFAULT_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ROOT_LOGGER_NAME = "mcp_index"

_configured = False


def _resolve_log_dir(log_dir: str | None) -> Path:
    if log_dir is None:
        log_dir = os.environ.get("MCP_INDEX_LOG_DIR") or DEFAULT_LOG_DIR
    return Path(os.path.expanduser(log_dir))


def _resolve_level(log_level: int | str | None) -> int:
    if log_level is None:
        log_level = os.environ.get("MCP_LOG_LEVEL") or DEFAULT_LOG_LEVEL
    if isinstance(log_level, str):
        return getattr(logging, log_level.upper(), DEFAULT_LOG_LEVEL)
    return log_level


def configure_logging(
    log_dir: str | None = None,
    log_file: str = DEFAULT_LOG_FILE,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    log_level: int | str | None = None,
    log_format: str = DEFAULT_LOG_FORMAT,
    console_output: bool = True,
) -> logging.Logger:
    """Configure index logging with automatic log rotation.

    Args:
        log_dir: Directory for log files (default: $MCP_INDEX_LOG_DIR or ~/.mcp-index/logs)
        log_file: Log file name (default: mcp-index.log)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of backup files to keep (default: 5)
        log_level: Logging level (default: $MCP_LOG_LEVEL or INFO)
        log_format: Log message format
        console_output: Whether to also log to the console (stderr)

    Returns:
        The root ``mcp_index`` logger instance.
    """
    global _configured

    log_path = _resolve_log_dir(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    full_log_path = log_path / log_file
    level = _resolve_level(log_level)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    # Clear existing handlers to avoid duplicates on reconfiguration
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format)

    file_handler = RotatingFileHandler(
        full_log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console_output:
        # stderr only: stdout belongs to the stdio transport
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.propagate = False

    _configured = True

    root_logger.info(
        f"Logging configured: file={full_log_path}, "
        f"max_size={max_bytes // (1024*1024)}MB, "
        f"backups={backup_count}"
    )

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for an index component.

    Args:
        name: Component name (e.g., 'catalog', 'server', 'loader')

    Returns:
        A logger instance under the mcp_index namespace.

    Example:
        logger = get_logger("catalog")
        logger.info("Catalog loaded")
        # Logs as: mcp_index.catalog - INFO - Catalog loaded
    """
    if not _configured:
        configure_logging(console_output=False)

    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

