"""
Logging configuration for the engine service.

Two destinations:
- Console: brief (LOG_LEVEL, INFO by default)
- File: detailed DEBUG log, one file per engine session, rotated at 10MB

Only the newest session files are kept; older ones are pruned on startup.
"""
import glob
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

CONSOLE_FORMAT = '%(levelname)s: %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s'

# Chatty in DEBUG; the engine's own loggers stay at the root level
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncpg", "google_genai")


def level_from_env(name: str = "LOG_LEVEL", default: int = logging.INFO) -> int:
    """Resolve a logging level name from the environment (unknown names fall back to default)"""
    value = os.getenv(name, "").strip().upper()
    level = logging.getLevelName(value) if value else default
    return level if isinstance(level, int) else default


def _prune_sessions(log_path: Path, keep: int) -> None:
    """Delete old session logs so that, with the new one, `keep` remain"""
    pattern = str(log_path.parent / f"{log_path.stem}_*.log")
    sessions = sorted(glob.glob(pattern), reverse=True)  # newest first (timestamped names)
    for stale in sessions[max(keep - 1, 0):]:
        try:
            Path(stale).unlink()
        except OSError as e:
            print(f"WARNING: could not remove old log {stale}: {e}", file=sys.stderr)


def setup_logging(
    log_file: str = "logs/cognitive-retrieval.log",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    keep_sessions: int = 5,
    max_bytes: int = 10 * 1024 * 1024,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> Path:
    """
    Configure root logging with a brief console handler and a detailed file handler.

    Args:
        log_file: Base path; the session file is <stem>_<timestamp>.log next to it
        console_level: Console logging level
        file_level: File logging level
        keep_sessions: Session log files to retain (including the new one)
        max_bytes: Rotation threshold of the session file
        quiet: Third-party loggers raised to WARNING

    Returns:
        Path of this session's log file
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _prune_sessions(log_path, keep_sessions)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    session_log = log_path.parent / f"{log_path.stem}_{timestamp}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture everything, filter in handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    file_handler = RotatingFileHandler(
        session_log,
        mode='a',
        maxBytes=max_bytes,
        backupCount=keep_sessions,
        encoding='utf-8'
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(
        f"Logging configured: console={logging.getLevelName(console_level)}, "
        f"file={session_log} ({logging.getLevelName(file_level)})"
    )
    return session_log
