"""
Root logger wiring for reprocessor processes.

One console handler always; one rotating JSON file handler per process unless
stdout-only mode is requested (container deployments).
"""

import io
import logging
import secrets
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

PLAIN_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d] %(message)s"

# Client libraries that log every fetch/request at INFO
NOISY_LOGGERS = [
    "aiokafka",
    "aiohttp",
    "asyncio",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    Rotating file handler that sweeps rotated segments into an archive folder.

    logs/reprocessor/2026-01-05/reprocessor_all_0105_1430.log stays in place;
    reprocessor_all_0105_1430.log.2026-01-05 moves to archive_dir.
    """

    def __init__(self, filename, archive_dir=None, **kwargs):
        super().__init__(filename, **kwargs)
        base = Path(self.baseFilename)
        self.archive_dir = Path(archive_dir) if archive_dir else base.parent / "archive"
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def _rotated_segments(self):
        base = Path(self.baseFilename)
        return [p for p in base.parent.glob(f"{base.name}.*") if p != base]

    def doRollover(self):
        super().doRollover()
        for segment in self._rotated_segments():
            try:
                shutil.move(str(segment), str(self.archive_dir / segment.name))
            except OSError as e:
                # Logging from inside a handler would recurse
                sys.stderr.write(f"Could not archive log segment {segment}: {e}\n")


def get_log_file_path(
    log_dir: Path,
    domain: str | None = None,
    stage: str | None = None,
    instance_id: str | None = None,
) -> Path:
    """
    Resolve the file a process writes to.

    Layout: {log_dir}/[{domain}/]{YYYY-MM-DD}/{domain}_{stage}_{MMDD}_{HHMM}[_{instance}].log
    """
    now = datetime.now()
    prefix = "_".join(part for part in (domain, stage) if part) or "pipeline"
    stem = f"{prefix}_{now:%m%d_%H%M}"
    if instance_id:
        stem = f"{stem}_{instance_id}"

    folder = log_dir / domain if domain else log_dir
    return folder / f"{now:%Y-%m-%d}" / f"{stem}.log"


def _console_stream():
    # Windows consoles default to cp1252; payload previews can hold any unicode
    if sys.platform == "win32":
        return io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
    return sys.stdout


def _archive_dir_for(log_file: Path, log_dir: Path) -> Path:
    try:
        return log_dir / "archive" / log_file.relative_to(log_dir).parent
    except ValueError:
        return log_file.parent / "archive"


def _file_handler(
    log_file: Path,
    log_dir: Path,
    level: int,
    json_format: bool,
    rotation_when: str,
    rotation_interval: int,
    backup_count: int,
) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = ArchivingTimedRotatingFileHandler(
        log_file,
        archive_dir=_archive_dir_for(log_file, log_dir),
        when=rotation_when,
        interval=rotation_interval,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "reprocessor",
    stage: str | None = None,
    domain: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Replace the root logger's handlers and return the named logger.

    Args:
        name: Logger to return
        stage: Process mode (main, reprocessor, all, once); goes into the
            log context and the file name
        domain: Top-level folder under log_dir
        log_dir: Base directory for log files (default: ./logs)
        json_format: JSON lines in the file (stdout in stdout-only mode)
        console_level: Console handler threshold
        file_level: File handler threshold
        rotation_when / rotation_interval / backup_count: passed to
            TimedRotatingFileHandler
        suppress_noisy: Raise broker and HTTP client loggers to WARNING
        worker_id: Instance name; goes into the log context and file name
        log_to_stdout: Skip the file handler entirely
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    set_log_context(worker_id=worker_id, stage=stage, domain=domain)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(_console_stream())
    console_handler.setLevel(console_level)

    log_file = None
    if log_to_stdout:
        console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())
        log_file = get_log_file_path(log_dir, domain=domain, stage=stage, instance_id=worker_id)
        root_logger.addHandler(
            _file_handler(
                log_file,
                log_dir,
                file_level,
                json_format,
                rotation_when,
                rotation_interval,
                backup_count,
            )
        )
    root_logger.addHandler(console_handler)

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"log_file": str(log_file) if log_file else None, "json_format": json_format},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def generate_cycle_id() -> str:
    """Tick identifier: c-YYYYMMDD-HHMMSS-XXXX (XXXX random hex)."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
