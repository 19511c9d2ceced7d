"""Per-test append-only log file.

Every harness component writes through an explicitly constructed ``LogSink``
instead of shared module state. Lines look like::

    [2024-01-01T00:00:00.000000+00:00] [BACKEND] listening on 127.0.0.1:5555

Writes never raise: a logging problem must not fail the test it describes.
"""
from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)
# Mirror of every record so pytest log capture shows harness activity.
testlog = logging.getLogger("e2e_harness.testlog")

MAX_LOG_NAME_LENGTH = 150
_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r'[/\\:<>"|?*]')


class LogSource(str, Enum):
    TEST = "TEST"
    FRONTEND = "FRONTEND"
    BACKEND = "BACKEND"


def sanitize_test_name(name: str) -> str:
    """Turn a test title into a safe file stem."""
    cleaned = _UNSAFE.sub("_", _WHITESPACE.sub("_", name.strip()))
    return cleaned[:MAX_LOG_NAME_LENGTH] or "unnamed"


class LogSink:
    """Append-only log file for one test."""

    def __init__(self, log_dir: Path, test_name: str):
        self.test_name = test_name
        self.path = Path(log_dir) / f"{sanitize_test_name(test_name)}.log"
        self._lock = threading.Lock()

    def write(self, message: str, source: LogSource = LogSource.TEST) -> None:
        source = LogSource(source)
        lines = [line for line in str(message).splitlines() if line.strip()] or [""]
        timestamp = datetime.now(timezone.utc).isoformat()
        payload = "".join(f"[{timestamp}] [{source.value}] {line}\n" for line in lines)
        for line in lines:
            testlog.debug(f"[{self.test_name}] [{source.value}] {line}")
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(payload)
        except OSError as exc:
            logger.debug(f"Dropping log line for {self.path}: {exc}")

    def test(self, message: str) -> None:
        self.write(message, LogSource.TEST)

    def backend(self, message: str) -> None:
        self.write(message, LogSource.BACKEND)

    def frontend(self, message: str) -> None:
        self.write(message, LogSource.FRONTEND)

    def write_block(self, title: str, data: Dict[str, Any]) -> None:
        """Append a titled JSON block, used for end-of-test summaries."""
        try:
            body = json.dumps(data, indent=2, default=str)
        except (TypeError, ValueError) as exc:
            body = f"<unserializable: {exc}>"
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(f"\n=== {title} ===\n{body}\n")
        except OSError as exc:
            logger.debug(f"Dropping log block for {self.path}: {exc}")

    def __repr__(self) -> str:
        return f"LogSink(path={str(self.path)!r})"
