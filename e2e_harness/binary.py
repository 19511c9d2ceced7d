"""Make sure the backend test-server binary exists."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from e2e_harness.config import DEFAULT_BACKEND_BINARY, DEFAULT_BUILD_COMMAND
from e2e_harness.errors import BuildFailure
from e2e_harness.log_sink import LogSink

logger = logging.getLogger(__name__)


class BinaryProvisioner:
    """Builds the backend binary on demand.

    The build runs synchronously with stdout and stderr merged so a failure
    carries the complete compiler output.
    """

    def __init__(
        self,
        binary: Path | str = DEFAULT_BACKEND_BINARY,
        build_command: Optional[Sequence[str]] = None,
        log_sink: Optional[LogSink] = None,
    ):
        self.binary = Path(binary)
        self.build_command = list(build_command or DEFAULT_BUILD_COMMAND.split())
        self.log_sink = log_sink

    def binary_path(self, root: Path | str) -> Path:
        return self.binary if self.binary.is_absolute() else Path(root) / self.binary

    def ensure_binary(self, root: Path | str) -> Path:
        path = self.binary_path(root)
        if path.exists():
            self._log(f"Using existing binary {path}")
            return path

        self._log(f"Binary not found at {path}, building: {' '.join(self.build_command)}")
        try:
            result = subprocess.run(
                self.build_command,
                cwd=str(root),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as exc:
            self._log(f"ERROR: Failed to start build: {exc}")
            raise BuildFailure(127, str(exc)) from exc

        if result.returncode != 0:
            self._log(f"ERROR: Build failed with code {result.returncode}\n{result.stdout}")
            raise BuildFailure(result.returncode, result.stdout)

        if not path.exists():
            output = f"{result.stdout}\nBuild succeeded but {path} was not produced"
            self._log(f"ERROR: {output}")
            raise BuildFailure(0, output)

        self._log("Binary build successful")
        return path

    def _log(self, message: str) -> None:
        logger.info(message)
        if self.log_sink is not None:
            self.log_sink.backend(message)
