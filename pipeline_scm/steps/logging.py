"""Build output sink backed by a per-build logger and the build's log file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)


class FileLogSink:
    """Mirror checkout output into a logger and an append-only build log.

    Build output keeps flowing to the logger when the log file cannot be
    opened or written.
    """

    def __init__(
        self,
        build_logger: logging.Logger,
        log_file_path: Path,
    ) -> None:
        """
        Args:
            build_logger: receives one record per non-blank output line
            log_file_path: file the raw output bytes are appended to
        """
        self.build_logger = build_logger
        self.log_file_path = Path(log_file_path)
        self._file_handle: Optional[BinaryIO] = None

        try:
            self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self.log_file_path, "ab")
        except OSError as exc:
            logger.warning(
                "Failed to open log file %s: %s. Continuing with logger-only output.",
                self.log_file_path,
                exc,
            )
            self._file_handle = None

    @classmethod
    def for_build(cls, build, build_logger: Optional[logging.Logger] = None) -> "FileLogSink":
        """Sink writing to ``<build.root_dir>/log``."""
        if build_logger is None:
            build_logger = logging.getLogger(f"pipeline_scm.build.{build.number}")
        return cls(build_logger, Path(build.root_dir) / "log")

    def write_stdout(self, data: bytes) -> None:
        self._write(data, self.build_logger.info)

    def write_stderr(self, data: bytes) -> None:
        self._write(data, self.build_logger.error)

    def _write(self, data: bytes, log) -> None:
        if not data:
            return

        text = data.decode("utf-8", errors="replace")
        for line in text.splitlines():
            if line.strip():
                log(line)

        if self._file_handle:
            try:
                self._file_handle.write(data)
                self._file_handle.flush()
            except OSError as exc:
                logger.warning(
                    "Error writing to log file %s: %s", self.log_file_path, exc
                )

    def close(self) -> None:
        """Release the log file. The logger side needs no cleanup."""
        if self._file_handle:
            try:
                self._file_handle.close()
            except OSError as exc:
                logger.debug("Error closing log file %s: %s", self.log_file_path, exc)
            finally:
                self._file_handle = None

    def __enter__(self) -> "FileLogSink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
