from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import IO, Any

import structlog


class LogSinkError(RuntimeError):
    """The log file could not be prepared; the service must not start without it."""


class LogSink:
    """Append-only, line-oriented writer kept open for the process lifetime."""

    def __init__(self, path: Path, stream: IO[str]) -> None:
        self.path = path
        self._stream: IO[str] | None = stream
        self._lock = Lock()

    @classmethod
    def open(cls, path: str | Path) -> LogSink:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            stream = path.open("a", encoding="utf-8")
        except OSError as exc:
            raise LogSinkError(f"cannot open log file {path}: {exc}") from exc
        structlog.get_logger("log_sink").info("log_sink_opened", path=str(path))
        return cls(path, stream)

    @property
    def closed(self) -> bool:
        return self._stream is None

    def write_line(self, line: str) -> None:
        """Append one line. Failures are reported on the console and dropped."""

        with self._lock:
            try:
                if self._stream is None:
                    raise ValueError("log sink is closed")
                self._stream.write(line + "\n")
            except (OSError, ValueError) as exc:
                structlog.get_logger("log_sink").warning(
                    "log_line_dropped",
                    path=str(self.path),
                    error=str(exc),
                )

    def flush(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.flush()

    def close(self) -> None:
        with self._lock:
            if self._stream is None:
                return
            try:
                self._stream.flush()
            finally:
                self._stream.close()
                self._stream = None

    def __enter__(self) -> LogSink:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
