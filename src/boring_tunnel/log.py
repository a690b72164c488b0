"""
Diagnostic sink for human-readable, levelled log lines.

Lines look like:

    [15:04:05] WARNING Unable to parse private key ~/.ssh/id_rsa: ...

A DiagnosticSink is constructed explicitly and handed to whatever needs
to report something; there is no module-level writer to reconfigure.
Writes go through a single logging handler, whose lock serialises
concurrent callers.
"""
from __future__ import annotations

import io
import logging
import os
import stat
import sys
import time
from typing import IO, Any, NoReturn

from boring_tunnel.platform import is_windows

# Size at which a file-backed sink is truncated
MAX_LOG_SIZE = 128 * 1024

RESET = "\033[0m"
RED = "\033[31m"
YELLOW = "\033[33m"
BLUE = "\033[36m"


class DiagnosticFormatter(logging.Formatter):
    """Formats records as "[time] LEVEL message" with optional colour."""

    LEVEL_COLOURS = {
        "INFO": BLUE,
        "WARNING": YELLOW,
        "ERROR": RED,
        "FATAL": RED,
    }

    def __init__(self, debug: bool = False, colour: bool = True) -> None:
        super().__init__()
        self._debug = debug
        self._colour = colour

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = time.strftime("%H:%M:%S", time.localtime(record.created))
        if self._debug:
            stamp = f"{stamp}.{int(record.msecs):03d}"
        return stamp

    def format(self, record: logging.LogRecord) -> str:
        level = "FATAL" if record.levelno >= logging.CRITICAL else record.levelname
        colour = self.LEVEL_COLOURS.get(level, "") if self._colour else ""
        reset = RESET if colour else ""
        return f"[{self.formatTime(record)}] {colour}{level}{reset} {record.getMessage()}"


class TruncatingStreamHandler(logging.StreamHandler):
    """
    StreamHandler that empties a regular file once it reaches max_bytes.

    Streams that are not regular files (terminals, pipes, in-memory
    buffers) are written to as-is.
    """

    def __init__(self, stream: IO[str] | None = None, max_bytes: int = MAX_LOG_SIZE) -> None:
        assert max_bytes > 0, f"max_bytes must be positive, got {max_bytes}"
        super().__init__(stream)
        self.max_bytes = max_bytes

    def emit(self, record: logging.LogRecord) -> None:
        # handle() holds the handler lock around emit()
        self._try_truncate()
        super().emit(record)

    def _try_truncate(self) -> None:
        try:
            info = os.fstat(self.stream.fileno())
        except (AttributeError, OSError, io.UnsupportedOperation):
            return
        if not stat.S_ISREG(info.st_mode) or info.st_size < self.max_bytes:
            return
        try:
            self.stream.truncate(0)
            self.stream.seek(0)
        except OSError:
            return


class DiagnosticSink:
    """
    Levelled diagnostic output backed by a private logging.Logger.

    Usage:
        sink = DiagnosticSink()                 # stdout
        sink = DiagnosticSink(open("tunnels.log", "a"))
        sink.warning("Unable to parse private key %s: %s", path, err)

    Args:
        stream: Where lines are written (default sys.stdout)
        debug: Emit debug lines and millisecond timestamps. Defaults to
               whether the DEBUG environment variable is non-empty.
        colour: Colour level names. Defaults to off on Windows.
        max_bytes: File size at which a file-backed stream is truncated
    """

    def __init__(
        self,
        stream: IO[str] | None = None,
        *,
        debug: bool | None = None,
        colour: bool | None = None,
        max_bytes: int = MAX_LOG_SIZE,
    ) -> None:
        if debug is None:
            debug = bool(os.environ.get("DEBUG"))
        if colour is None:
            colour = not is_windows()

        self._debug = debug
        self._handler = TruncatingStreamHandler(
            stream if stream is not None else sys.stdout,
            max_bytes=max_bytes,
        )
        self._handler.setFormatter(DiagnosticFormatter(debug=debug, colour=colour))

        # Not registered with logging.getLogger, so sinks never share state
        self._logger = logging.Logger(
            "boring_tunnel.diagnostics",
            logging.DEBUG if debug else logging.INFO,
        )
        self._logger.addHandler(self._handler)

    @property
    def debug_enabled(self) -> bool:
        return self._debug

    def set_output(self, stream: IO[str]) -> None:
        """Redirect subsequent lines to another stream."""
        self._handler.setStream(stream)

    def debug(self, msg: str, *args: Any) -> None:
        self._logger.debug(msg, *args)

    def info(self, msg: str, *args: Any) -> None:
        self._logger.info(msg, *args)

    def warning(self, msg: str, *args: Any) -> None:
        self._logger.warning(msg, *args)

    def error(self, msg: str, *args: Any) -> None:
        self._logger.error(msg, *args)

    def fatal(self, msg: str, *args: Any) -> NoReturn:
        """Emit at FATAL level, then terminate the process."""
        self._logger.critical(msg, *args)
        raise SystemExit(1)

    def close(self) -> None:
        self._handler.close()
