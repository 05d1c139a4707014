"""Copy a scan's output stream to a file while passing addresses on to stdout."""

from __future__ import annotations

import argparse
import contextlib
import csv
import enum
import logging
import queue
import re
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Iterable, Optional, Sequence

__all__ = [
    "InputFormat",
    "TeeConfig",
    "TeeStats",
    "Tee",
    "TeeError",
    "detect_format",
    "find_field_index",
    "csv_field",
    "is_success",
    "main",
]

log = logging.getLogger("ztee")

STATUS_HEADER = (
    "time_past,total_read_in,read_in_last_sec,read_per_sec_avg,"
    "buffer_current_size,buffer_avg_size"
)
SUCCESS_NAMES = ("success",)
IP_NAMES = ("saddr", "ip")

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_END = object()


class TeeError(Exception):
    """Raised when the tee cannot continue."""


class InputFormat(enum.Enum):
    CSV = "csv"
    JSON = "json"
    RAW = "raw"


def detect_format(line: str) -> InputFormat:
    """Guess the input format from the first line (newline included)."""
    if len(line) < 2:
        return InputFormat.RAW
    if len(line) >= 3 and line[0] == "{" and line[-2] == "}":
        return InputFormat.JSON
    if "," in line:
        return InputFormat.CSV
    return InputFormat.RAW


def _split_csv(line: str) -> list[str]:
    return next(csv.reader([line.rstrip("\r\n")]), [])


def find_field_index(header: str, names: Iterable[str]) -> Optional[int]:
    """Return the index of the first header column matching any of names."""
    wanted = set(names)
    for index, name in enumerate(_split_csv(header)):
        if name.strip() in wanted:
            return index
    return None


def csv_field(line: str, index: int) -> Optional[str]:
    """Return column ``index`` of a CSV line, or None when it has no such column."""
    fields = _split_csv(line)
    if 0 <= index < len(fields):
        return fields[index]
    return None


def is_success(value: str) -> bool:
    """True for a leading non-zero integer or the word "true" in any case."""
    match = _LEADING_INT.match(value)
    if match and int(match.group(1)) != 0:
        return True
    return value.lower() == "true"


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(seconds, 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


@dataclass
class TeeStats:
    """Running read and buffer statistics reported by the monitor."""

    total_read: int = 0
    read_per_sec_avg: int = 0
    read_last_sec: int = 0
    buffer_cur_size: int = 0
    buffer_avg_size: int = 0
    time_past: int = 0
    time_past_str: str = "0s"
    _buffer_size_sum: int = field(default=0, repr=False)
    _last_age: float = field(default=0.0, repr=False)

    def update(self, elapsed: float, total_read: int, queue_size: int) -> None:
        """Fold in a new sample taken ``elapsed`` seconds after the start."""
        delta = elapsed - self._last_age
        self._last_age = elapsed
        self.time_past = int(elapsed)
        self.time_past_str = _format_duration(self.time_past)

        new_reads = total_read - self.total_read
        self.read_last_sec = int(new_reads / delta) if delta > 0 else 0
        self.total_read = total_read
        self.read_per_sec_avg = int(total_read / elapsed) if elapsed > 0 else 0

        self.buffer_cur_size = queue_size
        self._buffer_size_sum += queue_size
        self.buffer_avg_size = (
            int(self._buffer_size_sum / elapsed) if elapsed > 0 else 0
        )

    def monitor_line(self) -> str:
        return (
            f"{self.time_past_str:>5} read_rate: {self.read_last_sec} rows/s "
            f"(avg {self.read_per_sec_avg} rows/s), "
            f"buffer_size: {self.buffer_cur_size} (avg {self.buffer_avg_size})"
        )

    def csv_row(self) -> str:
        return ",".join(
            str(value)
            for value in (
                self.time_past,
                self.total_read,
                self.read_last_sec,
                self.read_per_sec_avg,
                self.buffer_cur_size,
                self.buffer_avg_size,
            )
        )


@dataclass
class TeeConfig:
    """Where the tee writes and what it passes on."""

    output: IO[str]
    status_updates: Optional[IO[str]] = None
    success_only: bool = False
    monitor: bool = False
    raw: bool = False
    interval: float = 1.0


class Tee:
    """Copies every line to the output file and echoes addresses to stdout."""

    def __init__(
        self,
        config: TeeConfig,
        stdout: Optional[IO[str]] = None,
        stderr: Optional[IO[str]] = None,
    ) -> None:
        self.config = config
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr
        self.in_format = InputFormat.RAW
        self.ip_field: Optional[int] = None
        self.success_field: Optional[int] = None
        self.total_read = 0
        self.total_written = 0
        self.stats = TeeStats()
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._errors: list[BaseException] = []

    def _configure(self, first_line: str) -> None:
        if self.config.raw:
            self.in_format = InputFormat.RAW
            log.info("raw input")
        else:
            self.in_format = detect_format(first_line)
            log.info("detected input format %s", self.in_format.value)
        if self.in_format is InputFormat.JSON:
            raise TeeError("json input not implemented")
        if self.in_format is InputFormat.CSV:
            self.success_field = find_field_index(first_line, SUCCESS_NAMES)
            self.ip_field = find_field_index(first_line, IP_NAMES)
            if self.ip_field is None:
                raise TeeError("Unable to find IP/SADDR field")
        if self.config.success_only:
            if self.in_format is not InputFormat.CSV:
                raise TeeError("success filter requires csv input")
            if self.success_field is None:
                raise TeeError("Could not find success field")

    def run(self, first_line: str, lines: Iterable[str]) -> int:
        """Process the first line and the rest; return the number of lines written."""
        self._configure(first_line)
        pending: queue.Queue = queue.Queue()
        pending.put(first_line)

        reader = threading.Thread(target=self._read, args=(pending, lines), daemon=True)
        reader.start()
        start = time.monotonic()
        processor = threading.Thread(target=self._process, args=(pending,), daemon=True)
        processor.start()

        if self.config.monitor or self.config.status_updates is not None:
            monitor = threading.Thread(
                target=self._monitor, args=(pending, start), daemon=True
            )
            monitor.start()
            monitor.join()

        processor.join()
        reader.join()
        if self._errors:
            raise self._errors[0]
        return self.total_written

    def _read(self, pending: queue.Queue, lines: Iterable[str]) -> None:
        try:
            for line in lines:
                pending.put(line)
                with self._lock:
                    self.total_read += 1
        except BaseException as exc:  # surfaced from run()
            self._errors.append(exc)
        finally:
            pending.put(_END)

    def _process(self, pending: queue.Queue) -> None:
        try:
            while (line := pending.get()) is not _END:
                self._emit(line)
        except BaseException as exc:
            self._errors.append(exc)
        finally:
            with contextlib.suppress(OSError):
                self.config.output.flush()
            self._done.set()

    def _emit(self, line: str) -> None:
        try:
            self.config.output.write(line)
            self.config.output.flush()
        except OSError as exc:
            raise TeeError("Error writing to output file") from exc

        try:
            if self.in_format is InputFormat.CSV:
                self._echo_csv(line)
            else:
                self.stdout.write(line)
            self.stdout.flush()
        except OSError as exc:
            raise TeeError("Error writing to stdout") from exc
        self.total_written += 1

    def _echo_csv(self, line: str) -> None:
        if self.total_written == 0:
            return  # header row
        if self.config.success_only:
            entry = csv_field(line, self.success_field)
            if entry is None or not is_success(entry):
                return
        address = csv_field(line, self.ip_field)
        if address is not None:
            self.stdout.write(address + "\n")

    def _monitor(self, pending: queue.Queue, start: float) -> None:
        status = self.config.status_updates
        try:
            if status is not None:
                status.write(STATUS_HEADER + "\n")
                status.flush()
            while not self._done.wait(self.config.interval):
                with self._lock:
                    total_read = self.total_read
                self.stats.update(time.monotonic() - start, total_read, pending.qsize())
                if self.config.monitor:
                    self.stderr.write(self.stats.monitor_line() + "\n")
                    self.stderr.flush()
                if status is not None:
                    status.write(self.stats.csv_row() + "\n")
                    status.flush()
        except OSError as exc:
            self._errors.append(TeeError("unable to write status updates"))
            log.debug("status update failure: %s", exc)
        finally:
            if status is not None:
                with contextlib.suppress(OSError):
                    status.flush()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ztee",
        description="Write stdin to a file and pass IP addresses on to stdout.",
    )
    parser.add_argument("outputs", nargs="*", metavar="FILE", help="output file")
    parser.add_argument("-s", "--success-only", action="store_true",
                        help="only pass on successful results")
    parser.add_argument("-m", "--monitor", action="store_true",
                        help="print monitor data to stderr")
    parser.add_argument("-u", "--status-updates-file", metavar="FILE",
                        help="write status updates as CSV to FILE")
    parser.add_argument("-l", "--log-file", metavar="FILE",
                        help="write log messages to FILE")
    parser.add_argument("-r", "--raw", action="store_true",
                        help="ignore the input format and pass lines through")
    parser.add_argument("-V", "--version", action="version", version="%(prog)s 1.0")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    with contextlib.ExitStack() as stack:
        try:
            if args.log_file:
                log_stream = stack.enter_context(open(args.log_file, "w"))
            else:
                log_stream = sys.stderr
        except OSError:
            log_stream = sys.stderr
            handler = logging.StreamHandler(log_stream)
            log.addHandler(handler)
            log.critical("Could not open log file")
            log.removeHandler(handler)
            return 1

        handler = logging.StreamHandler(log_stream)
        handler.setFormatter(logging.Formatter("%(levelname)s: ztee: %(message)s"))
        log.addHandler(handler)
        log.setLevel(logging.WARNING)
        stack.callback(log.removeHandler, handler)

        try:
            if not args.outputs:
                raise TeeError("No output file specified")
            if len(args.outputs) > 1:
                raise TeeError(
                    f"Extra positional arguments starting with {args.outputs[1]}"
                )
            try:
                output = stack.enter_context(open(args.outputs[0], "w"))
            except OSError as exc:
                raise TeeError(
                    f"Could not open output file {args.outputs[0]}, {exc.strerror}"
                ) from exc

            status = None
            if args.status_updates_file:
                try:
                    status = stack.enter_context(open(args.status_updates_file, "w"))
                except OSError as exc:
                    raise TeeError(
                        f"unable to open status updates file "
                        f"{args.status_updates_file} ({exc.strerror})"
                    ) from exc

            first_line = sys.stdin.readline()
            if not first_line:
                raise TeeError("reading input to test format failed")

            config = TeeConfig(
                output=output,
                status_updates=status,
                success_only=args.success_only,
                monitor=args.monitor,
                raw=args.raw,
            )
            Tee(config).run(first_line, sys.stdin)
        except TeeError as exc:
            log.critical("%s", exc)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())