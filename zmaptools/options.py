"""Validation and parsing of scanner command-line option values."""

from __future__ import annotations

import enum
import json
import logging
import os
import re
from datetime import datetime
from typing import Any, Iterable, Optional

__all__ = [
    "OptionError",
    "FilterMode",
    "enforce_range",
    "parse_bandwidth",
    "parse_source_ports",
    "parse_mac",
    "parse_cores",
    "default_cores",
    "validate_shards",
    "log_file_name",
    "resolve_output_fields",
    "filter_mode",
    "sender_count",
    "validate_user_metadata",
]

log = logging.getLogger("zmap")

MAX_PORT = 0xFFFF
MAX_SHARD = 65534
MAX_SHARDS = 65535
DEFAULT_OUTPUT_FIELDS = "saddr"
LOG_NAME_FORMAT = "zmap-%Y-%m-%dT%H%M%S%z.log"

_BANDWIDTH_SUFFIXES = {
    "g": 1000000000,
    "m": 1000000,
    "k": 1000,
}
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_MAC = re.compile(r"^[0-9A-Fa-f]{1,2}(:[0-9A-Fa-f]{1,2}){5}$")


class OptionError(ValueError):
    """Raised when an option value is missing, malformed or out of range."""


class FilterMode(enum.Enum):
    """How scan results are filtered before they reach the output module."""

    DEFAULT = "default"
    NONE = "none"
    EXPRESSION = "expression"

    @property
    def filter_unsuccessful(self) -> bool:
        return self is FilterMode.DEFAULT

    @property
    def filter_duplicates(self) -> bool:
        return False


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def _split_list(text: str) -> list[str]:
    return [part.strip() for part in text.split(",") if part.strip()]


def enforce_range(name: str, value: int, low: int, high: int) -> int:
    """Return ``value`` if it lies in [low, high], otherwise raise."""
    if value < low or value > high:
        raise OptionError(
            f"argument `{name}' must be between {low} and {high}"
        )
    return value


def parse_bandwidth(text: str) -> int:
    """Parse a bandwidth in bits per second with an optional G, M or K suffix."""
    digits = re.match(r"\d*", text).group(0)
    value = int(digits) if digits else 0
    suffix = text[len(digits):]
    if suffix:
        multiplier = _BANDWIDTH_SUFFIXES.get(suffix[0].lower())
        if multiplier is None:
            raise OptionError(
                f"unknown bandwidth suffix '{suffix}' "
                "(supported suffixes are G, M and K)"
            )
        value *= multiplier
    return value


def parse_source_ports(text: str) -> tuple[int, int]:
    """Parse a single source port or a ``first-last`` range."""
    first_text, dash, last_text = text.partition("-")
    if not dash:
        port = enforce_range("source-port", _atoi(text), 0, MAX_PORT)
        return port, port
    first = enforce_range("starting source-port", _atoi(first_text), 0, MAX_PORT)
    last = enforce_range("ending source-port", _atoi(last_text), 0, MAX_PORT)
    if first > last:
        raise OptionError(
            "invalid source port range: last port is less than first port"
        )
    return first, last


def parse_mac(text: str) -> bytes:
    """Parse a colon-separated hardware address into six bytes."""
    if not _MAC.match(text.strip()):
        raise OptionError(f"invalid MAC address `{text}'")
    return bytes(int(part, 16) for part in text.strip().split(":"))


def parse_cores(text: str) -> list[int]:
    """Parse a comma-separated list of core numbers."""
    return [_atoi(part) for part in _split_list(text)]


def default_cores(count: Optional[int] = None) -> list[int]:
    """Return every online core, or the first ``count`` cores."""
    if count is None:
        count = os.cpu_count() or 1
    return list(range(count))


def validate_shards(
    shard: Optional[int], shards: Optional[int], seed_given: bool
) -> tuple[int, int]:
    """Check the sharding options and return (shard number, total shards)."""
    if (shard is not None or shards is not None) and not seed_given:
        raise OptionError("Need to specify seed if sharding a scan")
    if (shard is None) != (shards is None):
        raise OptionError(
            "Need to specify both shard number and total number of shards"
        )
    shard_num, total = 0, 1
    if shard is not None:
        shard_num = enforce_range("shard", shard, 0, MAX_SHARD)
    if shards is not None:
        total = enforce_range("shards", shards, 1, MAX_SHARDS)
    if shard_num >= total:
        raise OptionError(
            f"With {total} total shards, shard number ({shard_num})"
            f" must be in range [0, {total})"
        )
    return shard_num, total


def log_file_name(directory: str, when: Optional[datetime] = None) -> str:
    """Return the path of a time-stamped log file inside ``directory``."""
    if when is None:
        when = datetime.now().astimezone()
    return f"{directory}/{when.strftime(LOG_NAME_FORMAT)}"


def resolve_output_fields(raw: Optional[str], available: Iterable[str]) -> list[str]:
    """Turn the requested field list into names, expanding ``*`` to every field."""
    names = list(available)
    if raw is None:
        raw = DEFAULT_OUTPUT_FIELDS
    if raw == "*":
        return names
    fields = _split_list(raw)
    known = set(names)
    for index, name in enumerate(fields):
        log.debug("requested output field (%i): %s", index, name)
        if name not in known:
            raise OptionError(f"specified field '{name}' not found")
    return fields


def filter_mode(arg: Optional[str]) -> FilterMode:
    """Classify the output-filter argument."""
    if arg is None or arg == "default":
        return FilterMode.DEFAULT
    if arg == "":
        return FilterMode.NONE
    return FilterMode.EXPRESSION


def sender_count(requested: Optional[int], max_targets: Optional[int]) -> int:
    """Return the number of sender threads, dropping to one for tiny scans."""
    senders = requested if requested is not None else 1
    if max_targets is not None and 2 * senders >= max_targets:
        if senders != 1:
            log.warning("too few targets relative to senders, dropping to one sender")
        senders = 1
    return senders


def validate_user_metadata(text: str) -> Any:
    """Parse user-supplied JSON metadata and return it."""
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise OptionError("unable to parse custom user metadata") from exc
    if value is None:
        raise OptionError("unable to parse custom user metadata")
    return value