"""JSON-Lines log storage: tolerant reads, validated appends (no locking).

A healthy log is one JSON object per line, each line ending in ``\\n``.
Unparsable lines are skipped and counted. The last line of a file that lacks
a trailing newline is reported separately as a truncated tail: that is what a
crash in the middle of an append leaves behind.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rho.brain.entries import Entry, entry_to_dict, parse_entry
from rho.brain.schema import validate

logger = logging.getLogger(__name__)


@dataclass
class ReadStats:
    total: int = 0
    bad_lines: int = 0
    truncated_tail: bool = False


def read_records(path: Path) -> tuple[list[dict[str, Any]], ReadStats]:
    """Read every parsable JSON object from a JSON-Lines file.

    A missing file reads as empty. Lines are decoded one at a time, so a line
    that is not valid UTF-8 counts as malformed without hiding the others.
    """
    try:
        raw = Path(path).read_bytes()
    except FileNotFoundError:
        return [], ReadStats()

    if not raw.strip():
        return [], ReadStats()

    ends_with_newline = raw.endswith(b"\n")
    lines = [line for line in raw.split(b"\n") if line.strip()]

    records: list[dict[str, Any]] = []
    stats = ReadStats()
    last = len(lines) - 1
    for i, line in enumerate(lines):
        try:
            data = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            data = None
        if isinstance(data, dict):
            records.append(data)
        elif i == last and not ends_with_newline:
            stats.truncated_tail = True
        else:
            stats.bad_lines += 1

    stats.total = len(records)
    if stats.bad_lines:
        logger.warning("Skipped %d malformed line(s) in %s", stats.bad_lines, path)
    if stats.truncated_tail:
        logger.warning("Ignored truncated last line in %s (interrupted append?)", path)
    return records, stats


def read(path: Path) -> tuple[list[Entry], ReadStats]:
    """Read the brain log as typed entries, in file order."""
    records, stats = read_records(path)
    return [parse_entry(r) for r in records], stats


def append_line(path: Path, entry: Entry) -> None:
    """Validate and append one entry. Raises ValidationError before touching the file."""
    validate(entry)
    line = json.dumps(entry_to_dict(entry), ensure_ascii=False) + "\n"
    with Path(path).open("a", encoding="utf-8") as f:
        f.write(line)
