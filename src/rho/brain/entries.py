"""Brain entry types + dict conversion (no I/O).

Each line of the brain log is one entry. Known ``type`` tags parse into the
dataclasses below; anything else is kept as the raw dict so that entries
written by a newer schema survive a round trip through an older reader.
"""

from __future__ import annotations

import dataclasses
import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

# Python attribute -> on-disk JSON key, where they differ
_JSON_NAMES = {
    "project_path": "projectPath",
    "completed_at": "completedAt",
}


# ── Entry types ───────────────────────────────────────────────


@dataclass
class Behavior:
    """Directive or personality line."""

    type: ClassVar[str] = "behavior"

    id: str
    created: str
    category: str
    text: str


@dataclass
class Identity:
    type: ClassVar[str] = "identity"

    id: str
    created: str
    key: str
    value: str


@dataclass
class User:
    type: ClassVar[str] = "user"

    id: str
    created: str
    key: str
    value: str


@dataclass
class Learning:
    """Something the agent learned; ranked at prompt-build time."""

    type: ClassVar[str] = "learning"

    id: str
    created: str
    text: str
    source: str | None = None
    scope: str | None = None
    project_path: str | None = None


@dataclass
class Preference:
    type: ClassVar[str] = "preference"

    id: str
    created: str
    category: str
    text: str


@dataclass
class Context:
    """Project context, matched against cwd by path prefix."""

    type: ClassVar[str] = "context"

    id: str
    created: str
    project: str
    path: str
    content: str


@dataclass
class Task:
    type: ClassVar[str] = "task"

    id: str
    created: str
    description: str
    status: str = "pending"
    priority: str = "normal"
    tags: list[str] = field(default_factory=list)
    due: str | None = None
    completed_at: str | None = None


@dataclass
class Cadence:
    """``interval`` reminders use ``every`` (e.g. "2h"); ``daily`` ones use ``at`` ("08:00")."""

    kind: str
    every: str | None = None
    at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.kind == "daily":
            return {"kind": self.kind, "at": self.at}
        return {"kind": self.kind, "every": self.every}


@dataclass
class Reminder:
    type: ClassVar[str] = "reminder"

    id: str
    created: str
    text: str
    enabled: bool
    cadence: Cadence
    priority: str = "normal"
    tags: list[str] = field(default_factory=list)
    last_run: str | None = None
    next_due: str | None = None
    last_result: str | None = None
    last_error: str | None = None


@dataclass
class Tombstone:
    """Removes ``target_id`` from the ``target_type`` collection on fold."""

    type: ClassVar[str] = "tombstone"

    id: str
    created: str
    target_id: str
    target_type: str
    reason: str


@dataclass
class Meta:
    """Log-level marker, e.g. ``migration.v2 = done``."""

    type: ClassVar[str] = "meta"

    id: str
    created: str
    key: str
    value: str


# Union type for all parsed entries; unknown types stay raw dicts
Entry = (
    Behavior
    | Identity
    | User
    | Learning
    | Preference
    | Context
    | Task
    | Reminder
    | Tombstone
    | Meta
    | dict
)

ENTRY_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (
        Behavior,
        Identity,
        User,
        Learning,
        Preference,
        Context,
        Task,
        Reminder,
        Tombstone,
        Meta,
    )
}


# ── Ids and timestamps ────────────────────────────────────────


def new_id() -> str:
    """Random 8-hex-char entry id."""
    return secrets.token_hex(4)


def deterministic_id(type: str, natural_key: str) -> str:
    """Stable id derived from a natural key, so re-imports map to the same id."""
    return hashlib.sha256(f"{type}:{natural_key}".encode("utf-8")).hexdigest()[:8]


def utc_now() -> str:
    """Current time as ISO-8601 UTC with milliseconds, e.g. 2026-02-18T09:30:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 date or datetime; naive values are taken as UTC."""
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ── Parsing (dict -> typed entry) ─────────────────────────────


def entry_id(entry: Entry) -> str:
    if isinstance(entry, dict):
        return entry.get("id", "")
    return entry.id


def entry_type(entry: Entry) -> str:
    if isinstance(entry, dict):
        return entry.get("type", "")
    return entry.type


def parse_entry(data: dict[str, Any]) -> Entry:
    """Convert a decoded log record into its typed entry.

    Returns the matching dataclass for known types, or the raw dict for
    unrecognized ones (a non-string ``type`` included). Missing fields fall
    back to empty defaults; validity is checked at write time and by the fold,
    not here.
    """
    tag = data.get("type")
    cls = ENTRY_TYPES.get(tag) if isinstance(tag, str) else None
    if cls is None:
        return data

    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        key = _JSON_NAMES.get(f.name, f.name)
        if key in data:
            kwargs[f.name] = data[key]
        elif f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            kwargs[f.name] = ""

    if cls is Reminder:
        cadence = kwargs.get("cadence")
        if not isinstance(cadence, dict):
            cadence = {}
        kwargs["cadence"] = Cadence(
            kind=cadence.get("kind", ""),
            every=cadence.get("every"),
            at=cadence.get("at"),
        )
        # Only a real JSON true enables; "false", 1 and the like do not
        kwargs["enabled"] = kwargs.get("enabled") is True
    return cls(**kwargs)


# ── Formatting (typed entry -> dict) ──────────────────────────


def entry_to_dict(entry: Entry) -> dict[str, Any]:
    """Convert an entry to its on-disk JSON object. Dicts pass through."""
    if isinstance(entry, dict):
        return dict(entry)

    data: dict[str, Any] = {"id": entry.id, "type": entry.type}
    for f in dataclasses.fields(entry):
        if f.name == "id":
            continue
        value = getattr(entry, f.name)
        if isinstance(value, Cadence):
            value = value.to_dict()
        elif isinstance(value, list):
            value = list(value)
        data[_JSON_NAMES.get(f.name, f.name)] = value
    return data
