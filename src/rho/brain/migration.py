"""One-shot import of the pre-v2 brain files into the unified brain log.

Legacy files are only ever opened for reading. Every record goes through
``append_dedup`` with a natural-key duplicate check, so re-running the import
adds nothing new. Completion is marked by ``meta migration.v2 = done``;
writing ``migration.v2 = skip`` by hand opts out.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable

from rho.brain.entries import (
    Behavior,
    Context,
    Entry,
    Identity,
    Learning,
    Meta,
    Preference,
    Task,
    User,
    deterministic_id,
    new_id,
    utc_now,
)
from rho.brain.fold import fold
from rho.brain.log import read, read_records
from rho.brain.schema import ValidationError
from rho.brain.store import DEFAULT_CATEGORY, append, append_dedup, normalize_memory_text
from rho.config import DEFAULT_LOCK_TIMEOUT, BrainConfig
from rho.lock import LockFactory

logger = logging.getLogger(__name__)

MIGRATION_KEY = "migration.v2"
MIGRATED_VALUES = {"done", "skip"}


@dataclass
class MigrationPaths:
    brain_path: Path
    legacy_core: Path
    legacy_memory: Path
    legacy_context: Path
    legacy_tasks: Path

    @classmethod
    def from_config(cls, config: BrainConfig) -> MigrationPaths:
        return cls(
            brain_path=config.brain_path,
            legacy_core=config.brain_dir / "core.jsonl",
            legacy_memory=config.brain_dir / "memory.jsonl",
            legacy_context=config.brain_dir / "context.jsonl",
            legacy_tasks=config.home / "tasks.jsonl",
        )

    def legacy_files(self) -> list[Path]:
        return [self.legacy_core, self.legacy_memory, self.legacy_context, self.legacy_tasks]


@dataclass
class MigrationStatus:
    has_legacy: bool
    already_migrated: bool
    legacy_files: list[Path] = field(default_factory=list)


@dataclass
class MigrationStats:
    behaviors: int = 0
    identity: int = 0
    user: int = 0
    learnings: int = 0
    preferences: int = 0
    contexts: int = 0
    tasks: int = 0
    skipped: int = 0

    @property
    def imported(self) -> int:
        return sum(v for k, v in asdict(self).items() if k != "skipped")


# ── Detection ─────────────────────────────────────────────────


def detect_migration(paths: MigrationPaths) -> MigrationStatus:
    """Report which legacy files hold data and whether the marker is present."""
    legacy_files = []
    for path in paths.legacy_files():
        try:
            if Path(path).read_bytes().strip():
                legacy_files.append(Path(path))
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Cannot read legacy file %s: %s", path, e)

    entries, _ = read(paths.brain_path)
    marker = fold(entries).meta_value(MIGRATION_KEY)

    return MigrationStatus(
        has_legacy=bool(legacy_files),
        already_migrated=marker in MIGRATED_VALUES,
        legacy_files=legacy_files,
    )


# ── Natural-key duplicate checks ──────────────────────────────


def _same_behavior(existing: list[Entry], c: Behavior) -> bool:
    return any(
        isinstance(e, Behavior) and e.text == c.text and e.category == c.category
        for e in existing
    )


def _same_identity_key(existing: list[Entry], c: Identity) -> bool:
    return any(isinstance(e, Identity) and e.key == c.key for e in existing)


def _same_user_key(existing: list[Entry], c: User) -> bool:
    return any(isinstance(e, User) and e.key == c.key for e in existing)


def _same_memory_text(existing: list[Entry], c: Learning | Preference) -> bool:
    # Learnings and preferences share one namespace of texts
    text = normalize_memory_text(c.text).lower()
    return any(
        isinstance(e, (Learning, Preference)) and normalize_memory_text(e.text).lower() == text
        for e in existing
    )


def _same_context_path(existing: list[Entry], c: Context) -> bool:
    return any(isinstance(e, Context) and e.path == c.path for e in existing)


def _same_task_description(existing: list[Entry], c: Task) -> bool:
    return any(isinstance(e, Task) and e.description == c.description for e in existing)


# ── Legacy record mapping ─────────────────────────────────────
# Each mapper returns (stats field, entry, duplicate check), or None when the
# record is not something that file carries.

_Mapped = tuple[str, Entry, Callable[[list[Entry], Any], bool]] | None


def _map_core(record: dict[str, Any], now: str) -> _Mapped:
    kind = record.get("type")
    created = record.get("created") or now
    if kind == "behavior":
        entry = Behavior(
            id=new_id(), created=created, category=record.get("category"), text=record.get("text")
        )
        return "behaviors", entry, _same_behavior
    if kind == "identity":
        entry = Identity(
            id=new_id(), created=created, key=record.get("key"), value=record.get("value")
        )
        return "identity", entry, _same_identity_key
    if kind == "user":
        entry = User(id=new_id(), created=created, key=record.get("key"), value=record.get("value"))
        return "user", entry, _same_user_key
    return None


def _map_memory(record: dict[str, Any], now: str) -> _Mapped:
    # Legacy learnings carry used/last_used counters; they have no home in v2
    kind = record.get("type")
    created = record.get("created") or now
    text = (record.get("text") or "").strip()
    if kind == "learning":
        entry = Learning(id=new_id(), created=created, text=text, source="migration")
        return "learnings", entry, _same_memory_text
    if kind == "preference":
        entry = Preference(
            id=new_id(),
            created=created,
            category=record.get("category") or DEFAULT_CATEGORY,
            text=text,
        )
        return "preferences", entry, _same_memory_text
    return None


def _map_context(record: dict[str, Any], now: str) -> _Mapped:
    path = record.get("path")
    if record.get("type") != "context" or not path or not record.get("content"):
        return None
    entry = Context(
        id=new_id(),
        created=record.get("created") or now,
        project=record.get("project") or os.path.basename(path),
        path=path,
        content=record.get("content"),
    )
    return "contexts", entry, _same_context_path


def _map_task(record: dict[str, Any], now: str) -> _Mapped:
    # Legacy tasks have no type field; their ids are kept, and id-less ones get a
    # stable id from the description
    description = record.get("description")
    if not description:
        return None
    entry = Task(
        id=record.get("id") or deterministic_id("task", description),
        created=record.get("created") or now,
        description=description,
        status=record.get("status") or "pending",
        priority=record.get("priority") or "normal",
        tags=record.get("tags") or [],
        due=record.get("due") or None,
        completed_at=record.get("completedAt") or None,
    )
    return "tasks", entry, _same_task_description


# ── Migration ─────────────────────────────────────────────────


def run_migration(
    paths: MigrationPaths,
    *,
    lock: LockFactory | None = None,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> MigrationStats:
    """Import all legacy files, then write the completion marker.

    Bad records, including lines that are not JSON or not UTF-8, are counted
    as skipped and the import continues. Lock failures abort the run.
    """
    stats = MigrationStats()
    now = utc_now()

    sources = [
        (paths.legacy_core, _map_core),
        (paths.legacy_memory, _map_memory),
        (paths.legacy_context, _map_context),
        (paths.legacy_tasks, _map_task),
    ]
    for legacy_path, mapper in sources:
        records, read_stats = read_records(legacy_path)
        if records:
            logger.info("Migrating %d record(s) from %s", read_stats.total, legacy_path)
        # Lines the reader already dropped still count against this file
        stats.skipped += read_stats.bad_lines + int(read_stats.truncated_tail)
        for record in records:
            _migrate_record(paths.brain_path, record, mapper, now, stats, lock, timeout)

    append(
        paths.brain_path,
        Meta(id=new_id(), created=now, key=MIGRATION_KEY, value="done"),
        lock=lock,
        timeout=timeout,
    )
    logger.info(
        "Brain migration done: %d imported, %d skipped (%s)",
        stats.imported,
        stats.skipped,
        ", ".join(f"{k}={v}" for k, v in asdict(stats).items() if v and k != "skipped") or "none",
    )
    return stats


def _migrate_record(
    brain_path: Path,
    record: dict[str, Any],
    mapper: Callable[[dict[str, Any], str], _Mapped],
    now: str,
    stats: MigrationStats,
    lock: LockFactory | None,
    timeout: float,
) -> None:
    try:
        mapped = mapper(record, now)
    except (AttributeError, TypeError) as e:
        logger.warning("Skipping malformed legacy record %s: %s", record.get("id", "?"), e)
        stats.skipped += 1
        return
    if mapped is None:
        return
    counter, entry, is_duplicate = mapped

    if isinstance(entry, (Learning, Preference)) and not entry.text:
        stats.skipped += 1
        return

    try:
        written = append_dedup(brain_path, entry, is_duplicate, lock=lock, timeout=timeout)
    except ValidationError as e:
        logger.warning("Skipping legacy %s record %s: %s", entry.type, record.get("id", "?"), e)
        stats.skipped += 1
        return

    if written:
        setattr(stats, counter, getattr(stats, counter) + 1)
    else:
        stats.skipped += 1
