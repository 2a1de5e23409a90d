"""Locked writes to the brain log, cached reads, and dedup helpers.

All writers of one log share the lock ``<log>.lock``. ``append_dedup`` holds
it across read -> fold -> duplicate check -> append, so two concurrent
writers can never both decide a candidate is new.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal

from rho.brain.entries import (
    Entry,
    Learning,
    Preference,
    Tombstone,
    entry_id,
    entry_type,
    new_id,
    utc_now,
)
from rho.brain.fold import MaterializedBrain, fold
from rho.brain.log import append_line, read
from rho.brain.prompt import build_prompt, get_injected_ids
from rho.brain.schema import validate
from rho.config import DEFAULT_LOCK_TIMEOUT, DEFAULT_PROMPT_BUDGET, BrainConfig
from rho.lock import LockFactory, file_lock, lock_path_for

logger = logging.getLogger(__name__)

# (live entries, candidate) -> True if the candidate must not be written
DuplicatePredicate = Callable[[list[Entry], Entry], bool]

DEFAULT_CATEGORY = "General"
ALLOWED_CATEGORIES = ["Communication", "Code", "Tools", "Workflow", "General"]

# path -> ((mtime_ns, size), folded brain)
_FOLD_CACHE: dict[str, tuple[tuple[int, int], MaterializedBrain]] = {}


def _locked(path: Path, purpose: str, lock: LockFactory | None, timeout: float):
    if lock is not None:
        return lock(lock_path_for(path), purpose)
    return file_lock(lock_path_for(path), purpose=purpose, timeout=timeout)


# ── Appends ───────────────────────────────────────────────────


def append(
    path: Path,
    entry: Entry,
    *,
    lock: LockFactory | None = None,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> None:
    """Validate, then append under the log's lock. Creates the directory on demand."""
    path = Path(path)
    validate(entry)
    with _locked(path, "append", lock, timeout):
        path.parent.mkdir(parents=True, exist_ok=True)
        append_line(path, entry)
    logger.debug("Appended %s %s to %s", entry_type(entry), entry_id(entry), path)


def append_dedup(
    path: Path,
    entry: Entry,
    is_duplicate: DuplicatePredicate,
    *,
    lock: LockFactory | None = None,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> bool:
    """Append unless ``is_duplicate`` matches the current live state.

    Returns True if the entry was written.
    """
    path = Path(path)
    validate(entry)
    with _locked(path, "dedup-append", lock, timeout):
        path.parent.mkdir(parents=True, exist_ok=True)
        entries, _ = read(path)
        existing = fold(entries).entries()
        if is_duplicate(existing, entry):
            logger.debug("Skipped duplicate %s %s", entry_type(entry), entry_id(entry))
            return False
        append_line(path, entry)
    logger.debug("Appended %s %s to %s", entry_type(entry), entry_id(entry), path)
    return True


# ── Cached reads ──────────────────────────────────────────────


def load_brain(path: Path) -> MaterializedBrain:
    """Fold the whole log, reusing the last fold while the file is unchanged."""
    path = Path(path)
    try:
        st = path.stat()
    except FileNotFoundError:
        _FOLD_CACHE.pop(str(path), None)
        return MaterializedBrain()

    key = (st.st_mtime_ns, st.st_size)
    cached = _FOLD_CACHE.get(str(path))
    if cached and cached[0] == key:
        logger.debug("Fold cache hit for %s", path)
        return copy.deepcopy(cached[1])

    entries, _ = read(path)
    brain = fold(entries)
    _FOLD_CACHE[str(path)] = (key, brain)
    return copy.deepcopy(brain)


def clear_cache() -> None:
    _FOLD_CACHE.clear()


# ── Duplicate predicates ──────────────────────────────────────


def normalize_memory_text(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip())


def sanitize_category(category: str | None) -> str:
    """Map a free-form category onto the known set, defaulting to General."""
    trimmed = (category or "").strip().lower()
    for allowed in ALLOWED_CATEGORIES:
        if allowed.lower() == trimmed:
            return allowed
    return DEFAULT_CATEGORY


def _same_text(a: str, b: str) -> bool:
    return normalize_memory_text(a).lower() == normalize_memory_text(b).lower()


def same_text_learning(existing: list[Entry], candidate: Entry) -> bool:
    return any(
        isinstance(e, Learning) and _same_text(e.text, candidate.text) for e in existing
    )


def same_text_preference(existing: list[Entry], candidate: Entry) -> bool:
    return any(
        isinstance(e, Preference)
        and e.category == candidate.category
        and _same_text(e.text, candidate.text)
        for e in existing
    )


def same_id(existing: list[Entry], candidate: Entry) -> bool:
    cid = entry_id(candidate)
    return any(entry_id(e) == cid for e in existing)


# ── Convenience writers ───────────────────────────────────────


@dataclass
class StoreResult:
    stored: bool
    id: str | None = None
    reason: Literal["empty", "duplicate", "too_long"] | None = None


def remember_learning(
    path: Path,
    text: str,
    *,
    source: str | None = None,
    scope: Literal["global", "project"] | None = None,
    project_path: str | None = None,
    max_length: int | None = None,
    lock: LockFactory | None = None,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> StoreResult:
    """Store a learning unless an equivalent one is already live."""
    normalized = normalize_memory_text(text)
    if not normalized:
        return StoreResult(stored=False, reason="empty")
    if max_length and len(normalized) > max_length:
        return StoreResult(stored=False, reason="too_long")
    entry = Learning(
        id=new_id(),
        created=utc_now(),
        text=normalized,
        source=source,
        scope=scope,
        project_path=project_path,
    )
    if not append_dedup(path, entry, same_text_learning, lock=lock, timeout=timeout):
        return StoreResult(stored=False, reason="duplicate")
    logger.info("Stored learning %s: %s", entry.id, normalized[:80])
    return StoreResult(stored=True, id=entry.id)


def remember_preference(
    path: Path,
    text: str,
    category: str | None = None,
    *,
    max_length: int | None = None,
    lock: LockFactory | None = None,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> StoreResult:
    """Store a preference unless the same text already exists in its category."""
    normalized = normalize_memory_text(text)
    if not normalized:
        return StoreResult(stored=False, reason="empty")
    if max_length and len(normalized) > max_length:
        return StoreResult(stored=False, reason="too_long")
    entry = Preference(
        id=new_id(),
        created=utc_now(),
        category=sanitize_category(category),
        text=normalized,
    )
    if not append_dedup(path, entry, same_text_preference, lock=lock, timeout=timeout):
        return StoreResult(stored=False, reason="duplicate")
    logger.info("Stored preference %s [%s]: %s", entry.id, entry.category, normalized[:80])
    return StoreResult(stored=True, id=entry.id)


def forget(
    path: Path,
    target_id: str,
    target_type: str,
    reason: str = "manual",
    *,
    lock: LockFactory | None = None,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> str:
    """Tombstone an entry. Returns the tombstone's id."""
    tombstone = Tombstone(
        id=new_id(),
        created=utc_now(),
        target_id=target_id,
        target_type=target_type,
        reason=reason,
    )
    append(path, tombstone, lock=lock, timeout=timeout)
    logger.info("Tombstoned %s %s (%s)", target_type, target_id, reason)
    return tombstone.id


class BrainStore:
    """Read/write access to one brain log."""

    def __init__(
        self,
        path: Path,
        lock: LockFactory | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        prompt_budget: int = DEFAULT_PROMPT_BUDGET,
    ) -> None:
        self.path = Path(path)
        self.lock = lock
        self.lock_timeout = lock_timeout
        self.prompt_budget = prompt_budget

    @classmethod
    def from_config(cls, config: BrainConfig) -> BrainStore:
        return cls(
            config.brain_path,
            lock_timeout=config.lock_timeout,
            prompt_budget=config.prompt_budget,
        )

    def load(self) -> MaterializedBrain:
        return load_brain(self.path)

    def prompt(self, cwd: str) -> str:
        """Memory digest for a session started in ``cwd``."""
        return build_prompt(self.load(), cwd, self.prompt_budget)

    def injected_ids(self, cwd: str) -> set[str]:
        return get_injected_ids(self.load(), cwd, self.prompt_budget)

    def append(self, entry: Entry) -> None:
        append(self.path, entry, lock=self.lock, timeout=self.lock_timeout)

    def append_dedup(self, entry: Entry, is_duplicate: DuplicatePredicate) -> bool:
        return append_dedup(
            self.path, entry, is_duplicate, lock=self.lock, timeout=self.lock_timeout
        )

    def remember_learning(
        self,
        text: str,
        *,
        source: str | None = None,
        scope: Literal["global", "project"] | None = None,
        project_path: str | None = None,
        max_length: int | None = None,
    ) -> StoreResult:
        return remember_learning(
            self.path,
            text,
            source=source,
            scope=scope,
            project_path=project_path,
            max_length=max_length,
            lock=self.lock,
            timeout=self.lock_timeout,
        )

    def remember_preference(
        self, text: str, category: str | None = None, *, max_length: int | None = None
    ) -> StoreResult:
        return remember_preference(
            self.path,
            text,
            category,
            max_length=max_length,
            lock=self.lock,
            timeout=self.lock_timeout,
        )

    def forget(self, target_id: str, target_type: str, reason: str = "manual") -> str:
        return forget(
            self.path, target_id, target_type, reason, lock=self.lock, timeout=self.lock_timeout
        )
