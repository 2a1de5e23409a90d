"""Brain store — append-only JSONL event log + fold + budgeted prompt digest.

Layout:
    ~/.rho/
    ├── brain/
    │   ├── brain.jsonl                # Unified log: one entry per line, append-only
    │   ├── brain.jsonl.lock           # Writer lock (holder pid + purpose)
    │   ├── core.jsonl                 # Legacy (pre-v2): behavior / identity / user
    │   ├── memory.jsonl               # Legacy: learnings / preferences
    │   └── context.jsonl              # Legacy: project contexts
    └── tasks.jsonl                    # Legacy: task queue

Entries are never rewritten. Updates append a new entry with the same id (or
key, for identity/user/meta); deletes append a tombstone. The current state is
always ``fold(read(path))``.
"""

from rho.brain.entries import (
    Behavior,
    Cadence,
    Context,
    Entry,
    Identity,
    Learning,
    Meta,
    Preference,
    Reminder,
    Task,
    Tombstone,
    User,
    deterministic_id,
    entry_to_dict,
    new_id,
    parse_entry,
    utc_now,
)
from rho.brain.fold import MaterializedBrain, fold
from rho.brain.log import ReadStats, read
from rho.brain.migration import (
    MigrationPaths,
    MigrationStats,
    MigrationStatus,
    detect_migration,
    run_migration,
)
from rho.brain.prompt import build_prompt, get_injected_ids
from rho.brain.schema import SCHEMA_REGISTRY, ValidationError, validate
from rho.brain.store import (
    BrainStore,
    StoreResult,
    append,
    append_dedup,
    forget,
    load_brain,
    remember_learning,
    remember_preference,
)

__all__ = [
    "Behavior",
    "BrainStore",
    "Cadence",
    "Context",
    "Entry",
    "Identity",
    "Learning",
    "MaterializedBrain",
    "Meta",
    "MigrationPaths",
    "MigrationStats",
    "MigrationStatus",
    "Preference",
    "ReadStats",
    "Reminder",
    "SCHEMA_REGISTRY",
    "StoreResult",
    "Task",
    "Tombstone",
    "User",
    "ValidationError",
    "append",
    "append_dedup",
    "build_prompt",
    "detect_migration",
    "deterministic_id",
    "entry_to_dict",
    "fold",
    "forget",
    "get_injected_ids",
    "load_brain",
    "new_id",
    "parse_entry",
    "read",
    "remember_learning",
    "remember_preference",
    "run_migration",
    "utc_now",
    "validate",
]
