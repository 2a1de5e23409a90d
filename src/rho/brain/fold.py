"""Fold: replay the entry log into the materialized current state.

The fold is a pure left-reduction. It is the only place collection
membership is decided, and replaying the same entries always yields the
same brain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from rho.brain.entries import (
    Behavior,
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
    parse_entry,
)
from rho.brain.schema import is_valid


@dataclass
class MaterializedBrain:
    behaviors: list[Behavior] = field(default_factory=list)
    identity: dict[str, Identity] = field(default_factory=dict)
    user: dict[str, User] = field(default_factory=dict)
    learnings: list[Learning] = field(default_factory=list)
    preferences: list[Preference] = field(default_factory=list)
    contexts: list[Context] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)
    meta: dict[str, Meta] = field(default_factory=dict)
    tombstoned: set[str] = field(default_factory=set)

    def entries(self) -> list[Entry]:
        """Flatten the live state back into an entry list."""
        return [
            *self.behaviors,
            *self.identity.values(),
            *self.user.values(),
            *self.learnings,
            *self.preferences,
            *self.contexts,
            *self.tasks,
            *self.reminders,
            *self.meta.values(),
        ]

    def meta_value(self, key: str) -> str | None:
        entry = self.meta.get(key)
        return entry.value if entry else None


# type tag -> MaterializedBrain attribute
_LISTS = {
    "behavior": "behaviors",
    "learning": "learnings",
    "preference": "preferences",
    "context": "contexts",
    "task": "tasks",
    "reminder": "reminders",
}
_MAPS = {
    "identity": "identity",
    "user": "user",
    "meta": "meta",
}


def fold(entries: Iterable[Entry | dict[str, Any]]) -> MaterializedBrain:
    """Reduce entries, in order, into a MaterializedBrain.

    Raw dicts are parsed first. Unknown types are skipped, as are known
    entries that fail validation (say, a hand-edited line with a list where
    a key belongs); one bad record never makes the log unreadable.
    """
    # id -> entry; re-assigning a key keeps its first position
    lists: dict[str, dict[str, Any]] = {name: {} for name in _LISTS.values()}
    maps: dict[str, dict[str, Any]] = {name: {} for name in _MAPS.values()}
    tombstoned: set[str] = set()

    for entry in entries:
        if isinstance(entry, dict):
            entry = parse_entry(entry)
        if isinstance(entry, dict) or not is_valid(entry):
            continue

        if isinstance(entry, Tombstone):
            tombstoned.add(entry.target_id)
            _remove(lists, maps, entry.target_id, entry.target_type)
            continue

        tombstoned.discard(entry.id)

        if entry.type in _LISTS:
            lists[_LISTS[entry.type]][entry.id] = entry
        elif entry.type in _MAPS:
            maps[_MAPS[entry.type]][entry.key] = entry

    return MaterializedBrain(
        **{name: list(items.values()) for name, items in lists.items()},
        **maps,
        tombstoned=tombstoned,
    )


def _remove(
    lists: dict[str, dict[str, Any]],
    maps: dict[str, dict[str, Any]],
    target_id: str,
    target_type: str,
) -> None:
    if target_type in _LISTS:
        lists[_LISTS[target_type]].pop(target_id, None)
    elif target_type in _MAPS:
        keyed = maps[_MAPS[target_type]]
        for key, entry in keyed.items():
            if entry.id == target_id:
                del keyed[key]
                break
