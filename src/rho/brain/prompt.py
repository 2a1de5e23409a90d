"""Budgeted prompt digest of the materialized brain.

The digest is split into four sections with fixed shares of the token
budget. Behavior, preferences and project context give whatever they leave
unused to learnings, which are ranked and truncated last. Token cost is
approximated as ``ceil(chars / 4)``.

``build_prompt`` and ``get_injected_ids`` both render from one
:class:`PromptPlan`, so the ids reported as injected are exactly the ones
whose text appears in the prompt.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rho.brain.entries import Learning, parse_timestamp
from rho.brain.fold import MaterializedBrain

logger = logging.getLogger(__name__)

DEFAULT_BUDGET = 2000

HEADER = "## Memory\n\n"
SECTION_SEPARATOR = "\n\n"

SECTION_WEIGHTS = {
    "behavior": 0.15,
    "preferences": 0.20,
    "context": 0.25,
    "learnings": 0.40,
}

RECENCY_MAX = 10
RECENCY_WEEK_DAYS = 7
SCOPE_BOOST = 5
MANUAL_BOOST = 2


def approx_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def omitted_marker(count: int) -> str:
    return f"(…{count} more omitted)"


# ── Learning ranking ──────────────────────────────────────────


def days_since(created: str, now: datetime | None = None) -> int | None:
    """Whole days between ``created`` and ``now`` (never negative); None if unparsable.

    A naive ``now`` is taken as UTC, like naive timestamps in the log.
    """
    then = parse_timestamp(created)
    if then is None:
        return None
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0, math.floor((now - then).total_seconds() / 86400))


def score_learning(learning: Learning, cwd: str, now: datetime | None = None) -> int:
    days = days_since(learning.created, now)
    recency = 0 if days is None else max(0, RECENCY_MAX - days // RECENCY_WEEK_DAYS)
    scope_boost = (
        SCOPE_BOOST
        if learning.scope == "project"
        and learning.project_path
        and cwd.startswith(learning.project_path)
        else 0
    )
    manual_boost = MANUAL_BOOST if learning.source == "manual" else 0
    return recency + scope_boost + manual_boost


def rank_learnings(
    learnings: list[Learning], cwd: str, now: datetime | None = None
) -> list[Learning]:
    """Highest score first; ties go to the newer ``created``."""
    scored = [(score_learning(l, cwd, now), l.created or "", l) for l in learnings]
    scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
    return [l for _, _, l in scored]


# ── Planning ──────────────────────────────────────────────────


@dataclass
class _Line:
    text: str
    ids: list[str] = field(default_factory=list)


@dataclass
class Section:
    """One rendered block: a header, the lines that fit, and what was dropped."""

    header: str
    lines: list[str] = field(default_factory=list)
    ids: set[str] = field(default_factory=set)
    omitted: int = 0

    def render(self) -> str:
        parts = [self.header, *self.lines]
        if self.omitted:
            parts.append(omitted_marker(self.omitted))
        return "\n".join(parts)

    @property
    def cost(self) -> int:
        """Tokens this section consumes in the digest, separator included."""
        return approx_tokens(self.render() + SECTION_SEPARATOR)


@dataclass
class PromptPlan:
    sections: list[Section] = field(default_factory=list)

    def render(self) -> str:
        if not self.sections:
            return ""
        return HEADER + SECTION_SEPARATOR.join(s.render() for s in self.sections)

    @property
    def ids(self) -> set[str]:
        return set().union(*(s.ids for s in self.sections))


def _fit(header: str, lines: list[_Line], budget: int) -> Section | None:
    """Take lines in order while the section (omission marker included) fits.

    The first line is always kept so a non-empty section never renders bare.
    """
    if not lines:
        return None

    section = Section(header=header)
    chars = len(header) + len(SECTION_SEPARATOR)
    for i, line in enumerate(lines):
        with_line = chars + 1 + len(line.text)
        remaining = len(lines) - i - 1
        marker = 1 + len(omitted_marker(remaining)) if remaining else 0
        if section.lines and math.ceil((with_line + marker) / 4) > budget:
            break
        section.lines.append(line.text)
        section.ids.update(line.ids)
        chars = with_line
    section.omitted = len(lines) - len(section.lines)
    return section


def _behavior_lines(brain: MaterializedBrain) -> list[_Line]:
    lines = []
    for category, label in (("do", "Do"), ("dont", "Don't"), ("value", "Values")):
        items = [b for b in brain.behaviors if b.category == category]
        if items:
            lines.append(
                _Line(f"**{label}:** {'. '.join(b.text for b in items)}", [b.id for b in items])
            )
    return lines


def _preference_lines(brain: MaterializedBrain) -> list[_Line]:
    by_category: dict[str, list] = {}
    for p in brain.preferences:
        by_category.setdefault(p.category, []).append(p)
    return [
        _Line(f"**{cat}:** {'. '.join(p.text for p in prefs)}", [p.id for p in prefs])
        for cat, prefs in sorted(by_category.items(), key=lambda kv: (kv[0].lower(), kv[0]))
    ]


def plan_prompt(
    brain: MaterializedBrain,
    cwd: str,
    total_budget: int = DEFAULT_BUDGET,
    *,
    now: datetime | None = None,
) -> PromptPlan:
    """Allocate the budget across sections and decide what fits."""
    plan = PromptPlan()
    budget = total_budget - approx_tokens(HEADER)
    if budget <= 0:
        return plan

    learnings_budget = math.floor(budget * SECTION_WEIGHTS["learnings"])

    def place(section: Section | None, section_budget: int) -> None:
        nonlocal learnings_budget
        if section is None:
            learnings_budget += section_budget
            return
        plan.sections.append(section)
        learnings_budget += max(0, section_budget - section.cost)

    behavior_budget = math.floor(budget * SECTION_WEIGHTS["behavior"])
    place(_fit("## Behavior", _behavior_lines(brain), behavior_budget), behavior_budget)

    prefs_budget = math.floor(budget * SECTION_WEIGHTS["preferences"])
    place(_fit("## Preferences", _preference_lines(brain), prefs_budget), prefs_budget)

    # Longest matching path wins; max() keeps the first on ties
    context_budget = math.floor(budget * SECTION_WEIGHTS["context"])
    matching = [c for c in brain.contexts if cwd.startswith(c.path)]
    context_section = None
    if matching:
        best = max(matching, key=lambda c: len(c.path))
        context_section = _fit(
            f"## Project: {best.project}",
            [_Line(text) for text in best.content.split("\n")],
            context_budget,
        )
        context_section.ids.add(best.id)
    place(context_section, context_budget)

    ranked = rank_learnings(brain.learnings, cwd, now)
    learnings_section = _fit(
        "## Learnings", [_Line(f"- {l.text}", [l.id]) for l in ranked], learnings_budget
    )
    if learnings_section is not None:
        plan.sections.append(learnings_section)
        if learnings_section.omitted:
            logger.debug(
                "Prompt budget dropped %d of %d learnings", learnings_section.omitted, len(ranked)
            )
    return plan


def build_prompt(
    brain: MaterializedBrain,
    cwd: str,
    total_budget: int = DEFAULT_BUDGET,
    *,
    now: datetime | None = None,
) -> str:
    """Render the memory digest; empty string when there is nothing to show."""
    return plan_prompt(brain, cwd, total_budget, now=now).render()


def get_injected_ids(
    brain: MaterializedBrain,
    cwd: str,
    total_budget: int = DEFAULT_BUDGET,
    *,
    now: datetime | None = None,
) -> set[str]:
    """Ids of the entries that ``build_prompt`` would include for the same inputs."""
    return plan_prompt(brain, cwd, total_budget, now=now).ids
