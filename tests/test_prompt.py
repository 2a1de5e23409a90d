"""Tests for the budgeted prompt digest."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rho.brain.entries import Behavior, Context, Identity, Learning, Preference
from rho.brain.fold import MaterializedBrain, fold
from rho.brain.prompt import (
    approx_tokens,
    build_prompt,
    days_since,
    get_injected_ids,
    omitted_marker,
    plan_prompt,
    rank_learnings,
    score_learning,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
C = "2026-10-19T00:00:00Z"


def _learnings(n: int, created: str = C) -> list[Learning]:
    # Fixed-width texts: 28 chars each, none a substring of another
    return [Learning(id=f"l{i:03d}", created=created, text=f"lesson {i:03d} " + "x" * 17) for i in range(n)]


@pytest.fixture
def rich_brain() -> MaterializedBrain:
    return fold(
        [
            Behavior(id="b1", created=C, category="do", text="Be direct"),
            Behavior(id="b2", created=C, category="do", text="Keep it short"),
            Behavior(id="b3", created=C, category="dont", text="Hedge"),
            Behavior(id="b4", created=C, category="value", text="Clarity"),
            Preference(id="p1", created=C, category="Code", text="Early returns"),
            Preference(id="p2", created=C, category="Code", text="Tabs"),
            Preference(id="p3", created=C, category="Communication", text="Terse replies"),
            Context(
                id="c1",
                created=C,
                project="myapp",
                path="/home/u/myapp",
                content="Node.js project\nUses pnpm\nDeploys to fly",
            ),
            *_learnings(40),
        ]
    )


class TestApproxTokens:
    def test_ceil_quarter(self):
        assert approx_tokens("") == 0
        assert approx_tokens("abcd") == 1
        assert approx_tokens("abcde") == 2

    def test_omitted_marker(self):
        assert omitted_marker(3) == "(…3 more omitted)"


class TestScoring:
    def test_days_since(self):
        assert days_since("2026-10-12T12:00:00Z", NOW) == 7
        assert days_since("2027-01-01", NOW) == 0
        assert days_since("garbage", NOW) is None

    def test_naive_now_taken_as_utc(self):
        naive = NOW.replace(tzinfo=None)
        assert days_since("2026-10-12T12:00:00Z", naive) == 7
        assert days_since("2026-10-12", naive) == 7
        learning = Learning(id="a", created="2026-10-05", text="t")
        assert score_learning(learning, "/", naive) == score_learning(learning, "/", NOW)

    def test_recency_buckets(self):
        assert score_learning(Learning(id="a", created="2026-10-19", text="t"), "/", NOW) == 10
        assert score_learning(Learning(id="a", created="2026-10-05", text="t"), "/", NOW) == 8
        assert score_learning(Learning(id="a", created="2020-01-01", text="t"), "/", NOW) == 0

    def test_unparsable_created_scores_zero_recency(self):
        assert score_learning(Learning(id="a", created="someday", text="t"), "/", NOW) == 0

    def test_project_scope_boost(self):
        learning = Learning(
            id="a", created="2020-01-01", text="t", scope="project", project_path="/home/u/app"
        )
        assert score_learning(learning, "/home/u/app/src", NOW) == 5
        assert score_learning(learning, "/home/u/other", NOW) == 0

    def test_project_path_without_project_scope(self):
        learning = Learning(id="a", created="2020-01-01", text="t", project_path="/home/u/app")
        assert score_learning(learning, "/home/u/app", NOW) == 0

    def test_manual_boost(self):
        learning = Learning(id="a", created="2020-01-01", text="t", source="manual")
        assert score_learning(learning, "/", NOW) == 2

    def test_rank_by_score_then_newest(self):
        old_manual = Learning(id="old", created="2026-01-01", text="a", source="manual")
        fresh = Learning(id="fresh", created="2026-10-19T08:00:00Z", text="b")
        fresher = Learning(id="fresher", created="2026-10-19T09:00:00Z", text="c")
        scoped = Learning(
            id="scoped", created="2026-01-01", text="d", scope="project", project_path="/app"
        )
        ranked = rank_learnings([old_manual, fresh, scoped, fresher], "/app", NOW)
        # old_manual: 0 + 2 = 2; scoped: 0 + 5 = 5; fresh/fresher: 10
        assert [l.id for l in ranked] == ["fresher", "fresh", "scoped", "old"]


class TestBuildPrompt:
    def test_empty_brain(self):
        assert build_prompt(MaterializedBrain(), "/", now=NOW) == ""

    def test_naive_now(self, rich_brain: MaterializedBrain):
        naive = NOW.replace(tzinfo=None)
        cwd = "/home/u/myapp/src"
        assert build_prompt(rich_brain, cwd, now=naive) == build_prompt(rich_brain, cwd, now=NOW)

    def test_identity_only_renders_nothing(self):
        brain = fold([Identity(id="i1", created=C, key="name", value="rho")])
        assert build_prompt(brain, "/", now=NOW) == ""

    def test_behavior_section(self):
        brain = fold(
            [
                Behavior(id="b1", created=C, category="do", text="Be direct"),
                Behavior(id="b2", created=C, category="dont", text="Hedge"),
                Behavior(id="b3", created=C, category="value", text="Clarity"),
                Behavior(id="b4", created=C, category="do", text="Be brief"),
            ]
        )
        assert build_prompt(brain, "/", now=NOW) == (
            "## Memory\n\n"
            "## Behavior\n"
            "**Do:** Be direct. Be brief\n"
            "**Don't:** Hedge\n"
            "**Values:** Clarity"
        )

    def test_preferences_sorted_by_category(self):
        brain = fold(
            [
                Preference(id="p1", created=C, category="Workflow", text="Small PRs"),
                Preference(id="p2", created=C, category="Code", text="Early returns"),
                Preference(id="p3", created=C, category="Workflow", text="Rebase"),
            ]
        )
        assert build_prompt(brain, "/", now=NOW) == (
            "## Memory\n\n"
            "## Preferences\n"
            "**Code:** Early returns\n"
            "**Workflow:** Small PRs. Rebase"
        )

    def test_section_order(self, rich_brain: MaterializedBrain):
        prompt = build_prompt(rich_brain, "/home/u/myapp/src", now=NOW)
        positions = [
            prompt.index(h)
            for h in ("## Behavior", "## Preferences", "## Project: myapp", "## Learnings")
        ]
        assert prompt.startswith("## Memory\n\n## Behavior")
        assert positions == sorted(positions)
        assert "\n\n## Preferences\n" in prompt

    def test_context_longest_prefix(self):
        brain = fold(
            [
                Context(id="c1", created=C, project="home", path="/home/u", content="Dotfiles"),
                Context(id="c2", created=C, project="app", path="/home/u/app", content="Django"),
                Context(id="c3", created=C, project="web", path="/srv/web", content="Nginx"),
            ]
        )
        prompt = build_prompt(brain, "/home/u/app/api", now=NOW)
        assert "## Project: app\nDjango" in prompt
        assert "Dotfiles" not in prompt
        assert "Nginx" not in prompt
        assert get_injected_ids(brain, "/home/u/app/api", now=NOW) == {"c2"}

    def test_no_matching_context(self):
        brain = fold([Context(id="c1", created=C, project="web", path="/srv/web", content="Nginx")])
        assert build_prompt(brain, "/home/u", now=NOW) == ""
        assert get_injected_ids(brain, "/home/u", now=NOW) == set()

    def test_context_truncated_line_by_line(self):
        content = "\n".join(f"line {i:02d} " + "z" * 40 for i in range(60))
        brain = fold([Context(id="c1", created=C, project="big", path="/big", content=content)])
        prompt = build_prompt(brain, "/big", 400, now=NOW)
        assert "line 00" in prompt
        assert "line 59" not in prompt
        assert "more omitted)" in prompt

    def test_learnings_omitted_marker(self):
        brain = fold(_learnings(100))
        prompt = build_prompt(brain, "/", 400, now=NOW)
        shown = prompt.count("- lesson ")
        assert 0 < shown < 100
        assert prompt.endswith(omitted_marker(100 - shown))

    def test_all_learnings_fit_without_marker(self):
        brain = fold(_learnings(3))
        prompt = build_prompt(brain, "/", now=NOW)
        assert prompt.count("- lesson ") == 3
        assert "omitted" not in prompt

    def test_keeps_at_least_one_learning(self):
        brain = fold([Learning(id="big", created=C, text="w" * 400)])
        assert get_injected_ids(brain, "/", 60, now=NOW) == {"big"}

    def test_budget_below_header_renders_nothing(self, rich_brain: MaterializedBrain):
        assert build_prompt(rich_brain, "/home/u/myapp", 3, now=NOW) == ""


class TestBudget:
    @pytest.mark.parametrize("total_budget", list(range(120, 2000, 37)))
    def test_never_exceeded(self, rich_brain: MaterializedBrain, total_budget: int):
        prompt = build_prompt(rich_brain, "/home/u/myapp", total_budget, now=NOW)
        assert prompt
        assert approx_tokens(prompt) <= total_budget

    def test_reclaims_unused_preferences_budget(self):
        learnings = _learnings(100)
        preference = Preference(id="p1", created=C, category="Code", text="y" * 60)

        without_prefs = get_injected_ids(fold(learnings), "/", 400, now=NOW)
        with_prefs = get_injected_ids(fold([preference, *learnings]), "/", 400, now=NOW)

        # budget 397: sections 59/79/99/158; all of it reaches learnings when
        # the other sections are empty, 22 tokens less once preferences render
        assert len(without_prefs) == 49
        assert with_prefs - {"p1"} < without_prefs
        assert len(with_prefs - {"p1"}) == 47

    def test_section_surplus_flows_to_learnings(self):
        learnings = _learnings(100)
        short = Behavior(id="b1", created=C, category="do", text="Be direct")
        base = len(get_injected_ids(fold(learnings), "/", 400, now=NOW))
        with_behavior = get_injected_ids(fold([short, *learnings]), "/", 400, now=NOW)
        # The behavior section costs ~8 tokens, far below its 59-token share
        assert "b1" in with_behavior
        assert base - 2 <= len(with_behavior - {"b1"}) <= base


class TestTieBreak:
    def test_newer_first_when_both_fit(self):
        older = Learning(id="older", created="2026-10-18T08:00:00Z", text="older lesson")
        newer = Learning(id="newer", created="2026-10-18T20:00:00Z", text="newer lesson")
        prompt = build_prompt(fold([older, newer]), "/", now=NOW)
        assert prompt.index("newer lesson") < prompt.index("older lesson")

    def test_older_excluded_under_tight_budget(self):
        older = Learning(id="older", created="2026-10-18T08:00:00Z", text="o" * 20)
        newer = Learning(id="newer", created="2026-10-18T20:00:00Z", text="n" * 20)
        brain = fold([older, newer])
        # budget 15 -> learnings 14 tokens: one line plus the omission marker
        assert get_injected_ids(brain, "/", 18, now=NOW) == {"newer"}
        prompt = build_prompt(brain, "/", 18, now=NOW)
        assert "n" * 20 in prompt
        assert "o" * 20 not in prompt
        assert prompt.endswith("(…1 more omitted)")


class TestInjectedIdsMirrorPrompt:
    @pytest.mark.parametrize("total_budget", [60, 150, 300, 700, 2000])
    def test_ids_match_rendered_text(self, rich_brain: MaterializedBrain, total_budget: int):
        cwd = "/home/u/myapp"
        prompt = build_prompt(rich_brain, cwd, total_budget, now=NOW)
        ids = get_injected_ids(rich_brain, cwd, total_budget, now=NOW)
        for learning in rich_brain.learnings:
            assert (learning.id in ids) == (learning.text in prompt)
        for pref in rich_brain.preferences:
            assert (pref.id in ids) == (f"**{pref.category}:**" in prompt)
        for behavior in rich_brain.behaviors:
            assert (behavior.id in ids) == (behavior.text in prompt)
        assert ("c1" in ids) == ("## Project: myapp" in prompt)

    def test_plan_is_shared(self, rich_brain: MaterializedBrain):
        plan = plan_prompt(rich_brain, "/home/u/myapp", 500, now=NOW)
        assert plan.render() == build_prompt(rich_brain, "/home/u/myapp", 500, now=NOW)
        assert plan.ids == get_injected_ids(rich_brain, "/home/u/myapp", 500, now=NOW)
