"""Tests for candidate selection."""

import pytest
from fakes import NOW, make_account, make_usage

from code_revolver.rotation.selector import (
    auto_switch_target,
    best_switch_target,
    needs_rotation,
    ranked_candidates,
)


@pytest.mark.unit
class TestBestSwitchTarget:
    def test_skips_expired_and_nearly_exhausted(self) -> None:
        expired = make_account(
            "expired", priority=10, is_token_expired=True, usage=make_usage(0, 0)
        )
        primary_full = make_account("primary", priority=10, usage=make_usage(99, 0))
        secondary_full = make_account("secondary", priority=10, usage=make_usage(0, 99))
        usable = make_account("usable", priority=1, usage=make_usage(98.9, 98.9))

        best = best_switch_target([expired, primary_full, secondary_full, usable], NOW)

        assert best is usable

    def test_active_account_is_eligible(self) -> None:
        active = make_account("active", priority=9, is_active=True, usage=make_usage(5, 5))
        other = make_account("other", usage=make_usage(5, 5))

        assert best_switch_target([active, other], NOW) is active

    def test_none_when_nothing_qualifies(self) -> None:
        accounts = [
            make_account("a", usage=make_usage(100, 10)),
            make_account("b", is_token_expired=True, usage=make_usage(0, 0)),
            make_account("c"),
        ]

        assert best_switch_target(accounts, NOW) is None
        assert best_switch_target([], NOW) is None


@pytest.mark.unit
class TestRankedCandidates:
    def test_excludes_active_and_orders_by_score(self) -> None:
        active = make_account("active", priority=10, is_active=True, usage=make_usage(0, 0))
        low = make_account("low", priority=2, usage=make_usage(0, 0))
        high = make_account("high", priority=8, usage=make_usage(50, 50))
        mid = make_account("mid", priority=5, usage=make_usage(10, 10))

        ranked = ranked_candidates([active, low, high, mid], now=NOW)

        assert [a.name for a in ranked] == ["high", "mid", "low"]

    def test_respects_limit(self) -> None:
        accounts = [
            make_account(f"acct{i}", priority=i, usage=make_usage(10, 10))
            for i in range(1, 8)
        ]

        ranked = ranked_candidates(accounts, limit=4, now=NOW)

        assert len(ranked) == 4
        assert [a.priority for a in ranked] == [7, 6, 5, 4]
        assert ranked_candidates(accounts, limit=0, now=NOW) == []

    def test_ties_resolve_by_file_path(self) -> None:
        b = make_account("b", usage=make_usage(10, 10))
        a = make_account("a", usage=make_usage(10, 10))

        assert ranked_candidates([b, a], now=NOW) == [a, b]

    def test_filters_nearly_exhausted(self) -> None:
        full = make_account("full", priority=10, usage=make_usage(99.5, 0))
        fine = make_account("fine", usage=make_usage(20, 20))

        assert ranked_candidates([full, fine], now=NOW) == [fine]


@pytest.mark.unit
class TestAutoSwitchTarget:
    def test_prefers_higher_priority_when_both_qualify(self) -> None:
        active = make_account("a", is_active=True, usage=make_usage(10, 96))
        b = make_account("b", priority=5, usage=make_usage(80, 80))
        c = make_account("c", priority=9, usage=make_usage(10, 10))

        assert auto_switch_target([active, b, c], threshold_percent=5, now=NOW) is c

    def test_no_op_when_only_candidate_is_over_limit(self) -> None:
        active = make_account("a", is_active=True, usage=make_usage(10, 96))
        b = make_account("b", usage=make_usage(97, 10))

        assert auto_switch_target([active, b], threshold_percent=5, now=NOW) is None

    def test_no_op_when_active_is_healthy(self) -> None:
        active = make_account("a", is_active=True, usage=make_usage(94.9, 50))
        b = make_account("b", priority=10, usage=make_usage(0, 0))

        assert auto_switch_target([active, b], threshold_percent=5, now=NOW) is None

    def test_no_op_without_active_account(self) -> None:
        b = make_account("b", usage=make_usage(0, 0))

        assert auto_switch_target([b], threshold_percent=5, now=NOW) is None

    def test_expired_active_triggers_rotation(self) -> None:
        active = make_account(
            "a", is_active=True, is_token_expired=True, usage=make_usage(0, 0)
        )
        b = make_account("b", usage=make_usage(30, 30))

        assert auto_switch_target([active, b], threshold_percent=5, now=NOW) is b

    def test_unknown_window_is_worst_case(self) -> None:
        active = make_account("a", is_active=True, usage=make_usage(primary=10))
        unknown = make_account("unknown", priority=10)
        known = make_account("known", priority=1, usage=make_usage(60, 60))

        assert needs_rotation(active, 95)
        assert (
            auto_switch_target([active, unknown, known], threshold_percent=5, now=NOW)
            is known
        )

    def test_expired_candidates_are_skipped(self) -> None:
        active = make_account("a", is_active=True, usage=make_usage(99, 99))
        expired = make_account(
            "expired", priority=10, is_token_expired=True, usage=make_usage(0, 0)
        )

        assert auto_switch_target([active, expired], threshold_percent=5, now=NOW) is None

    def test_larger_threshold_rotates_earlier(self) -> None:
        active = make_account("a", is_active=True, usage=make_usage(60, 60))
        b = make_account("b", usage=make_usage(10, 10))

        assert auto_switch_target([active, b], threshold_percent=5, now=NOW) is None
        assert auto_switch_target([active, b], threshold_percent=50, now=NOW) is b
