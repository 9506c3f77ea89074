"""Tests for Magic Formula ranking."""

import math

import pytest

from magicformula.core.exceptions import InvalidInputError
from magicformula.core.metrics import metrics
from magicformula.strategy.ranking import MetricsRanker, StockMetric


def _symbols(ranked):
    return [m.symbol for m in ranked]


class TestRankOrdering:
    def test_all_tied_keeps_input_order(self):
        """EY: B,A,C; ROC: C,A,B -> every combined rank is 4."""
        universe = [
            StockMetric("A", return_on_capital=0.10, earnings_yield=0.08),
            StockMetric("B", return_on_capital=0.05, earnings_yield=0.12),
            StockMetric("C", return_on_capital=0.20, earnings_yield=0.05),
        ]

        ranked = MetricsRanker().rank(universe)

        assert _symbols(ranked) == ["A", "B", "C"]
        by_symbol = {m.symbol: m for m in ranked}
        assert (by_symbol["A"].ey_rank, by_symbol["A"].roc_rank) == (2, 2)
        assert (by_symbol["B"].ey_rank, by_symbol["B"].roc_rank) == (1, 3)
        assert (by_symbol["C"].ey_rank, by_symbol["C"].roc_rank) == (3, 1)
        assert all(m.combined_rank == 4 for m in ranked)

    def test_orders_by_combined_rank(self):
        universe = [
            StockMetric("LOW", return_on_capital=0.01, earnings_yield=0.01),
            StockMetric("TOP", return_on_capital=0.30, earnings_yield=0.30),
            StockMetric("MID", return_on_capital=0.10, earnings_yield=0.10),
        ]

        ranked = MetricsRanker().rank(universe)

        assert _symbols(ranked) == ["TOP", "MID", "LOW"]
        assert [m.combined_rank for m in ranked] == [2, 4, 6]

    def test_combined_rank_is_sum_of_factor_ranks(self):
        universe = [
            StockMetric(f"S{i}", return_on_capital=0.01 * ((i * 7) % 11 + 1), earnings_yield=0.02 * ((i * 3) % 13 + 1))
            for i in range(20)
        ]

        ranked = MetricsRanker().rank(universe)

        assert len(ranked) == 20
        for m in ranked:
            assert m.combined_rank == m.ey_rank + m.roc_rank
        assert sorted(m.ey_rank for m in ranked) == list(range(1, 21))
        assert sorted(m.roc_rank for m in ranked) == list(range(1, 21))
        combined = [m.combined_rank for m in ranked]
        assert combined == sorted(combined)

    def test_equal_factor_values_get_distinct_positions_in_input_order(self):
        universe = [
            StockMetric("X", return_on_capital=0.1, earnings_yield=0.1),
            StockMetric("Y", return_on_capital=0.1, earnings_yield=0.1),
        ]

        ranked = MetricsRanker().rank(universe)

        assert [(m.symbol, m.ey_rank, m.roc_rank) for m in ranked] == [("X", 1, 1), ("Y", 2, 2)]

    def test_rank_numbers_do_not_depend_on_input_order(self):
        universe = [
            StockMetric("A", return_on_capital=0.10, earnings_yield=0.08),
            StockMetric("B", return_on_capital=0.05, earnings_yield=0.12),
            StockMetric("C", return_on_capital=0.20, earnings_yield=0.05),
            StockMetric("D", return_on_capital=0.15, earnings_yield=0.15),
        ]
        ranker = MetricsRanker()

        forward = {m.symbol: m.combined_rank for m in ranker.rank(universe)}
        backward = ranker.rank(list(reversed(universe)))

        assert {m.symbol: m.combined_rank for m in backward} == forward
        # Ties on combined rank follow the new input order
        assert _symbols(backward) == ["D", "C", "B", "A"]

    def test_repeated_runs_are_identical(self):
        universe = [
            StockMetric(f"S{i}", return_on_capital=0.05 * (i % 4 + 1), earnings_yield=0.05 * (i % 3 + 1))
            for i in range(12)
        ]
        ranker = MetricsRanker()

        assert ranker.rank(universe) == ranker.rank(universe)

    def test_input_is_not_mutated(self):
        universe = [StockMetric("A", return_on_capital=0.1, earnings_yield=0.2)]

        MetricsRanker().rank(universe)

        assert universe[0].combined_rank is None


class TestRankFiltering:
    def test_drops_missing_nan_and_inf(self):
        universe = [
            StockMetric("OK", return_on_capital=0.1, earnings_yield=0.1),
            StockMetric("NONE", return_on_capital=None, earnings_yield=0.1),
            StockMetric("NAN", return_on_capital=0.1, earnings_yield=math.nan),
            StockMetric("INF", return_on_capital=math.inf, earnings_yield=0.1),
            StockMetric("JUNK", return_on_capital="n/a", earnings_yield=0.1),
        ]

        assert _symbols(MetricsRanker().rank(universe)) == ["OK"]

    def test_zero_factor_dropped_by_default(self):
        universe = [
            StockMetric("OK", return_on_capital=0.1, earnings_yield=0.1),
            StockMetric("ZERO", return_on_capital=0.0, earnings_yield=0.3),
        ]

        assert _symbols(MetricsRanker().rank(universe)) == ["OK"]

    def test_zero_factor_kept_when_allowed(self):
        universe = [
            StockMetric("OK", return_on_capital=0.1, earnings_yield=0.1),
            StockMetric("ZERO", return_on_capital=0.0, earnings_yield=0.3),
        ]

        ranked = MetricsRanker(exclude_zero=False).rank(universe)

        assert set(_symbols(ranked)) == {"OK", "ZERO"}

    def test_negative_factors_are_ranked(self):
        universe = [
            StockMetric("NEG", return_on_capital=-0.2, earnings_yield=-0.1),
            StockMetric("POS", return_on_capital=0.2, earnings_yield=0.1),
        ]

        assert _symbols(MetricsRanker().rank(universe)) == ["POS", "NEG"]

    def test_empty_input(self):
        assert MetricsRanker().rank([]) == []

    def test_records_ranking_metric(self):
        universe = [
            StockMetric("OK", return_on_capital=0.1, earnings_yield=0.1),
            StockMetric("BAD", return_on_capital=None, earnings_yield=0.1),
        ]

        MetricsRanker().rank(universe)

        event = metrics.get_buffer()[-1]
        assert event.category == "rank"
        assert event.value == 1
        assert event.metadata["dropped"] == 1


class TestRankInputValidation:
    @pytest.mark.parametrize("bad", [None, "AAPL", {"A": 1}, 42])
    def test_rejects_non_sequence(self, bad):
        with pytest.raises(InvalidInputError):
            MetricsRanker().rank(bad)

    def test_rejects_foreign_entries(self):
        with pytest.raises(InvalidInputError):
            MetricsRanker().rank([{"symbol": "A", "roc": 0.1}])


class TestTop:
    def test_top_k(self):
        universe = [
            StockMetric("LOW", return_on_capital=0.01, earnings_yield=0.01),
            StockMetric("TOP", return_on_capital=0.30, earnings_yield=0.30),
            StockMetric("MID", return_on_capital=0.10, earnings_yield=0.10),
        ]

        assert _symbols(MetricsRanker().top(universe, 2)) == ["TOP", "MID"]

    def test_k_larger_than_universe(self):
        universe = [StockMetric("A", return_on_capital=0.1, earnings_yield=0.1)]

        assert _symbols(MetricsRanker().top(universe, 5)) == ["A"]

    def test_negative_k_rejected(self):
        with pytest.raises(InvalidInputError):
            MetricsRanker().top([], -1)
