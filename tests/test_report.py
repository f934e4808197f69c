from datetime import date

import pytest

from hivsim.report import (
    ReplicationStats,
    ci95,
    print_report,
    replication_seed,
    run_all_replications,
    summary_table,
)


class TestConfidenceInterval:
    def test_single_value(self):
        assert ci95([4.0]) == (4.0, 4.0, 4.0)

    def test_constant_values(self):
        assert ci95([2.0, 2.0, 2.0]) == (2.0, 2.0, 2.0)

    def test_interval_contains_mean(self):
        mean, lo, hi = ci95([1.0, 2.0, 3.0, 4.0])
        assert mean == pytest.approx(2.5)
        assert lo < mean < hi
        assert hi - mean == pytest.approx(mean - lo)


class TestReplications:
    def test_seeds_are_distinct(self):
        assert replication_seed(42, 1) == 179
        assert replication_seed(42, 2) == 316

    def test_run_all_replications(self, make_params, capsys):
        params = make_params(end_date=date(2024, 2, 15))
        results, first_state = run_all_replications(params, 2)
        assert [r.replication_id for r in results] == [1, 2]
        assert results[0].seed != results[1].seed
        assert first_state.tick_count == results[0].ticks == 33
        assert all(r.ever_admitted > 0 for r in results)
        assert all(0.0 <= r.suppression_rate <= 100.0 for r in results)
        assert "Replication  2/2 complete" in capsys.readouterr().out

    def test_quiet_run(self, make_params, capsys):
        run_all_replications(make_params(), 1, verbose=False)
        assert capsys.readouterr().out == ""


class TestReport:
    def test_summary_table(self):
        results = [ReplicationStats(replication_id=i, seed=i, total_ltfu=i) for i in (1, 2, 3)]
        table = summary_table(results)
        row = table[table["Metric"] == "total_ltfu"].iloc[0]
        assert row["Mean"] == pytest.approx(2.0)
        assert row["Min"] == 1.0 and row["Max"] == 3.0
        assert "seed" not in set(table["Metric"])

    def test_print_report(self, make_params, capsys):
        results, state = run_all_replications(make_params(), 2, verbose=False)
        print_report(results, state.monthly_indicators())
        out = capsys.readouterr().out
        assert "SECTION 1: INDIVIDUAL REPLICATION RESULTS" in out
        assert "SECTION 2: SUMMARY STATISTICS" in out
        assert "SECTION 3: MONTHLY INDICATORS" in out
        assert "2024-01" in out
