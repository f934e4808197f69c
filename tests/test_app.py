import pytest

from hivsim.app import app, parse_params, summarise
from hivsim.errors import ConfigurationError
from hivsim.report import ReplicationStats


class TestDashboard:
    def test_index_renders_defaults(self):
        client = app.test_client()
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"HIV Treatment Programme Simulation" in resp.data
        assert b'value="5000"' in resp.data

    def test_parse_params_defaults(self):
        params, num_reps = parse_params({})
        assert num_reps == 5
        assert params.starting_pool_size == 5000

    def test_parse_params_form_values(self):
        params, num_reps = parse_params({"seed": "9", "starting_pool_size": "250",
                                         "m_visits_per_day": "12.5", "num_replications": "3"})
        assert (params.seed, params.starting_pool_size, num_reps) == (9, 250, 3)
        assert params.m_visits_per_day == 12.5

    def test_parse_params_rejects_bad_dates(self):
        with pytest.raises(ConfigurationError):
            parse_params({"start_date": "2024-05-01", "end_date": "2024-01-01"})

    def test_summarise(self):
        stats = [ReplicationStats(replication_id=i, seed=i, total_ltfu=10 + i) for i in (1, 2, 3)]
        summary = summarise(stats)
        assert summary["total_ltfu"]["mean"] == 12.0
        assert summary["total_ltfu"]["lo"] < 12.0 < summary["total_ltfu"]["hi"]
