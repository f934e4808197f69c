"""Shared fixtures; pool-building helpers live in tests/helpers.py."""

from datetime import date

import pytest

from hivsim.parameters import SimulationParameters


# ── Factories ───────────────────────────────────────────────────────────────


@pytest.fixture
def make_params(tmp_path):
    """Small deterministic parameters writing into a temporary directory."""
    def _make(**overrides):
        values = dict(
            output_directory=tmp_path / "out",
            seed=7,
            start_date=date(2024, 1, 1),       # a Monday
            end_date=date(2024, 1, 29),
            starting_pool_size=100,
            m_visits_per_day=5.0, sd_visits_per_day=0.0,
            m_new_patients_per_day=2.0, sd_new_patients_per_day=0.0,
            m_ltfu_per_week=1.0, sd_ltfu_per_week=0.0,
        )
        values.update(overrides)
        return SimulationParameters(**values)
    return _make
