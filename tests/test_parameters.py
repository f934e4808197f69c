from dataclasses import FrozenInstanceError
from datetime import date, time
from pathlib import Path

import numpy as np
import pytest

from hivsim.errors import ConfigurationError
from hivsim.parameters import NormalProcess, SimulationParameters, default_parameters


class TestValidation:
    def test_defaults_are_valid(self):
        params = SimulationParameters()
        assert params.start_date < params.end_date

    def test_end_before_start_raises(self):
        with pytest.raises(ConfigurationError, match="must be after start_date"):
            SimulationParameters(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))

    def test_equal_dates_raise(self):
        with pytest.raises(ConfigurationError):
            SimulationParameters(start_date=date(2024, 1, 1), end_date=date(2024, 1, 1))

    @pytest.mark.parametrize("table", [
        (0.1, -0.1, 0.0, 0.0, 0.0, 0.0, 0.0),
        (0.1, 1.5, 0.0, 0.0, 0.0, 0.0, 0.0),
        (),
    ])
    def test_malformed_death_table_raises(self, table):
        with pytest.raises(ConfigurationError):
            SimulationParameters(death_prob_natural=table)

    def test_age_weights_must_match_buckets(self):
        with pytest.raises(ConfigurationError, match="one per age bucket"):
            SimulationParameters(age_wgt_m=(0.5, 0.5))

    def test_zero_age_weights_raise(self):
        with pytest.raises(ConfigurationError, match="sum to more than zero"):
            SimulationParameters(age_wgt_f=(0.0,) * 7)

    def test_negative_sd_raises(self):
        with pytest.raises(ConfigurationError, match="sd_ltfu_per_week"):
            SimulationParameters(sd_ltfu_per_week=-1.0)

    def test_probability_out_of_range_raises(self):
        with pytest.raises(ConfigurationError, match="p_data_missing"):
            SimulationParameters(p_data_missing=1.2)

    def test_unknown_timezone_raises(self):
        with pytest.raises(ConfigurationError, match="time zone"):
            SimulationParameters(timezone="Mars/Olympus_Mons")

    def test_day_end_before_start_raises(self):
        with pytest.raises(ConfigurationError):
            SimulationParameters(day_start=time(17, 0), day_end=time(8, 0))

    def test_empty_starting_pool_raises(self):
        with pytest.raises(ConfigurationError):
            SimulationParameters(starting_pool_size=0)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            SimulationParameters(pool_growth_rate=-0.5)


class TestParameters:
    def test_immutable(self):
        params = SimulationParameters()
        with pytest.raises(FrozenInstanceError):
            params.seed = 3

    def test_inputs_are_normalised(self):
        params = SimulationParameters(start_date="2021-03-01", end_date="2021-06-01",
                                      output_directory="results")
        assert params.start_date == date(2021, 3, 1)
        assert isinstance(params.output_directory, Path)
        assert isinstance(params.death_prob_natural, tuple)

    def test_clinic_hours_are_localised(self):
        params = SimulationParameters(timezone="UTC")
        opens, closes = params.clinic_hours(date(2024, 1, 1))
        assert opens.hour == 8 and closes.hour == 16
        assert str(opens.tz) == "UTC"

    def test_default_parameters_overrides(self):
        params = default_parameters(seed=11, starting_pool_size=10)
        assert params.seed == 11
        assert params.starting_pool_size == 10
        assert params.start_date == date(2019, 1, 1)

    def test_default_parameters_rejects_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown parameters"):
            default_parameters(visits=3)


class TestNormalProcess:
    def test_zero_sd_returns_mean(self):
        rng = np.random.default_rng(0)
        assert NormalProcess(5.0, 0.0).sample(rng) == 5

    def test_negative_draws_clamp_to_zero(self):
        rng = np.random.default_rng(0)
        assert all(NormalProcess(-10.0, 1.0).sample(rng) == 0 for _ in range(20))

    def test_draws_are_rounded(self):
        rng = np.random.default_rng(0)
        assert NormalProcess(2.6, 0.0).sample(rng) == 3
