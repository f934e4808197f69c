from datetime import date

import numpy as np
import pandas as pd

from hivsim.parameters import SimulationParameters
from hivsim.patients import ViralLoad, draw_viral_loads, generate_patients, is_suppressed


class TestGeneratePatients:
    def test_batch_shape(self):
        params = SimulationParameters()
        p = generate_patients(np.random.default_rng(1), 50, params, date(2024, 1, 1))
        assert len(p) == 50
        assert list(p.columns) == ["id", "sex", "birthdate"]
        assert set(p["sex"]) <= {"M", "F"}
        assert p["id"].str.match(r"^P\d{7}$").all()

    def test_ages_fall_in_bucket_range(self):
        params = SimulationParameters()
        as_of = pd.Timestamp("2024-01-01")
        p = generate_patients(np.random.default_rng(2), 500, params, as_of.date())
        ages = (as_of - p["birthdate"]).dt.days / 365.25
        assert ages.min() >= params.min_age - 0.01
        assert ages.max() <= params.min_age + 7 * params.age_bin_width + 0.01

    def test_sex_ratio_respected(self):
        params = SimulationParameters(p_m=1.0, p_f=0.0)
        p = generate_patients(np.random.default_rng(3), 100, params, date(2024, 1, 1))
        assert (p["sex"] == "M").all()

    def test_same_seed_same_batch(self):
        params = SimulationParameters()
        a = generate_patients(np.random.default_rng(9), 20, params, date(2024, 1, 1))
        b = generate_patients(np.random.default_rng(9), 20, params, date(2024, 1, 1))
        pd.testing.assert_frame_equal(a, b)


class TestViralLoads:
    def test_missing_results(self):
        params = SimulationParameters(p_data_missing=1.0)
        assert draw_viral_loads(np.random.default_rng(0), 10, params) == [None] * 10

    def test_numeric_suppressed_below_threshold(self):
        params = SimulationParameters(p_data_missing=0.0, p_suppressed=1.0, p_numeric_vls=1.0)
        results = draw_viral_loads(np.random.default_rng(0), 25, params)
        assert all(r.numeric and r.suppressed for r in results)
        assert all(r.copies < params.suppression_threshold for r in results)

    def test_numeric_unsuppressed_above_threshold(self):
        params = SimulationParameters(p_data_missing=0.0, p_suppressed=0.0, p_numeric_vls=1.0)
        results = draw_viral_loads(np.random.default_rng(0), 25, params)
        assert all(r.copies >= params.suppression_threshold for r in results)
        assert not any(is_suppressed(r) for r in results)

    def test_categorical_results(self):
        params = SimulationParameters(p_data_missing=0.0, p_numeric_vls=0.0)
        results = draw_viral_loads(np.random.default_rng(0), 10, params)
        assert not any(r.numeric for r in results)

    def test_labels(self):
        assert str(ViralLoad(suppressed=True)) == "Suppressed"
        assert str(ViralLoad(suppressed=False)) == "Not Suppressed"
        assert str(ViralLoad(suppressed=False, copies=15230.4)) == "15230"

    def test_unknown_is_not_suppressed(self):
        assert not is_suppressed(None)
        assert not is_suppressed(float("nan"))
        assert is_suppressed(ViralLoad(suppressed=True))
