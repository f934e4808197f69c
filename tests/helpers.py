"""Hand-built pools and pool invariant checks for engine tests."""

from datetime import date

import pandas as pd

from hivsim.state import SimulationState


def patient_row(i, **overrides):
    row = {
        "id": f"T{i:04d}",
        "sex": "F",
        "birthdate": pd.Timestamp("1984-06-01"),
        "alive": True,
        "death_date": pd.NaT,
        "active": True,
        "ltfu": False,
        "due": False,
        "first_visit_dt": pd.NaT,
        "last_visit_dt": pd.NaT,
        "last_vl": None,
        "last_supp_vl_dt": pd.NaT,
    }
    row.update(overrides)
    return row


def make_state(params, rows, current_date=date(2024, 3, 4), seed=1):
    """A state primed with a hand-built pool, bypassing initialisation."""
    state = SimulationState(calendar=params.calendar, seed=seed)
    state.patient_pool = pd.DataFrame(rows)
    state.current_date = current_date
    state.visits_per_day = params.visits_per_day
    state.new_patients_per_day = params.new_patients_per_day
    state.ltfu_per_week = params.ltfu_per_week
    return state


def assert_pool_invariants(pool):
    """Per-patient state exclusivity and the pool-wide id constraint."""
    assert pool["id"].is_unique
    assert (pool["death_date"].notna() == ~pool["alive"]).all()
    due = pool[pool["due"]]
    assert due["active"].all() and due["alive"].all() and not due["ltfu"].any()
    assert not (pool["ltfu"] & pool["due"]).any()
