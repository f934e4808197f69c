"""
SimulationState

This represents the state tracked by the simulator: the patient pool,
the simulated date, the calendar, the count processes and the random
source. One instance per run; every update function receives it
explicitly and mutates it in place.
"""

from dataclasses import dataclass, asdict
from datetime import date
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from hivsim.businessdays import BusinessCalendar
from hivsim.parameters import NormalProcess
from hivsim.patients import generate_patients


def month_label(day: date) -> str:
    return pd.Timestamp(day).strftime("%Y-%m")


@dataclass
class MonthCounters:
    """Events counted while a calendar month is open."""
    visit_this_month: int = 0
    new_patients_this_month: int = 0
    returning_visits_this_month: int = 0
    vl_suppressed_patients_this_month: int = 0
    ltfu_this_month: int = 0
    deaths_this_month: int = 0
    in_care_deaths_this_month: int = 0


class SimulationState:
    """Mutable aggregate owned by a single run."""

    def __init__(self, calendar: Optional[BusinessCalendar] = None,
                 rng: Optional[np.random.Generator] = None, seed: Optional[int] = None,
                 patient_generator: Callable = generate_patients):
        self.calendar = calendar if calendar is not None else BusinessCalendar()
        # seeded exactly once, here
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.patient_generator = patient_generator

        self.patient_pool: Optional[pd.DataFrame] = None
        self.current_date: Optional[date] = None
        self.visits_per_day: Optional[NormalProcess] = None
        self.new_patients_per_day: Optional[NormalProcess] = None
        self.ltfu_per_week: Optional[NormalProcess] = None

        self.tick_count = 0
        self.last_tick_date: Optional[date] = None
        self.stop_requested = False
        self.month = MonthCounters()
        self.monthly_records: List[Dict] = []

    @classmethod
    def from_parameters(cls, params, **kwargs) -> "SimulationState":
        return cls(calendar=params.calendar, seed=params.seed, **kwargs)

    # ── pool queries ──
    def mask(self, **flags) -> pd.Series:
        """Boolean row mask, e.g. ``mask(active=True, ltfu=False)``."""
        pool = self.patient_pool
        m = pd.Series(True, index=pool.index)
        for column, wanted in flags.items():
            m &= pool[column] == wanted
        return m

    def count(self, **flags) -> int:
        return int(self.mask(**flags).sum())

    # ── monthly indicators ──
    def close_month(self, month_start: date) -> Dict:
        """Snapshot the pool, archive the open counters and start a new month."""
        record = {"month": month_label(month_start)}
        record.update(asdict(self.month))
        record.update({
            "active_patients": self.count(active=True, alive=True, ltfu=False),
            "due_patients": self.count(due=True),
            "ltfu_patients": self.count(ltfu=True),
            "dead_patients": self.count(alive=False),
        })
        self.monthly_records.append(record)
        self.month = MonthCounters()
        return record

    def month_closed(self, day: date) -> bool:
        return bool(self.monthly_records) and self.monthly_records[-1]["month"] == month_label(day)

    def monthly_indicators(self) -> pd.DataFrame:
        return pd.DataFrame(self.monthly_records)

    def __repr__(self):
        size = 0 if self.patient_pool is None else len(self.patient_pool)
        return f"SimulationState(current_date={self.current_date}, patients={size})"
