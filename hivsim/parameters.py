"""
Run configuration for the HIV care simulation.

``SimulationParameters`` is fixed for the lifetime of a run and shared by
reference with every update function. ``DEFAULT_PARAMS`` holds the
values offered by the dashboard and the command line.
"""

import math
from dataclasses import dataclass, field, fields
from datetime import date, time
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import pandas as pd

from hivsim.businessdays import BusinessCalendar
from hivsim.errors import ConfigurationError

# =============================================================================
# DEFAULTS
# =============================================================================

# Age buckets are [15, 25), [25, 35), ... , [75, inf) - one entry per bucket.
# Natural death probabilities are per month since mortality runs monthly.
DEFAULT_DEATH_PROB = (0.0001, 0.0002, 0.0003, 0.0006, 0.0012, 0.0025, 0.0060)
DEFAULT_AGE_WGT_M = (0.10, 0.22, 0.27, 0.21, 0.12, 0.06, 0.02)
DEFAULT_AGE_WGT_F = (0.16, 0.27, 0.25, 0.17, 0.09, 0.04, 0.02)

DEFAULT_PARAMS = {
    "output_directory": "output",
    "seed": 42,
    "start_date": "2019-01-01",
    "end_date": "2020-12-31",
    "starting_pool_size": 5000,
    "pool_growth_rate": 0.1,
    "m_visits_per_day": 60.0,
    "sd_visits_per_day": 10.0,
    "m_new_patients_per_day": 2.0,
    "sd_new_patients_per_day": 1.0,
    "m_ltfu_per_week": 5.0,
    "sd_ltfu_per_week": 2.0,
    "p_suppressed": 0.8,
    "p_data_missing": 0.02,
    "p_numeric_vls": 0.5,
}


@dataclass(frozen=True)
class NormalProcess:
    """A Normal-distributed count process (visits, admissions, losses)."""
    mean: float
    sd: float

    def sample(self, rng: np.random.Generator) -> int:
        """One draw, rounded to the nearest integer, never negative."""
        value = rng.normal(self.mean, self.sd)
        return max(0, int(round(value)))


def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


@dataclass(frozen=True)
class SimulationParameters:
    """Parameters defined at the start of a simulation; never mutated."""
    output_directory: Union[str, Path] = "output"
    calendar: BusinessCalendar = field(default_factory=BusinessCalendar)
    seed: int = 42
    start_date: date = date(2019, 1, 1)
    end_date: date = date(2020, 12, 31)
    day_start: time = time(8, 0)
    day_end: time = time(16, 0)
    timezone: str = "Africa/Johannesburg"

    starting_pool_size: int = 5000
    pool_growth_rate: float = 0.1

    # consumed by the patient generator
    p_m: float = 0.4
    p_f: float = 0.6
    age_wgt_m: Tuple[float, ...] = DEFAULT_AGE_WGT_M
    age_wgt_f: Tuple[float, ...] = DEFAULT_AGE_WGT_F

    m_visits_per_day: float = 60.0
    sd_visits_per_day: float = 10.0
    m_new_patients_per_day: float = 2.0
    sd_new_patients_per_day: float = 1.0
    m_ltfu_per_week: float = 5.0
    sd_ltfu_per_week: float = 2.0

    period_between_visits_non_suppressed: pd.DateOffset = field(
        default_factory=lambda: pd.DateOffset(weeks=4))
    period_between_visits_suppressed: pd.DateOffset = field(
        default_factory=lambda: pd.DateOffset(months=3))

    death_prob_natural: Tuple[float, ...] = DEFAULT_DEATH_PROB
    min_age: int = 15
    age_bin_width: int = 10

    # viral load results
    p_suppressed: float = 0.8
    suppression_threshold: float = 1000.0
    p_data_missing: float = 0.02
    p_numeric_vls: float = 0.5

    max_generation_attempts: int = 100
    # False reproduces the reference behaviour where nobody is ever seen
    process_visits: bool = True

    def __post_init__(self):
        # normalise a few loosely typed inputs; the instance is frozen
        object.__setattr__(self, "output_directory", Path(self.output_directory))
        object.__setattr__(self, "start_date", _as_date(self.start_date))
        object.__setattr__(self, "end_date", _as_date(self.end_date))
        for name in ("age_wgt_m", "age_wgt_f", "death_prob_natural"):
            object.__setattr__(self, name, tuple(float(x) for x in getattr(self, name)))
        self.validate()

    # ── derived values ──
    @property
    def visits_per_day(self) -> NormalProcess:
        return NormalProcess(self.m_visits_per_day, self.sd_visits_per_day)

    @property
    def new_patients_per_day(self) -> NormalProcess:
        return NormalProcess(self.m_new_patients_per_day, self.sd_new_patients_per_day)

    @property
    def ltfu_per_week(self) -> NormalProcess:
        return NormalProcess(self.m_ltfu_per_week, self.sd_ltfu_per_week)

    def clinic_hours(self, day: date) -> Tuple[pd.Timestamp, pd.Timestamp]:
        """Localised opening and closing timestamps of the clinic on ``day``."""
        opens = pd.Timestamp.combine(day, self.day_start).tz_localize(self.timezone)
        closes = pd.Timestamp.combine(day, self.day_end).tz_localize(self.timezone)
        return opens, closes

    # ── validation ──
    def validate(self):
        if self.end_date <= self.start_date:
            raise ConfigurationError(
                f"end_date ({self.end_date}) must be after start_date ({self.start_date})")
        if self.day_end <= self.day_start:
            raise ConfigurationError("day_end must be after day_start")
        try:
            self.clinic_hours(self.start_date)
        except KeyError as exc:
            raise ConfigurationError(f"Unknown time zone: {self.timezone!r}") from exc

        if self.starting_pool_size < 1:
            raise ConfigurationError("starting_pool_size must be at least 1")
        if self.pool_growth_rate < 0:
            raise ConfigurationError("pool_growth_rate cannot be negative")
        if self.max_generation_attempts < 1:
            raise ConfigurationError("max_generation_attempts must be at least 1")
        if self.age_bin_width < 1:
            raise ConfigurationError("age_bin_width must be at least 1")

        for name in ("sd_visits_per_day", "sd_new_patients_per_day", "sd_ltfu_per_week"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative number, got {value}")

        for name in ("p_m", "p_f", "p_suppressed", "p_data_missing", "p_numeric_vls"):
            _check_probability(name, getattr(self, name))
        if self.p_m + self.p_f <= 0:
            raise ConfigurationError("p_m and p_f cannot both be zero")

        if not self.death_prob_natural:
            raise ConfigurationError("death_prob_natural must have at least one age bucket")
        for p in self.death_prob_natural:
            _check_probability("death_prob_natural", p)

        n_buckets = len(self.death_prob_natural)
        for name in ("age_wgt_m", "age_wgt_f"):
            weights = getattr(self, name)
            if len(weights) != n_buckets:
                raise ConfigurationError(
                    f"{name} has {len(weights)} entries, expected {n_buckets} (one per age bucket)")
            if any(w < 0 or not math.isfinite(w) for w in weights) or sum(weights) <= 0:
                raise ConfigurationError(f"{name} must be non-negative and sum to more than zero")

        if self.suppression_threshold <= 0:
            raise ConfigurationError("suppression_threshold must be positive")


def _check_probability(name, value):
    if not (0.0 <= value <= 1.0):
        raise ConfigurationError(f"{name} must lie in [0, 1], got {value}")


def default_parameters(**overrides) -> SimulationParameters:
    """Validated parameters from ``DEFAULT_PARAMS`` plus ``overrides``."""
    values = dict(DEFAULT_PARAMS)
    values.update(overrides)
    known = {f.name for f in fields(SimulationParameters)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown parameters: {', '.join(sorted(unknown))}")
    return SimulationParameters(**values)
