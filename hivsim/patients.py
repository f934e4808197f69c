"""
Synthetic patient records and viral-load results.

``generate_patients`` is the default patient generator: it draws
identifiers, sex and birthdates only. Anything that happens to a
patient after generation is the engine's business (see simulation.py).
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

import numpy as np
import pandas as pd

ID_SPACE = 10_000_000
DAYS_PER_YEAR = 365.25
UNSUPPRESSED_MAX_COPIES = 500_000
DETECTION_LIMIT = 20

# columns the engine adds to every generated patient
TRACKING_COLUMNS = [
    "alive", "death_date", "active", "ltfu", "due",
    "first_visit_dt", "last_visit_dt", "last_vl", "last_supp_vl_dt",
]
DATE_COLUMNS = ["death_date", "first_visit_dt", "last_visit_dt", "last_supp_vl_dt"]


@dataclass(frozen=True)
class ViralLoad:
    """A viral-load result, either numeric (copies/mL) or categorical."""
    suppressed: bool
    copies: Optional[float] = None

    @property
    def numeric(self) -> bool:
        return self.copies is not None

    def __str__(self):
        if self.numeric:
            return f"{self.copies:.0f}"
        return "Suppressed" if self.suppressed else "Not Suppressed"


def is_suppressed(result) -> bool:
    """Missing or unknown results count as not suppressed."""
    return isinstance(result, ViralLoad) and result.suppressed


def generate_patients(rng: np.random.Generator, n: int, params, as_of: date) -> pd.DataFrame:
    """Draw ``n`` patients with ids, sex and a birthdate relative to ``as_of``.

    Ids are drawn from a finite space, so they may collide with each
    other or with patients generated earlier; callers de-duplicate.
    """
    ids = rng.integers(0, ID_SPACE, size=n)
    p_male = params.p_m / (params.p_m + params.p_f)
    male = rng.random(n) < p_male

    # age bucket per patient from the sex-specific weights
    u = rng.random(n)
    cum_m = np.cumsum(params.age_wgt_m) / sum(params.age_wgt_m)
    cum_f = np.cumsum(params.age_wgt_f) / sum(params.age_wgt_f)
    last = len(cum_m) - 1
    bucket = np.where(male,
                      np.minimum(np.searchsorted(cum_m, u, side="right"), last),
                      np.minimum(np.searchsorted(cum_f, u, side="right"), last))

    years = params.min_age + (bucket + rng.random(n)) * params.age_bin_width
    age_days = np.floor(years * DAYS_PER_YEAR).astype("int64")
    birthdate = pd.Timestamp(as_of) - pd.to_timedelta(age_days, unit="D")

    return pd.DataFrame({
        "id": [f"P{i:07d}" for i in ids],
        "sex": np.where(male, "M", "F"),
        "birthdate": birthdate,
    })


def draw_viral_loads(rng: np.random.Generator, n: int, params) -> List[Optional[ViralLoad]]:
    """Results for ``n`` visits; ``None`` marks a result that was never recorded."""
    missing = rng.random(n) < params.p_data_missing
    suppressed = rng.random(n) < params.p_suppressed
    numeric = rng.random(n) < params.p_numeric_vls

    # log-uniform copies either side of the suppression threshold
    log_thr = math.log10(params.suppression_threshold)
    low = 10 ** rng.uniform(math.log10(DETECTION_LIMIT), log_thr, size=n)
    high = 10 ** rng.uniform(log_thr, math.log10(UNSUPPRESSED_MAX_COPIES), size=n)

    results = []
    for i in range(n):
        if missing[i]:
            results.append(None)
        elif numeric[i]:
            copies = float(low[i] if suppressed[i] else high[i])
            results.append(ViralLoad(suppressed=bool(suppressed[i]), copies=copies))
        else:
            results.append(ViralLoad(suppressed=bool(suppressed[i])))
    return results
