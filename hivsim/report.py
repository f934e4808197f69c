"""
=============================================================================
  Multi-replication runner and terminal report
=============================================================================
  Each replication is an independent run with its own seed.  End-of-run
  totals are summarised across replications with 95% confidence
  intervals; the monthly indicators of the first replication are shown
  in full.
=============================================================================
"""

import math
from dataclasses import dataclass, asdict, replace
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from hivsim.parameters import SimulationParameters
from hivsim.patients import is_suppressed
from hivsim.simulation import MonthCallback, simulate
from hivsim.state import SimulationState

SEED_STRIDE = 137


@dataclass
class ReplicationStats:
    """End-of-run totals for one replication."""
    replication_id: int
    seed: int
    ticks: int                    = 0
    patients_generated: int       = 0
    ever_admitted: int            = 0
    active_at_end: int            = 0
    due_at_end: int               = 0
    total_visits: int             = 0
    total_new_patients: int       = 0
    total_ltfu: int               = 0
    total_deaths: int             = 0
    suppressed_results: int       = 0
    suppression_rate: float       = 0.0
    avg_visits_per_month: float   = 0.0


def replication_seed(base_seed: int, rep: int) -> int:
    return base_seed + rep * SEED_STRIDE


def collect_stats(rep: int, seed: int, state: SimulationState) -> ReplicationStats:
    pool = state.patient_pool
    monthly = state.monthly_indicators()
    stats = ReplicationStats(replication_id=rep, seed=seed)
    stats.ticks = state.tick_count
    stats.patients_generated = len(pool)
    stats.ever_admitted = state.count(active=True)
    stats.active_at_end = state.count(active=True, alive=True, ltfu=False)
    stats.due_at_end = state.count(due=True)
    stats.total_ltfu = state.count(ltfu=True)
    stats.total_deaths = state.count(alive=False)

    if not monthly.empty:
        stats.total_visits = int(monthly["visit_this_month"].sum())
        stats.total_new_patients = int(monthly["new_patients_this_month"].sum())
        stats.suppressed_results = int(monthly["vl_suppressed_patients_this_month"].sum())
        stats.avg_visits_per_month = float(monthly["visit_this_month"].mean())

    # share of patients in care whose last known result is suppressed
    in_care = pool[state.mask(active=True, alive=True, ltfu=False)]
    if len(in_care):
        stats.suppression_rate = float(in_care["last_vl"].map(is_suppressed).mean()) * 100.0
    return stats


def run_replication(params: SimulationParameters, rep: int,
                    on_month_end: Optional[MonthCallback] = None
                    ) -> Tuple[ReplicationStats, SimulationState]:
    seed = replication_seed(params.seed, rep)
    state = simulate(replace(params, seed=seed), on_month_end=on_month_end)
    return collect_stats(rep, seed, state), state


def run_all_replications(params: SimulationParameters, num_replications: int,
                         verbose: bool = True
                         ) -> Tuple[List[ReplicationStats], Optional[SimulationState]]:
    """Run ``num_replications`` independent replications.

    Returns the per-replication totals and the state of replication 1.
    """
    results: List[ReplicationStats] = []
    first_state = None

    if verbose:
        print("=" * 72)
        print("  HIV Treatment Programme - Care Trajectory Simulation")
        print("=" * 72)
        opens, closes = params.clinic_hours(params.start_date)
        print(f"  Replications : {num_replications}")
        print(f"  Period       : {params.start_date} to {params.end_date}")
        print(f"  Clinic hours : {opens:%H:%M}-{closes:%H:%M} {params.timezone}")
        print(f"  Calendar     : {params.calendar.name}")
        print(f"  Start pool   : {params.starting_pool_size} patients")
        print("=" * 72)
        print()

    for rep in range(1, num_replications + 1):
        stats, state = run_replication(params, rep)
        results.append(stats)
        if first_state is None:
            first_state = state
        if verbose:
            print(f"  Replication {rep:>2}/{num_replications} complete  "
                  f"Admitted: {stats.ever_admitted:>6}  "
                  f"Active: {stats.active_at_end:>6}  "
                  f"LTFU: {stats.total_ltfu:>5}  "
                  f"Deaths: {stats.total_deaths:>5}")

    return results, first_state


def ci95(values):
    """Return (mean, lower, upper) for a 95% CI using the t-distribution."""
    from scipy import stats as sp_stats
    data = np.asarray(values, dtype=float)
    n = len(data)
    mean = float(np.mean(data))
    if n < 2:
        return mean, mean, mean
    se = float(np.std(data, ddof=1)) / math.sqrt(n)
    if se == 0:
        return mean, mean, mean
    t_crit = sp_stats.t.ppf(0.975, df=n - 1)
    return mean, mean - t_crit * se, mean + t_crit * se


def summary_table(results: List[ReplicationStats]) -> pd.DataFrame:
    df = pd.DataFrame([asdict(r) for r in results])
    rows = []
    for col in df.columns:
        if col in ("replication_id", "seed"):
            continue
        data = df[col].to_numpy(dtype=float)
        mean, lo, hi = ci95(data)
        rows.append({
            "Metric":      col,
            "Mean":        mean,
            "Std Dev":     float(np.std(data, ddof=1)) if len(data) > 1 else 0.0,
            "Min":         float(np.min(data)),
            "Max":         float(np.max(data)),
            "95% CI Low":  lo,
            "95% CI High": hi,
        })
    return pd.DataFrame(rows)


def print_report(results: List[ReplicationStats], monthly: Optional[pd.DataFrame] = None):
    """Print the replication table, summary statistics and monthly indicators."""
    df = pd.DataFrame([asdict(r) for r in results])

    with pd.option_context("display.max_columns", None, "display.width", 220,
                           "display.float_format", "{:.2f}".format):
        print("\n")
        print("=" * 120)
        print("  SECTION 1: INDIVIDUAL REPLICATION RESULTS")
        print("=" * 120)
        print(df.to_string(index=False))

        print("\n")
        print("=" * 120)
        print("  SECTION 2: SUMMARY STATISTICS ACROSS ALL REPLICATIONS")
        print("=" * 120)
        print(summary_table(results).to_string(index=False))

        if monthly is not None and not monthly.empty:
            print("\n")
            print("=" * 120)
            print("  SECTION 3: MONTHLY INDICATORS (REPLICATION 1)")
            print("=" * 120)
            print(monthly.to_string(index=False))

    print("\n" + "=" * 120)
    print("  Simulation complete.")
    print("=" * 120)
