"""
=============================================================================
  Time-Stepped Simulation: HIV Treatment Programme Care Trajectories
  Using Python + SimPy
=============================================================================
  Patient lifecycle:
    Generated (inactive reserve) -> Admitted (active) -> Due for a visit
    -> Seen (active, not due) -> ... until Lost to follow-up or Dead

  Clock:
    One tick per clinic business day.  After each tick the clock moves to
    the next business day; crossing into a new calendar month runs the
    mortality update, crossing into a new ISO week runs due-flagging and
    then loss-to-follow-up.

  Random draws happen in a fixed order so a seed reproduces a run:
    tick -> mortality [month boundary] -> due-flagging -> loss [week boundary]
=============================================================================
"""

import logging
import os
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import numpy as np
import pandas as pd
import simpy

from hivsim.errors import CapacityError, ConfigurationError, GenerationExhaustedError
from hivsim.parameters import SimulationParameters
from hivsim.patients import DAYS_PER_YEAR, draw_viral_loads, is_suppressed
from hivsim.state import SimulationState

logger = logging.getLogger(__name__)

MonthCallback = Callable[[SimulationState, Dict], None]


# =============================================================================
# SIMULATION LOOP
# =============================================================================

def run_simulation(state: SimulationState, params: SimulationParameters,
                   on_month_end: Optional[MonthCallback] = None) -> SimulationState:
    """Main entry point: initialise ``state`` and run it to ``params.end_date``."""
    initialise_state(state, params)
    logger.info("Simulating %s to %s from %d patients (seed %s)",
                state.current_date, params.end_date, len(state.patient_pool), params.seed)

    env = simpy.Environment()
    env.process(clinic_days(env, state, params, on_month_end))
    env.run()

    # the month of the last tick is still open unless the final clock
    # advance (or a stop requested at a month boundary) already closed it
    open_month = state.last_tick_date or state.current_date
    if not state.month_closed(open_month):
        record = state.close_month(open_month)
        if on_month_end is not None:
            on_month_end(state, record)

    logger.info("Simulation finished on %s after %d ticks: %d active, %d ltfu, %d dead",
                state.current_date, state.tick_count,
                state.count(active=True, alive=True, ltfu=False),
                state.count(ltfu=True), state.count(alive=False))
    return state


def simulate(params: SimulationParameters, on_month_end: Optional[MonthCallback] = None,
             **state_kwargs) -> SimulationState:
    """Build a fresh state from ``params`` and run it."""
    state = SimulationState.from_parameters(params, **state_kwargs)
    return run_simulation(state, params, on_month_end=on_month_end)


def clinic_days(env: simpy.Environment, state: SimulationState,
                params: SimulationParameters, on_month_end: Optional[MonthCallback] = None):
    """SimPy process: one tick per business day; ``env.now`` counts calendar days."""
    while state.current_date < params.end_date and not state.stop_requested:
        simulation_tick(state, params)
        state.last_tick_date = state.current_date

        old_date = state.current_date
        new_date = state.calendar.advance(old_date, 1)
        yield env.timeout((new_date - old_date).days)
        state.current_date = new_date

        # run monthly updates on month change
        if month_changed(old_date, new_date):
            update_dead(state, params)
            record = state.close_month(old_date)
            logger.info("Month %s: %d visits, %d new, %d ltfu, %d deaths",
                        record["month"], record["visit_this_month"],
                        record["new_patients_this_month"], record["ltfu_this_month"],
                        record["deaths_this_month"])
            if on_month_end is not None:
                on_month_end(state, record)

        # run weekly updates on week change
        if week_changed(old_date, new_date):
            update_weekly(state, params)


def month_changed(old: date, new: date) -> bool:
    return (old.year, old.month) != (new.year, new.month)


def week_changed(old: date, new: date) -> bool:
    return tuple(old.isocalendar())[:2] != tuple(new.isocalendar())[:2]


def initialise_state(state: SimulationState, params: SimulationParameters):
    """Set up the count processes, the starting pool and the clock."""
    prepare_output_directory(params.output_directory)

    state.visits_per_day = params.visits_per_day
    state.new_patients_per_day = params.new_patients_per_day
    state.ltfu_per_week = params.ltfu_per_week

    # we start on the business day either on or immediately after the
    # selected start date
    state.current_date = state.calendar.first_business_day(params.start_date)
    state.patient_pool = add_new_patients(state, params)


def prepare_output_directory(path) -> Path:
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Cannot create output directory {path}: {exc}") from exc
    if not os.access(path, os.W_OK):
        raise ConfigurationError(f"Output directory {path} is not writable")
    return path


# =============================================================================
# PATIENT POOL
# =============================================================================

def add_new_patients(state: SimulationState, params: SimulationParameters,
                     n: Optional[int] = None) -> pd.DataFrame:
    """Generate at least ``n`` patients whose ids are not already in the pool.

    With ``n`` omitted the starting pool is generated. Otherwise batches are
    sized by the pool growth rate so later top-ups are rarely needed. The
    returned frame is not appended to the pool; that is the caller's job.
    """
    if n is None:
        n = n_pats = params.starting_pool_size
    else:
        n_pats = max(int(round(params.starting_pool_size * params.pool_growth_rate)), n)

    # we always try to generate at least one patient
    n = max(n, 1)
    n_pats = max(n_pats, 1)

    seen = set() if state.patient_pool is None else set(state.patient_pool["id"])
    as_of = state.current_date or params.start_date

    batches = []
    n_unique = 0
    for _ in range(params.max_generation_attempts):
        batch = state.patient_generator(state.rng, n_pats, params, as_of)
        # drop ids already in the pool or earlier in this request
        batch = batch[~batch["id"].isin(seen)].drop_duplicates("id")
        seen.update(batch["id"])
        batches.append(batch)
        n_unique += len(batch)
        if n_unique >= n:
            break
    else:
        raise GenerationExhaustedError(
            f"Generated only {n_unique} of {n} unique patients in "
            f"{params.max_generation_attempts} attempts")

    p = pd.concat(batches, ignore_index=True)

    # add the simulation tracking fields; the surplus beyond n stays in the
    # pool as inactive reserve
    p["alive"] = True
    p["death_date"] = pd.NaT
    p["active"] = False
    p["ltfu"] = False
    p["due"] = False
    p["first_visit_dt"] = pd.NaT
    p["last_visit_dt"] = pd.NaT
    p["last_vl"] = None
    p["last_supp_vl_dt"] = pd.NaT
    return p


def top_up_pool(state: SimulationState, params: SimulationParameters, n: int) -> int:
    new = add_new_patients(state, params, n=n)
    state.patient_pool = pd.concat([state.patient_pool, new], ignore_index=True)
    logger.info("Added %d patients to the pool (now %d)", len(new), len(state.patient_pool))
    return len(new)


def sample_rows(rng: np.random.Generator, index: pd.Index, k: int) -> pd.Index:
    """``k`` row labels chosen uniformly without replacement."""
    if k > len(index):
        raise CapacityError(f"Cannot select {k} patients from {len(index)} eligible")
    if k == 0:
        return index[:0]
    return pd.Index(rng.choice(index.to_numpy(), size=k, replace=False))


# =============================================================================
# DAILY TICK
# =============================================================================

def simulation_tick(state: SimulationState, params: SimulationParameters) -> int:
    """Reconcile today's visit capacity with demand and admit new patients.

    Returns the number of returning visits capacity allows for (may be
    negative when admissions exceed capacity).
    """
    n_due = state.count(due=True)
    n_visits = state.visits_per_day.sample(state.rng)

    if n_due >= n_visits:
        n_new_patients = state.new_patients_per_day.sample(state.rng)
    else:
        # fill otherwise idle capacity with new patients
        n_new_patients = n_visits - n_due

    n_eligible = state.count(active=False, alive=True, ltfu=False)

    # if we need new patients, add them
    if n_eligible < n_new_patients:
        shortfall = n_new_patients - n_eligible
        padding = int(round(params.starting_pool_size * params.pool_growth_rate))
        if shortfall > padding:
            logger.warning("Pool growth rate too small: need %d new patients, batch size %d",
                           shortfall, padding)
        top_up_pool(state, params, shortfall)

    pool = state.patient_pool
    eligible = pool.index[state.mask(active=False, alive=True, ltfu=False)]
    new_patients = sample_rows(state.rng, eligible, n_new_patients)
    pool.loc[new_patients, "active"] = True

    n_returning_visits = n_visits - n_new_patients

    n_seen = 0
    if params.process_visits:
        record_visits(state, params, new_patients)
        n_seen = min(max(n_returning_visits, 0), n_due)
        due = pool.index[state.mask(due=True)]
        returning = sample_rows(state.rng, due, n_seen)
        pool.loc[returning, "due"] = False
        record_visits(state, params, returning)

    state.month.new_patients_this_month += n_new_patients
    if params.process_visits:
        state.month.returning_visits_this_month += n_seen
        state.month.visit_this_month += n_new_patients + n_seen
    state.tick_count += 1

    logger.debug("%s: capacity %d, due %d, admitted %d, returning %d",
                 state.current_date, n_visits, n_due, n_new_patients, n_seen)
    return n_returning_visits


def record_visits(state: SimulationState, params: SimulationParameters, rows: pd.Index):
    """Patients in ``rows`` were seen today: stamp visit dates and record results."""
    if len(rows) == 0:
        return
    pool = state.patient_pool
    today = pd.Timestamp(state.current_date)
    results = draw_viral_loads(state.rng, len(rows), params)

    first_missing = rows[pool.loc[rows, "first_visit_dt"].isna().to_numpy()]
    pool.loc[first_missing, "first_visit_dt"] = today
    pool.loc[rows, "last_visit_dt"] = today

    for row, result in zip(rows, results):
        # a missing result leaves the previous one in place
        if result is None:
            continue
        pool.at[row, "last_vl"] = result
        if result.suppressed:
            pool.at[row, "last_supp_vl_dt"] = today
            state.month.vl_suppressed_patients_this_month += 1


# =============================================================================
# MONTHLY UPDATE: MORTALITY
# =============================================================================

def age_buckets(pool: pd.DataFrame, rows: pd.Index, today: pd.Timestamp,
                params: SimulationParameters) -> np.ndarray:
    """Index into ``death_prob_natural`` for each row; out-of-range ages clamp."""
    ages = ((today - pool.loc[rows, "birthdate"]).dt.days / DAYS_PER_YEAR).round()
    buckets = (ages.to_numpy() - params.min_age) // params.age_bin_width
    return np.clip(buckets, 0, len(params.death_prob_natural) - 1).astype(int)


def update_dead(state: SimulationState, params: SimulationParameters) -> int:
    """Apply natural mortality to everyone alive and not lost to follow-up."""
    pool = state.patient_pool
    living = pool.index[state.mask(ltfu=False, alive=True)]
    if len(living) == 0:
        return 0

    today = pd.Timestamp(state.current_date)
    death_prob = np.asarray(params.death_prob_natural)[age_buckets(pool, living, today, params)]
    died = living[state.rng.random(len(living)) < death_prob]
    if len(died) == 0:
        return 0

    # death date is evenly distributed between the current tick and the last
    # time they appeared in the simulation
    last_appearance = pool.loc[died, "last_visit_dt"].fillna(today - pd.DateOffset(months=1))
    window = (today - last_appearance).dt.days.to_numpy()
    days_before = state.rng.integers(0, window + 1)
    death_dates = today - pd.to_timedelta(days_before, unit="D")

    pool.loc[died, "alive"] = False
    pool.loc[died, "death_date"] = death_dates
    # dead patients are no longer due
    pool.loc[died, "due"] = False

    state.month.deaths_this_month += len(died)
    state.month.in_care_deaths_this_month += int(pool.loc[died, "active"].sum())
    return len(died)


# =============================================================================
# WEEKLY UPDATES: DUE-FLAGGING, THEN LOSS TO FOLLOW-UP
# =============================================================================

def update_weekly(state: SimulationState, params: SimulationParameters) -> Tuple[int, int]:
    """Due-flagging followed by loss to follow-up, which only sees due patients."""
    n_flagged = update_due(state, params)
    n_lost = update_ltfu(state, params)
    return n_flagged, n_lost


def update_due(state: SimulationState, params: SimulationParameters) -> int:
    """Flag active patients who need a visit.

    Patients already due are skipped: they stay due until they are seen,
    die or are lost to follow-up. Everyone else is due when
      * they have never been seen, or
      * their last result was not suppressed (or is unknown) and their last
        visit is at least ``period_between_visits_non_suppressed`` ago, or
      * their last result was suppressed and their last visit is at least
        ``period_between_visits_suppressed`` ago.
    """
    pool = state.patient_pool
    candidates = state.mask(active=True, alive=True, ltfu=False, due=False)

    today = pd.Timestamp(state.current_date)
    last_visit = pool["last_visit_dt"]
    suppressed = pool["last_vl"].map(is_suppressed).astype(bool)

    overdue = ((suppressed & (last_visit <= today - params.period_between_visits_suppressed))
               | (~suppressed & (last_visit <= today - params.period_between_visits_non_suppressed)))
    flag = candidates & (last_visit.isna() | overdue)

    pool.loc[flag, "due"] = True
    return int(flag.sum())


def update_ltfu(state: SimulationState, params: SimulationParameters) -> int:
    """Lose a Normal-distributed number of due patients, chosen uniformly."""
    pool = state.patient_pool
    # patients are only lost to follow-up when they are due
    due = pool.index[state.mask(due=True)]

    n_ltfu = state.ltfu_per_week.sample(state.rng)
    # we cannot lose more patients than are due
    n_lost = min(n_ltfu, len(due))

    lost = sample_rows(state.rng, due, n_lost)
    pool.loc[lost, "ltfu"] = True
    pool.loc[lost, "due"] = False

    state.month.ltfu_this_month += n_lost
    return n_lost


# =============================================================================
# OUTPUT
# =============================================================================

def write_output(state: SimulationState, params: SimulationParameters) -> Dict[str, Path]:
    """Write the final patient pool and the monthly indicators as CSV."""
    out = prepare_output_directory(params.output_directory)
    patients = state.patient_pool.copy()
    patients["last_vl"] = patients["last_vl"].map(lambda vl: None if vl is None else str(vl))

    paths = {
        "patients": out / "patients.csv",
        "monthly_indicators": out / "monthly_indicators.csv",
    }
    patients.to_csv(paths["patients"], index=False)
    state.monthly_indicators().to_csv(paths["monthly_indicators"], index=False)
    logger.info("Wrote %d patients and %d months to %s",
                len(patients), len(state.monthly_records), out)
    return paths
