"""
Command line: run the replications, write the first one to the output
directory and print the report.
"""

import argparse
import logging
import sys
from dataclasses import replace

from hivsim.businessdays import make_calendar
from hivsim.errors import SimulationError
from hivsim.parameters import DEFAULT_PARAMS, default_parameters
from hivsim.report import print_report, run_all_replications
from hivsim.simulation import write_output

logger = logging.getLogger("hivsim")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HIV Treatment Programme Care Simulation")
    parser.add_argument("--start", default=DEFAULT_PARAMS["start_date"],
                        help=f"First simulated day (default: {DEFAULT_PARAMS['start_date']})")
    parser.add_argument("--end", default=DEFAULT_PARAMS["end_date"],
                        help=f"Day the simulation stops at (default: {DEFAULT_PARAMS['end_date']})")
    parser.add_argument("--seed", type=int, default=DEFAULT_PARAMS["seed"],
                        help=f"Base random seed (default: {DEFAULT_PARAMS['seed']})")
    parser.add_argument("--pool-size", type=int, default=DEFAULT_PARAMS["starting_pool_size"],
                        help=f"Starting patient pool size (default: {DEFAULT_PARAMS['starting_pool_size']})")
    parser.add_argument("--visits-per-day", type=float, default=DEFAULT_PARAMS["m_visits_per_day"],
                        help=f"Mean clinic visits per day (default: {DEFAULT_PARAMS['m_visits_per_day']})")
    parser.add_argument("--replications", type=int, default=1,
                        help="Number of independent replications (default: 1)")
    parser.add_argument("--output", default=DEFAULT_PARAMS["output_directory"],
                        help=f"Output directory (default: {DEFAULT_PARAMS['output_directory']})")
    parser.add_argument("--holidays", choices=["none", "us-federal"], default="none",
                        help="Holiday calendar on top of weekends (default: none)")
    parser.add_argument("--reference-visits", action="store_true",
                        help="Do not process visits in the daily tick")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.replications < 1:
        logger.error("--replications must be at least 1")
        return 2

    try:
        params = default_parameters(
            start_date=args.start,
            end_date=args.end,
            seed=args.seed,
            starting_pool_size=args.pool_size,
            m_visits_per_day=args.visits_per_day,
            output_directory=args.output,
            process_visits=not args.reference_visits,
        )
        params = replace(params, calendar=make_calendar(
            args.holidays, params.start_date, params.end_date))
        results, first_state = run_all_replications(params, args.replications)
        paths = write_output(first_state, params)
    except SimulationError as exc:
        logger.error("%s", exc)
        return 1

    print_report(results, first_state.monthly_indicators())
    print(f"\n  Patients written to {paths['patients']}")
    print(f"  Monthly indicators written to {paths['monthly_indicators']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
